"""Adapter interface for external coding-agent CLIs."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Protocol

from autopilot.adapters.usage import TokenUsage

EVENTS_FILENAME = "events.jsonl"
STDERR_FILENAME = "stderr.txt"
LAST_MESSAGE_FILENAME = "last_message.txt"
ARGV_FILENAME = "argv.json"


@dataclass(slots=True)
class ExecuteRequest:
    """Inputs for one agent invocation.

    ``capture_dir`` is where the adapter streams raw events and stderr as they arrive.
    ``resume_thread_id`` continues an existing thread instead of starting a new one.
    """

    prompt: str
    cwd: Path
    model: str | None = None
    effort: str | None = None
    options: dict[str, Any] = field(default_factory=dict)
    capture_dir: Path | None = None
    resume_thread_id: str | None = None


@dataclass(slots=True)
class ExecuteResult:
    """Agent invocation outcome; ``session_id`` is the durable thread handle."""

    session_id: str
    output_text: str
    status: str = "succeeded"
    usage: TokenUsage | None = None
    exit_code: int = 0
    event_count: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


class AgentAdapter(Protocol):
    """Protocol implemented by agent CLI adapters and test doubles."""

    name: str
    supports_transcripts: bool

    async def execute(self, request: ExecuteRequest) -> ExecuteResult:
        """Run a prompt to completion and return the agent's final output."""

    async def resume(
        self,
        session_id: str,
        prompt: str,
        request: ExecuteRequest | None = None,
    ) -> ExecuteResult:
        """Continue an existing thread with a follow-up prompt."""


def resume_request(
    session_id: str,
    prompt: str,
    request: ExecuteRequest | None,
) -> ExecuteRequest:
    """Build the request an adapter's ``resume`` forwards to ``execute``."""

    if request is None:
        return ExecuteRequest(prompt=prompt, cwd=Path.cwd(), resume_thread_id=session_id)
    return replace(request, prompt=prompt, resume_thread_id=session_id)
