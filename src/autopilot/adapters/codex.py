"""Adapter for the ``codex exec --json`` CLI."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from autopilot.adapters.base import (
    ARGV_FILENAME,
    EVENTS_FILENAME,
    LAST_MESSAGE_FILENAME,
    STDERR_FILENAME,
    ExecuteRequest,
    ExecuteResult,
    resume_request,
)
from autopilot.adapters.process import STREAM_LIMIT_BYTES, run_agent_process
from autopilot.adapters.usage import TokenUsage, extract_usage, extract_usage_from_text
from autopilot.errors import AdapterError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _EventState:
    thread_id: str = ""
    output_text: str = ""
    usage: TokenUsage | None = None
    fatal_error: str = ""
    event_count: int = 0

    def consume(self, line: str) -> None:
        stripped = line.strip()
        if not stripped:
            return
        try:
            event = json.loads(stripped)
        except json.JSONDecodeError:
            self.fatal_error = self.fatal_error or f"Failed to parse codex JSON event: {stripped}"
            return
        if not isinstance(event, dict):
            return
        self.event_count += 1

        event_type = event.get("type")
        if event_type == "thread.started" and isinstance(event.get("thread_id"), str):
            self.thread_id = event["thread_id"]
        elif event_type == "item.completed":
            item = event.get("item")
            if (
                isinstance(item, dict)
                and item.get("type") == "agent_message"
                and isinstance(item.get("text"), str)
            ):
                self.output_text = item["text"]
        elif event_type == "turn.completed":
            self.usage = extract_usage(event.get("usage"))
        elif event_type == "turn.failed":
            error = event.get("error")
            if isinstance(error, dict):
                error = error.get("message")
            self.fatal_error = error if isinstance(error, str) else "Codex turn failed."
        elif event_type == "error":
            message = event.get("message")
            self.fatal_error = message if isinstance(message, str) else "Codex error."


class CodexCliAdapter:
    """Run prompts through ``codex exec`` and read its JSONL event stream."""

    name = "codex"
    supports_transcripts = True

    def __init__(
        self,
        command: Sequence[str] = ("codex",),
        *,
        stream_limit: int = STREAM_LIMIT_BYTES,
    ) -> None:
        if not command:
            raise ValueError("Codex command must not be empty.")
        self._command = list(command)
        self._stream_limit = stream_limit

    async def execute(self, request: ExecuteRequest) -> ExecuteResult:
        capture_dir = request.capture_dir
        last_message_path = (
            capture_dir / LAST_MESSAGE_FILENAME
            if capture_dir is not None
            else Path(request.cwd) / ".codex-last-message.txt"
        )
        argv = self.build_argv(request, last_message_path=last_message_path)
        if capture_dir is not None:
            capture_dir.mkdir(parents=True, exist_ok=True)
            (capture_dir / ARGV_FILENAME).write_text(
                json.dumps(argv, ensure_ascii=False, indent=2),
                "utf-8",
            )

        state = _EventState(thread_id=request.resume_thread_id or "")
        output = await run_agent_process(
            argv,
            cwd=Path(request.cwd),
            stdout_path=capture_dir / EVENTS_FILENAME if capture_dir is not None else None,
            stderr_path=capture_dir / STDERR_FILENAME if capture_dir is not None else None,
            stream_limit=self._stream_limit,
            on_stdout_line=state.consume,
        )

        output_text = state.output_text
        if last_message_path.is_file():
            output_text = last_message_path.read_text("utf-8")
            if capture_dir is None:
                last_message_path.unlink(missing_ok=True)

        if state.fatal_error:
            raise AdapterError(
                state.fatal_error,
                thread_id=state.thread_id or None,
                exit_code=output.exit_code,
            )
        if output.exit_code != 0:
            raise AdapterError(
                output.stderr.strip() or f"codex exited with code {output.exit_code}",
                thread_id=state.thread_id or None,
                exit_code=output.exit_code,
                transient=True,
            )
        if not state.thread_id:
            raise AdapterError("codex did not emit thread.started", exit_code=output.exit_code)

        logger.debug("codex thread %s finished with %d events", state.thread_id, state.event_count)
        return ExecuteResult(
            session_id=state.thread_id,
            output_text=output_text,
            status="succeeded",
            usage=state.usage or extract_usage_from_text(output.stderr),
            exit_code=output.exit_code,
            event_count=state.event_count,
        )

    async def resume(
        self,
        session_id: str,
        prompt: str,
        request: ExecuteRequest | None = None,
    ) -> ExecuteResult:
        return await self.execute(resume_request(session_id, prompt, request))

    def build_argv(self, request: ExecuteRequest, *, last_message_path: Path) -> list[str]:
        argv = [*self._command, "exec"]
        if request.resume_thread_id:
            argv.append("resume")
        argv += ["--json", "--output-last-message", str(last_message_path)]
        if request.model:
            argv += ["-m", request.model]
        if request.effort:
            argv += ["-c", f"model_reasoning_effort={request.effort}"]
        if request.options.get("search"):
            argv.append("--search")
        if request.options.get("unsafe"):
            argv.append("--dangerously-bypass-approvals-and-sandbox")
        if request.resume_thread_id:
            argv.append(request.resume_thread_id)
        argv.append(request.prompt)
        return argv
