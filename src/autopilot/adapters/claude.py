"""Adapter for the ``claude -p --output-format json`` CLI."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from pathlib import Path

from autopilot.adapters.base import (
    ARGV_FILENAME,
    EVENTS_FILENAME,
    STDERR_FILENAME,
    ExecuteRequest,
    ExecuteResult,
    resume_request,
)
from autopilot.adapters.process import STREAM_LIMIT_BYTES, run_agent_process
from autopilot.adapters.usage import extract_usage
from autopilot.errors import AdapterError
from autopilot.workflow.jsonutil import extract_json_object

logger = logging.getLogger(__name__)


class ClaudeCliAdapter:
    """Run prompts through Claude Code in print mode with a JSON result envelope."""

    name = "claude"
    supports_transcripts = False

    def __init__(
        self,
        command: Sequence[str] = ("claude",),
        *,
        stream_limit: int = STREAM_LIMIT_BYTES,
    ) -> None:
        if not command:
            raise ValueError("Claude command must not be empty.")
        self._command = list(command)
        self._stream_limit = stream_limit

    async def execute(self, request: ExecuteRequest) -> ExecuteResult:
        argv = self.build_argv(request)
        capture_dir = request.capture_dir
        if capture_dir is not None:
            capture_dir.mkdir(parents=True, exist_ok=True)
            (capture_dir / ARGV_FILENAME).write_text(
                json.dumps(argv, ensure_ascii=False, indent=2),
                "utf-8",
            )

        output = await run_agent_process(
            argv,
            cwd=Path(request.cwd),
            stdout_path=capture_dir / EVENTS_FILENAME if capture_dir is not None else None,
            stderr_path=capture_dir / STDERR_FILENAME if capture_dir is not None else None,
            stream_limit=self._stream_limit,
        )

        envelope = extract_json_object(output.stdout)
        session_id = envelope.get("session_id") if envelope is not None else None
        if not isinstance(session_id, str) or not session_id:
            session_id = request.resume_thread_id

        if output.exit_code != 0:
            raise AdapterError(
                output.stderr.strip() or f"claude exited with code {output.exit_code}",
                thread_id=session_id,
                exit_code=output.exit_code,
                transient=True,
            )
        if envelope is None:
            raise AdapterError(
                "claude did not return a JSON result envelope",
                exit_code=output.exit_code,
            )
        if not session_id:
            raise AdapterError("claude did not report a session_id", exit_code=output.exit_code)

        result_text = envelope.get("result")
        is_error = envelope.get("is_error") is True
        return ExecuteResult(
            session_id=session_id,
            output_text=result_text if isinstance(result_text, str) else "",
            status="failed" if is_error else "succeeded",
            usage=extract_usage(envelope.get("usage")),
            exit_code=output.exit_code,
            event_count=1,
        )

    async def resume(
        self,
        session_id: str,
        prompt: str,
        request: ExecuteRequest | None = None,
    ) -> ExecuteResult:
        return await self.execute(resume_request(session_id, prompt, request))

    def build_argv(self, request: ExecuteRequest) -> list[str]:
        argv = [*self._command, "-p", "--output-format", "json"]
        if request.model:
            argv += ["--model", request.model]
        if request.resume_thread_id:
            argv += ["--resume", request.resume_thread_id]
        if request.options.get("unsafe"):
            argv.append("--dangerously-skip-permissions")
        argv.append(request.prompt)
        return argv
