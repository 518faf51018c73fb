"""Run one adapter invocation and record everything it produced."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from autopilot.adapters.base import AgentAdapter, ExecuteRequest, ExecuteResult
from autopilot.errors import AdapterError
from autopilot.state.artifacts import (
    PROMPT_FILENAME,
    allocate_exec_id,
    exec_dir_for,
    utc_now_iso,
    write_exec_artifacts,
)
from autopilot.state.manifest import ManifestStore
from autopilot.state.models import UNKNOWN_THREAD_ID, ExecManifestEntry

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CapturedExec:
    """Recorded invocation.

    ``result`` may accompany ``error`` when the agent finished but reported failure.
    """

    entry: ExecManifestEntry
    result: ExecuteResult | None = None
    error: AdapterError | None = None

    @property
    def exec_id(self) -> str:
        return self.entry.exec_id

    @property
    def thread_id(self) -> str:
        return self.entry.thread_id

    @property
    def output_text(self) -> str:
        return self.result.output_text if self.result is not None else ""

    def raise_for_error(self) -> ExecuteResult:
        """Return the result, or raise the recorded adapter error."""

        if self.error is not None:
            raise self.error
        assert self.result is not None
        return self.result


class ExecRecorder:
    """Allocates exec ids and writes artifacts, manifest entries and graph nodes."""

    def __init__(
        self,
        *,
        store: ManifestStore,
        adapter: AgentAdapter,
        codex_home: Path | None = None,
    ) -> None:
        self._store = store
        self._adapter = adapter
        self._codex_home = codex_home

    async def run(
        self,
        *,
        label: str,
        prompt: str,
        model: str | None,
        effort: str | None,
        resume_thread_id: str | None = None,
    ) -> CapturedExec:
        """Invoke the adapter. Adapter failures are recorded, never raised here."""

        context = self._store.context
        exec_id = allocate_exec_id(context)
        exec_dir = exec_dir_for(context, exec_id, label)
        exec_dir.mkdir(parents=True, exist_ok=True)
        (exec_dir / PROMPT_FILENAME).write_text(prompt, "utf-8")

        request = ExecuteRequest(
            prompt=prompt,
            cwd=context.cwd,
            model=model,
            effort=effort,
            options={"unsafe": context.options.unsafe, "search": context.options.search},
            capture_dir=exec_dir,
            resume_thread_id=resume_thread_id,
        )
        started_at = utc_now_iso()
        logger.info("%s %s started (%s)", exec_id, label, self._adapter.name)

        result: ExecuteResult | None = None
        error: AdapterError | None = None
        try:
            if resume_thread_id:
                result = await self._adapter.resume(resume_thread_id, prompt, request)
            else:
                result = await self._adapter.execute(request)
        except AdapterError as exc:
            error = exc
        except Exception as exc:  # noqa: BLE001
            error = AdapterError(f"{self._adapter.name} adapter failed: {exc}")
            error.__cause__ = exc
        if result is not None and not result.succeeded:
            error = AdapterError(
                f"{self._adapter.name} reported status={result.status}",
                thread_id=result.session_id,
                exit_code=result.exit_code,
            )
        finished_at = utc_now_iso()

        thread_id = _thread_id(result, error, resume_thread_id)
        status = "succeeded" if error is None else "failed"
        exit_code = _exit_code(result, error)
        metadata: dict[str, Any] = {
            "execId": exec_id,
            "label": label,
            "adapter": self._adapter.name,
            "model": model,
            "effort": effort,
            "threadId": thread_id,
            "status": status,
            "exitCode": exit_code,
            "startedAt": started_at,
            "finishedAt": finished_at,
        }
        if resume_thread_id:
            metadata["resumeThreadId"] = resume_thread_id
        if result is not None and result.usage is not None:
            metadata["usage"] = result.usage.to_dict()
        if error is not None:
            metadata["error"] = str(error)
            metadata["transient"] = error.transient

        artifacts = write_exec_artifacts(
            context,
            exec_id,
            label,
            prompt,
            result.output_text if result is not None else "",
            metadata,
        )
        entry = ExecManifestEntry(
            exec_id=exec_id,
            label=label,
            thread_id=thread_id,
            status=status,
            exit_code=exit_code,
            started_at=started_at,
            finished_at=finished_at,
            artifacts=artifacts,
            error=str(error) if error is not None else None,
        )
        self._store.add_exec(entry)
        if resume_thread_id:
            self._store.graph.record_resume_edge(resume_thread_id, entry)
        if entry.has_thread and self._adapter.supports_transcripts and self._codex_home:
            self._store.graph.enrich_from_transcript(entry.thread_id, self._codex_home)
        await self._store.write()

        if error is not None:
            error.exec_id = exec_id
            error.thread_id = error.thread_id or (thread_id if entry.has_thread else None)
            logger.warning(
                "%s %s failed (transient=%s): %s",
                exec_id,
                label,
                error.transient,
                error,
            )
        else:
            logger.info("%s %s finished (thread %s)", exec_id, label, thread_id)
        return CapturedExec(entry=entry, result=result, error=error)


def _thread_id(
    result: ExecuteResult | None,
    error: AdapterError | None,
    resume_thread_id: str | None,
) -> str:
    if result is not None and result.session_id:
        return result.session_id
    if error is not None and error.thread_id:
        return error.thread_id
    return resume_thread_id or UNKNOWN_THREAD_ID


def _exit_code(result: ExecuteResult | None, error: AdapterError | None) -> int:
    if error is None:
        return result.exit_code if result is not None else 0
    if error.exit_code not in (None, 0):
        return error.exit_code
    return 1
