"""Run manifest: the canonical, write-through record of a run."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Any

from autopilot.state.artifacts import load_json, new_run_id, utc_now_iso, write_json
from autopilot.state.graph import ProvenanceGraph
from autopilot.state.models import ExecManifestEntry, RunContext, RunOptions

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "manifest.json"


class RunStatus(str, Enum):
    """Overall run state as recorded in the manifest."""

    RUNNING = "running"
    COMPLETED = "completed"
    MAX_ITERATIONS = "max-iterations"
    ERROR = "error"


class ManifestStore:
    """Owns the run context, exec log and provenance graph of one run.

    ``write`` always serializes the complete current state; concurrent callers
    are ordered by a lock so the file on disk is never interleaved.
    """

    def __init__(  # noqa: PLR0913
        self,
        context: RunContext,
        *,
        graph: ProvenanceGraph | None = None,
        execs: list[ExecManifestEntry] | None = None,
        status: RunStatus = RunStatus.RUNNING,
        finished_at: str | None = None,
        error: str | None = None,
    ) -> None:
        self.context = context
        self.graph = graph or ProvenanceGraph()
        self.execs: list[ExecManifestEntry] = list(execs or [])
        self.status = status
        self.finished_at = finished_at
        self.error = error
        self._lock = asyncio.Lock()

    @classmethod
    def create(
        cls,
        *,
        task: str,
        options: RunOptions,
        out_dir: Path,
        cwd: Path,
        run_id: str | None = None,
    ) -> ManifestStore:
        """Allocate a run id and directory for a new run."""

        resolved_run_id = run_id or new_run_id()
        run_dir = out_dir / resolved_run_id
        run_dir.mkdir(parents=True, exist_ok=True)
        context = RunContext(
            run_id=resolved_run_id,
            run_dir=run_dir,
            task=task,
            cwd=cwd,
            options=options,
            started_at=utc_now_iso(),
        )
        return cls(context)

    @classmethod
    def load(cls, run_dir: Path) -> ManifestStore:
        """Reopen a persisted run, continuing exec numbering after its last entry."""

        payload = load_json(run_dir / MANIFEST_FILENAME)
        execs = [
            ExecManifestEntry.from_dict(item)
            for item in payload.get("execs") or []
            if isinstance(item, dict) and "execId" in item
        ]
        options = payload.get("options")
        context = RunContext(
            run_id=str(payload.get("runId") or run_dir.name),
            run_dir=run_dir,
            task=str(payload.get("task", "")),
            cwd=Path(str(payload.get("cwd") or run_dir)),
            options=RunOptions.from_dict(options if isinstance(options, dict) else {}),
            next_exec_index=_next_exec_index(execs),
            started_at=str(payload.get("startedAt", "")),
        )
        graph_payload = payload.get("graph")
        graph = ProvenanceGraph.from_dict(graph_payload if isinstance(graph_payload, dict) else {})
        try:
            status = RunStatus(payload.get("status", RunStatus.RUNNING.value))
        except ValueError:
            status = RunStatus.RUNNING
        error = payload.get("error")
        return cls(
            context,
            graph=graph,
            execs=execs,
            status=status,
            finished_at=payload.get("finishedAt"),
            error=error if isinstance(error, str) else None,
        )

    @property
    def run_dir(self) -> Path:
        return self.context.run_dir

    @property
    def manifest_path(self) -> Path:
        return self.context.run_dir / MANIFEST_FILENAME

    @property
    def run_state_path(self) -> Path:
        return self.context.run_dir.parent / f"{self.context.run_id}.json"

    def add_exec(self, entry: ExecManifestEntry) -> str:
        """Append an exec entry and its graph node; returns the node id."""

        self.execs.append(entry)
        return self.graph.record_exec_node(entry)

    def finalize(self, status: RunStatus, error: str | None = None) -> None:
        self.status = status
        self.error = error
        self.finished_at = utc_now_iso()

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "runId": self.context.run_id,
            "startedAt": self.context.started_at,
            "cwd": str(self.context.cwd),
            "task": self.context.task,
            "options": self.context.options.to_dict(),
            "status": self.status.value,
            "execs": [entry.to_dict() for entry in self.execs],
            "graph": self.graph.to_dict(),
        }
        if self.finished_at is not None:
            payload["finishedAt"] = self.finished_at
        if self.error is not None:
            payload["error"] = self.error
        return payload

    async def write(self) -> None:
        async with self._lock:
            write_json(self.manifest_path, self.to_dict())
        logger.debug("Manifest written: %s (%d execs)", self.manifest_path, len(self.execs))

    async def write_run_state(self, state: dict[str, Any]) -> None:
        """Persist the per-iteration run-state log beside the run directory."""

        async with self._lock:
            write_json(self.run_state_path, state)


def _next_exec_index(execs: list[ExecManifestEntry]) -> int:
    highest = 0
    for entry in execs:
        _, _, number = entry.exec_id.partition("-")
        if number.isdigit():
            highest = max(highest, int(number))
    return highest + 1
