"""Run context and manifest record shapes."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

ARTIFACT_KEYS = {
    "prompt_txt": "promptTxt",
    "output_txt": "outputTxt",
    "last_message_txt": "lastMessageTxt",
    "metadata_json": "metadataJson",
    "events_jsonl": "eventsJsonl",
    "stderr_txt": "stderrTxt",
    "argv_json": "argvJson",
}

UNKNOWN_THREAD_ID = "unknown"


@dataclass(slots=True)
class RunOptions:
    """Effective options of one run, recorded verbatim in the manifest."""

    adapter: str
    model: str
    effort: str
    concurrency: int
    max_iterations: int
    unsafe: bool = False
    search: bool = False

    def __post_init__(self) -> None:
        self.concurrency = max(1, int(self.concurrency))
        self.max_iterations = max(1, int(self.max_iterations))

    def to_dict(self) -> dict[str, Any]:
        return {
            "adapter": self.adapter,
            "model": self.model,
            "effort": self.effort,
            "concurrency": self.concurrency,
            "maxIterations": self.max_iterations,
            "unsafe": self.unsafe,
            "search": self.search,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> RunOptions:
        return cls(
            adapter=str(payload.get("adapter", "codex")),
            model=str(payload.get("model", "")),
            effort=str(payload.get("effort", "")),
            concurrency=int(payload.get("concurrency", 1)),
            max_iterations=int(payload.get("maxIterations", 1)),
            unsafe=bool(payload.get("unsafe", False)),
            search=bool(payload.get("search", False)),
        )


@dataclass(slots=True)
class ExecArtifacts:
    """Artifact paths relative to the run directory."""

    prompt_txt: str | None = None
    output_txt: str | None = None
    last_message_txt: str | None = None
    metadata_json: str | None = None
    events_jsonl: str | None = None
    stderr_txt: str | None = None
    argv_json: str | None = None

    def to_dict(self) -> dict[str, str]:
        return {
            json_key: getattr(self, attr)
            for attr, json_key in ARTIFACT_KEYS.items()
            if getattr(self, attr) is not None
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ExecArtifacts:
        return cls(
            **{
                attr: payload[json_key]
                for attr, json_key in ARTIFACT_KEYS.items()
                if isinstance(payload.get(json_key), str)
            },
        )


@dataclass(slots=True)
class ExecManifestEntry:
    """One adapter invocation; appended to the manifest and never mutated."""

    exec_id: str
    label: str
    thread_id: str
    status: str
    exit_code: int
    started_at: str
    finished_at: str
    artifacts: ExecArtifacts
    error: str | None = None

    @property
    def has_thread(self) -> bool:
        return bool(self.thread_id) and self.thread_id != UNKNOWN_THREAD_ID

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "execId": self.exec_id,
            "label": self.label,
            "threadId": self.thread_id,
            "status": self.status,
            "exitCode": self.exit_code,
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
            "artifacts": self.artifacts.to_dict(),
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ExecManifestEntry:
        artifacts = payload.get("artifacts")
        error = payload.get("error")
        return cls(
            exec_id=str(payload["execId"]),
            label=str(payload.get("label", "")),
            thread_id=str(payload.get("threadId") or UNKNOWN_THREAD_ID),
            status=str(payload.get("status", "")),
            exit_code=int(payload.get("exitCode", 0)),
            started_at=str(payload.get("startedAt", "")),
            finished_at=str(payload.get("finishedAt", "")),
            artifacts=ExecArtifacts.from_dict(artifacts if isinstance(artifacts, dict) else {}),
            error=error if isinstance(error, str) else None,
        )


@dataclass(slots=True)
class RunContext:
    """Per-run mutable state. ``next_exec_index`` is only advanced by ``allocate_exec_id``."""

    run_id: str
    run_dir: Path
    task: str
    cwd: Path
    options: RunOptions
    next_exec_index: int = 1
    started_at: str = ""
