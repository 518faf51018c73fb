"""Per-execution artifact directories and JSON file helpers."""

from __future__ import annotations

import json
import os
import re
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from autopilot.adapters.base import (
    ARGV_FILENAME,
    EVENTS_FILENAME,
    LAST_MESSAGE_FILENAME,
    STDERR_FILENAME,
)
from autopilot.state.models import ExecArtifacts, RunContext

PROMPT_FILENAME = "prompt.txt"
OUTPUT_FILENAME = "output.txt"
METADATA_FILENAME = "metadata.json"

_SLUG_INVALID = re.compile(r"[^a-z0-9_-]+")


def utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_run_id(now: datetime | None = None) -> str:
    """``autopilot-<UTC ISO timestamp>`` with ``:`` and ``.`` made filename-safe."""

    moment = now or datetime.now(tz=UTC)
    stamp = moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return "autopilot-" + stamp.replace(":", "-").replace(".", "-")


def allocate_exec_id(context: RunContext) -> str:
    """Return the next ``exec-NNN`` id and advance the run's counter."""

    index = context.next_exec_index
    context.next_exec_index += 1
    return f"exec-{index:03d}"


def slugify_label(label: str) -> str:
    slug = _SLUG_INVALID.sub("-", label.lower()).strip("-")
    return slug or "exec"


def exec_dir_for(context: RunContext, exec_id: str, label: str) -> Path:
    return context.run_dir / f"{exec_id}-{slugify_label(label)}"


def write_exec_artifacts(  # noqa: PLR0913
    context: RunContext,
    exec_id: str,
    label: str,
    prompt: str,
    output: str,
    metadata: dict[str, Any],
) -> ExecArtifacts:
    """Write prompt, output and metadata captures for one execution.

    Raw captures the adapter already streamed into the directory (events, stderr,
    last message, argv) are picked up as well. Paths are relative to the run dir.
    """

    exec_dir = exec_dir_for(context, exec_id, label)
    exec_dir.mkdir(parents=True, exist_ok=True)

    (exec_dir / PROMPT_FILENAME).write_text(prompt, "utf-8")
    (exec_dir / OUTPUT_FILENAME).write_text(output, "utf-8")
    write_json(exec_dir / METADATA_FILENAME, metadata)

    def relative(name: str, *, required: bool = False) -> str | None:
        path = exec_dir / name
        if not required and not path.is_file():
            return None
        return path.relative_to(context.run_dir).as_posix()

    return ExecArtifacts(
        prompt_txt=relative(PROMPT_FILENAME, required=True),
        output_txt=relative(OUTPUT_FILENAME, required=True),
        metadata_json=relative(METADATA_FILENAME, required=True),
        last_message_txt=relative(LAST_MESSAGE_FILENAME),
        events_jsonl=relative(EVENTS_FILENAME),
        stderr_txt=relative(STDERR_FILENAME),
        argv_json=relative(ARGV_FILENAME),
    )


def write_json(path: Path, payload: dict[str, Any]) -> None:
    """Persist JSON atomically so readers never observe a partial document."""

    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(payload, ensure_ascii=False, indent=2)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def load_json(path: Path) -> dict[str, Any]:
    """Load JSON document and validate top-level object type."""

    payload = json.loads(path.read_text("utf-8"))
    if not isinstance(payload, dict):
        raise TypeError(f"Expected JSON object in {path}")
    return payload
