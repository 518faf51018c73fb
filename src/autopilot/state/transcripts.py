"""Lookup and parsing of codex session transcripts (``rollout-*.jsonl``)."""

from __future__ import annotations

import json
import os
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

COLLAB_EVENT_TYPES = frozenset(
    {
        "collab_agent_spawn_begin",
        "collab_agent_spawn_end",
        "collab_agent_interaction_begin",
        "collab_agent_interaction_end",
    },
)


@dataclass(slots=True, frozen=True)
class CollabEvent:
    """A spawn or interaction between two agent threads seen in a transcript."""

    kind: str
    sender_thread_id: str
    target_thread_id: str
    call_id: str | None
    status: str
    prompt: str | None


def sessions_dir(codex_home: Path) -> Path:
    return codex_home / "sessions"


def find_transcript_path(thread_id: str, codex_home: Path) -> Path | None:
    """Most recently modified ``rollout-*-<thread_id>.jsonl`` under the sessions dir.

    Raises ``OSError`` when the sessions directory exists but cannot be walked.
    """

    root = sessions_dir(codex_home)
    if not root.is_dir():
        return None

    suffix = f"-{thread_id}.jsonl"
    candidates: list[tuple[float, Path]] = []

    def on_error(error: OSError) -> None:
        if Path(error.filename or "") == root:
            raise error

    for dirpath, _dirnames, filenames in os.walk(root, onerror=on_error):
        for filename in filenames:
            if not filename.startswith("rollout-") or suffix not in filename:
                continue
            path = Path(dirpath) / filename
            try:
                if not path.is_file():
                    continue
                candidates.append((path.stat().st_mtime, path))
            except OSError:
                continue

    if not candidates:
        return None
    candidates.sort(key=lambda item: item[0], reverse=True)
    return candidates[0][1]


def iter_collab_events(path: Path) -> Iterator[CollabEvent]:
    """Yield spawn/interaction events; malformed or unrelated lines are skipped."""

    with path.open(encoding="utf-8") as handle:
        for line in handle:
            stripped = line.strip()
            if not stripped:
                continue
            try:
                record = json.loads(stripped)
            except json.JSONDecodeError:
                continue
            event = _collab_event(record)
            if event is not None:
                yield event


def _collab_event(record: object) -> CollabEvent | None:
    if not isinstance(record, dict) or record.get("type") != "event_msg":
        return None
    payload = record.get("payload")
    if not isinstance(payload, dict):
        return None
    event_type = payload.get("type")
    if event_type not in COLLAB_EVENT_TYPES:
        return None

    sender = _text(payload.get("sender_thread_id"))
    target = _text(payload.get("new_thread_id")) or _text(payload.get("receiver_thread_id"))
    if not sender or not target:
        return None

    status = _text(payload.get("status"))
    if not status:
        status = "begin" if event_type.endswith("_begin") else "end"
    return CollabEvent(
        kind="spawn" if "spawn" in event_type else "interact",
        sender_thread_id=sender,
        target_thread_id=target,
        call_id=_text(payload.get("call_id")) or None,
        status=status,
        prompt=payload["prompt"] if isinstance(payload.get("prompt"), str) else None,
    )


def _text(value: object) -> str:
    return value if isinstance(value, str) else ""
