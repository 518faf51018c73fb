"""Best-effort JSON object recovery from agent output text."""

from __future__ import annotations

import json
import re
from collections.abc import Iterator

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)

TRUNCATE_HEAD_RATIO = 0.7


def extract_json_object(text: str) -> dict[str, object] | None:
    """Return the most likely JSON object embedded in ``text``, or ``None``."""

    return next(iter_json_objects(text), None)


def iter_json_objects(text: str) -> Iterator[dict[str, object]]:
    """Yield every distinct JSON object recoverable from ``text``, most likely first.

    Tried in order: the whole text, fenced ```json blocks, the slice between the
    first ``{`` and the last ``}``, then each top-level object found scanning left
    to right. Callers pick the first candidate that fits their shape.
    """

    stripped = text.strip()
    if not stripped:
        return

    start = stripped.find("{")
    end = stripped.rfind("}")
    candidates = [stripped, *(match.group(1) for match in _FENCED_JSON.finditer(stripped))]
    if start != -1 and end > start:
        candidates.append(stripped[start : end + 1])

    seen: list[dict[str, object]] = []
    for raw in candidates:
        payload = _try_load_dict(raw)
        if payload is not None and payload not in seen:
            seen.append(payload)
            yield payload

    for payload in _scan_for_objects(stripped, start):
        if payload not in seen:
            seen.append(payload)
            yield payload


def truncate(text: str, max_chars: int) -> str:
    """Keep the head and tail of ``text`` so it fits into ``max_chars``."""

    if max_chars <= 0 or len(text) <= max_chars:
        return text
    head = int(max_chars * TRUNCATE_HEAD_RATIO)
    tail = max_chars - head
    omitted = len(text) - max_chars
    tail_text = text[-tail:] if tail > 0 else ""
    return f"{text[:head]}\n...(truncated {omitted} chars)...\n{tail_text}"


def _try_load_dict(raw: str) -> dict[str, object] | None:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def _scan_for_objects(text: str, start: int) -> Iterator[dict[str, object]]:
    decoder = json.JSONDecoder()
    index = start
    while index != -1:
        try:
            parsed, end = decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            index = text.find("{", index + 1)
            continue
        if isinstance(parsed, dict):
            yield parsed
            index = text.find("{", end)
        else:
            index = text.find("{", index + 1)
