"""Token usage normalization for agent CLI output."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

_CODEX_TOKENS_USED = re.compile(r"tokens used\s*[:\r\n ]+\s*([\d,]+)", re.IGNORECASE)

_INPUT_KEYS = ("input_tokens", "prompt_tokens")
_OUTPUT_KEYS = ("output_tokens", "completion_tokens")
_CACHED_KEYS = ("cached_input_tokens", "cache_read_input_tokens")


@dataclass(slots=True)
class TokenUsage:
    """Best-effort token usage reported by an agent CLI."""

    input_tokens: int | None = None
    output_tokens: int | None = None
    cached_input_tokens: int | None = None
    total_tokens: int | None = None
    source: str = "reported"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"source": self.source}
        for key in ("input_tokens", "output_tokens", "cached_input_tokens", "total_tokens"):
            value = getattr(self, key)
            if value is not None:
                payload[_camel(key)] = value
        return payload


def extract_usage(payload: object) -> TokenUsage | None:
    """Normalize a usage object from codex or claude JSON output."""

    if not isinstance(payload, dict):
        return None
    input_tokens = _first_int(payload, _INPUT_KEYS)
    output_tokens = _first_int(payload, _OUTPUT_KEYS)
    cached = _first_int(payload, _CACHED_KEYS)
    total = _first_int(payload, ("total_tokens",))
    if input_tokens is None and output_tokens is None and total is None:
        return None
    source = "reported"
    if total is None:
        known = [value for value in (input_tokens, output_tokens) if value is not None]
        total = sum(known)
        source = "estimated"
    return TokenUsage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cached_input_tokens=cached,
        total_tokens=total,
        source=source,
    )


def extract_usage_from_text(text: str) -> TokenUsage | None:
    """Fallback for codex builds that only print ``tokens used N`` on stderr."""

    match = _CODEX_TOKENS_USED.search(text)
    if match is None:
        return None
    try:
        total = int(match.group(1).replace(",", ""))
    except ValueError:
        return None
    return TokenUsage(total_tokens=total, source="stderr")


def _first_int(payload: dict[str, Any], keys: tuple[str, ...]) -> int | None:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            return value
    return None


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)
