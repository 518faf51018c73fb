"""Adapter selection by name."""

from __future__ import annotations

from autopilot.adapters.base import AgentAdapter
from autopilot.adapters.claude import ClaudeCliAdapter
from autopilot.adapters.codex import CodexCliAdapter
from autopilot.config import SUPPORTED_ADAPTERS, AgentSettings


def create_adapter(name: str, settings: AgentSettings | None = None) -> AgentAdapter:
    """Return the CLI adapter registered under ``name``."""

    agent = settings or AgentSettings()
    normalized = name.strip().lower()
    if normalized == "codex":
        return CodexCliAdapter(command=agent.codex_command)
    if normalized == "claude":
        return ClaudeCliAdapter(command=agent.claude_command)
    raise ValueError(
        f"Unsupported adapter: {name!r}. Expected one of: {', '.join(SUPPORTED_ADAPTERS)}.",
    )
