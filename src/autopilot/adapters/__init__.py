"""Agent CLI adapter implementations."""

from autopilot.adapters.base import AgentAdapter, ExecuteRequest, ExecuteResult
from autopilot.adapters.claude import ClaudeCliAdapter
from autopilot.adapters.codex import CodexCliAdapter
from autopilot.adapters.factory import create_adapter
from autopilot.adapters.usage import TokenUsage, extract_usage

__all__ = [
    "AgentAdapter",
    "ClaudeCliAdapter",
    "CodexCliAdapter",
    "ExecuteRequest",
    "ExecuteResult",
    "TokenUsage",
    "create_adapter",
    "extract_usage",
]
