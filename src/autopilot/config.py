"""Runtime configuration for the autopilot run loop, adapters and viewer."""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

SUPPORTED_ADAPTERS = ("codex", "claude")
REASONING_EFFORTS = ("minimal", "low", "medium", "high", "xhigh")

DEFAULT_MODEL = "gpt-5.2-codex"
DEFAULT_EFFORT = "low"
DEFAULT_OUT_DIR = Path("runs/autopilot")


@dataclass(slots=True)
class AgentSettings:
    """Which agent CLI to drive and how."""

    adapter: str = "codex"
    model: str = DEFAULT_MODEL
    effort: str = DEFAULT_EFFORT
    unsafe: bool = False
    search: bool = False
    codex_command: tuple[str, ...] = ("codex",)
    claude_command: tuple[str, ...] = ("claude",)


@dataclass(slots=True)
class RunSettings:
    """Iteration and scheduling limits."""

    concurrency: int = 3
    max_iterations: int = 4
    out_dir: Path = DEFAULT_OUT_DIR
    output_truncate_chars: int = 18_000


@dataclass(slots=True)
class ViewerSettings:
    """Local viewer bind address."""

    host: str = "127.0.0.1"
    port: int = 4141


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    agent: AgentSettings = field(default_factory=AgentSettings)
    run: RunSettings = field(default_factory=RunSettings)
    viewer: ViewerSettings = field(default_factory=ViewerSettings)
    codex_home: Path = field(default_factory=lambda: Path.home() / ".codex")

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with defaults for local use."""

        return cls(
            agent=AgentSettings(
                adapter=os.getenv("AUTOPILOT_ADAPTER", "codex").strip().lower(),
                model=os.getenv("AUTOPILOT_MODEL", DEFAULT_MODEL),
                effort=normalize_effort(os.getenv("AUTOPILOT_EFFORT")),
                unsafe=_env_bool("AUTOPILOT_UNSAFE", default=False),
                search=_env_bool("AUTOPILOT_SEARCH", default=False),
                codex_command=_env_command("AUTOPILOT_CODEX_COMMAND", "codex"),
                claude_command=_env_command("AUTOPILOT_CLAUDE_COMMAND", "claude"),
            ),
            run=RunSettings(
                concurrency=_env_int("AUTOPILOT_CONCURRENCY", 3),
                max_iterations=_env_int("AUTOPILOT_MAX_ITERATIONS", 4),
                out_dir=Path(os.getenv("AUTOPILOT_OUT_DIR", str(DEFAULT_OUT_DIR))),
                output_truncate_chars=_env_int("AUTOPILOT_OUTPUT_TRUNCATE_CHARS", 18_000),
            ),
            viewer=ViewerSettings(
                host=os.getenv("AUTOPILOT_VIEWER_HOST", "127.0.0.1"),
                port=_env_int("AUTOPILOT_VIEWER_PORT", 4141),
            ),
            codex_home=_codex_home(),
        )

    def validate(self) -> None:
        """Raise configuration error for unsupported adapter or empty commands."""

        if self.agent.adapter not in SUPPORTED_ADAPTERS:
            raise ValueError(
                f"AUTOPILOT_ADAPTER must be one of {', '.join(SUPPORTED_ADAPTERS)}, "
                f"got {self.agent.adapter!r}.",
            )
        if not self.agent.codex_command:
            raise ValueError("AUTOPILOT_CODEX_COMMAND must not be empty.")
        if not self.agent.claude_command:
            raise ValueError("AUTOPILOT_CLAUDE_COMMAND must not be empty.")
        if self.run.output_truncate_chars <= 0:
            raise ValueError("AUTOPILOT_OUTPUT_TRUNCATE_CHARS must be > 0.")
        if not 0 < self.viewer.port < 65_536:
            raise ValueError("AUTOPILOT_VIEWER_PORT must be between 1 and 65535.")


def normalize_effort(value: object, default: str = DEFAULT_EFFORT) -> str:
    """Return ``value`` when it names a known reasoning effort, else ``default``."""

    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in REASONING_EFFORTS:
            return normalized
    return default


def resolve_step_settings(
    *,
    global_model: str,
    global_effort: str,
    workflow_defaults: dict[str, Any] | None,
    step_adapter_request: dict[str, Any] | None,
) -> tuple[str, str]:
    """Pick model and reasoning effort for one step.

    Precedence: step ``adapterRequest``, then workflow ``defaults.adapterRequest``,
    then the run-wide values.
    """

    defaults_request = (workflow_defaults or {}).get("adapterRequest")
    layers = [
        step_adapter_request or {},
        defaults_request if isinstance(defaults_request, dict) else {},
    ]

    model = global_model
    for layer in layers:
        candidate = layer.get("model")
        if isinstance(candidate, str) and candidate.strip():
            model = candidate.strip()
            break

    effort = global_effort
    for layer in layers:
        candidate = layer.get("modelReasoningEffort")
        if isinstance(candidate, str):
            effort = normalize_effort(candidate, default=global_effort)
            break

    return model, effort


def _codex_home() -> Path:
    raw = os.getenv("CODEX_HOME")
    if raw and raw.strip():
        return Path(raw.strip()).expanduser()
    return Path.home() / ".codex"


def _env_command(name: str, default: str) -> tuple[str, ...]:
    value = os.getenv(name)
    if value is None:
        return (default,)
    return tuple(shlex.split(value))


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
