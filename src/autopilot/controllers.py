"""CLI controller for autopilot commands."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from autopilot.adapters.factory import create_adapter
from autopilot.config import Settings, normalize_effort
from autopilot.runner import AutopilotRunner, RunResult, enrich_run, resume_run_thread
from autopilot.state.manifest import MANIFEST_FILENAME, ManifestStore, RunStatus
from autopilot.state.models import RunOptions

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RunCommand:
    """Input for ``autopilot run``."""

    task: str
    adapter: str | None = None
    model: str | None = None
    effort: str | None = None
    concurrency: int | None = None
    max_iterations: int | None = None
    unsafe: bool | None = None
    search: bool | None = None
    out_dir: Path | None = None


@dataclass(slots=True)
class RunsListCommand:
    """Input for ``autopilot runs``."""

    out_dir: Path | None = None


@dataclass(slots=True)
class ResumeCommand:
    """Input for ``autopilot resume``."""

    run_id: str
    thread_id: str
    prompt: str
    adapter: str | None = None
    out_dir: Path | None = None


@dataclass(slots=True)
class EnrichCommand:
    """Input for ``autopilot enrich``."""

    run_id: str
    out_dir: Path | None = None
    codex_home: Path | None = None


@dataclass(slots=True)
class CommandResult:
    """Lines to print and whether the command succeeded."""

    lines: list[str] = field(default_factory=list)
    success: bool = True


class AutopilotCliController:
    """CLI controller for autopilot runs and run maintenance."""

    def run(
        self,
        command: RunCommand,
        on_progress: Callable[[str], None] | None = None,
    ) -> CommandResult:
        """Execute one autopilot run, streaming progress lines as they happen."""

        settings = Settings.from_env()
        _apply_overrides(settings, command)
        settings.validate()

        options = RunOptions(
            adapter=settings.agent.adapter,
            model=settings.agent.model,
            effort=settings.agent.effort,
            concurrency=settings.run.concurrency,
            max_iterations=settings.run.max_iterations,
            unsafe=settings.agent.unsafe,
            search=settings.agent.search,
        )
        runner = AutopilotRunner(
            adapter=create_adapter(settings.agent.adapter, settings.agent),
            options=options,
            out_dir=settings.run.out_dir,
            codex_home=settings.codex_home,
            output_truncate_chars=settings.run.output_truncate_chars,
            on_progress=on_progress,
        )
        result = asyncio.run(runner.run(command.task))
        return CommandResult(
            lines=_format_run_result(result),
            success=result.status != RunStatus.ERROR,
        )

    def list_runs(self, command: RunsListCommand) -> list[str]:
        """Summarize persisted runs, newest first."""

        out_dir = command.out_dir or Settings.from_env().run.out_dir
        stores = _load_stores(out_dir)
        if not stores:
            return [f"No runs found in {out_dir}"]
        lines = [f"Runs: {len(stores)}"]
        for store in stores:
            lines.append(
                f"- {store.context.run_id} status={store.status.value} "
                f"started={store.context.started_at} finished={store.finished_at or '-'} "
                f"execs={len(store.execs)}",
            )
        return lines

    def resume(
        self,
        command: ResumeCommand,
        on_progress: Callable[[str], None] | None = None,
    ) -> CommandResult:
        """Send a follow-up prompt to one thread of an existing run."""

        settings = Settings.from_env()
        if command.adapter:
            settings.agent.adapter = command.adapter.strip().lower()
        settings.validate()
        run_dir = (command.out_dir or settings.run.out_dir) / command.run_id
        if not (run_dir / MANIFEST_FILENAME).exists():
            return CommandResult(lines=[f"Run not found: {run_dir}"], success=False)

        if on_progress is not None:
            on_progress(f"Resuming thread {command.thread_id} in run {command.run_id}")
        captured = asyncio.run(
            resume_run_thread(
                run_dir,
                adapter=create_adapter(settings.agent.adapter, settings.agent),
                thread_id=command.thread_id,
                prompt=command.prompt,
                codex_home=settings.codex_home,
            ),
        )
        lines = [f"Exec: {captured.exec_id}", f"Thread: {captured.thread_id}"]
        if captured.error is not None:
            lines.append(f"Error: {captured.error}")
            return CommandResult(lines=lines, success=False)
        lines.append(captured.output_text)
        return CommandResult(lines=lines)

    def enrich(self, command: EnrichCommand) -> CommandResult:
        """Re-scan transcripts of a persisted run into its provenance graph."""

        settings = Settings.from_env()
        run_dir = (command.out_dir or settings.run.out_dir) / command.run_id
        if not (run_dir / MANIFEST_FILENAME).exists():
            return CommandResult(lines=[f"Run not found: {run_dir}"], success=False)

        codex_home = command.codex_home or settings.codex_home
        store = asyncio.run(enrich_run(run_dir, codex_home=codex_home))
        graph = store.graph
        lines = [
            f"Run {store.context.run_id}: nodes={len(graph.nodes)} edges={len(graph.edges)}",
            *(f"Warning: {warning}" for warning in graph.warnings),
        ]
        return CommandResult(lines=lines)


def _apply_overrides(settings: Settings, command: RunCommand) -> None:
    agent = settings.agent
    if command.adapter is not None:
        agent.adapter = command.adapter.strip().lower()
    if command.model is not None:
        agent.model = command.model
    if command.effort is not None:
        agent.effort = normalize_effort(command.effort, default=agent.effort)
    if command.unsafe is not None:
        agent.unsafe = command.unsafe
    if command.search is not None:
        agent.search = command.search
    if command.concurrency is not None:
        settings.run.concurrency = max(1, command.concurrency)
    if command.max_iterations is not None:
        settings.run.max_iterations = max(1, command.max_iterations)
    if command.out_dir is not None:
        settings.run.out_dir = command.out_dir


def _format_run_result(result: RunResult) -> list[str]:
    lines = [
        f"Run ID: {result.run_id}",
        f"Status: {result.status.value}",
        f"Iterations: {len(result.iterations)}",
        f"Manifest: {result.manifest_path}",
    ]
    if result.summary:
        lines.append(f"Summary: {result.summary}")
    if result.error:
        lines.append(f"Error: {result.error}")
    return lines


def _load_stores(out_dir: Path) -> list[ManifestStore]:
    if not out_dir.is_dir():
        return []
    stores: list[ManifestStore] = []
    for run_dir in out_dir.iterdir():
        if not (run_dir / MANIFEST_FILENAME).is_file():
            continue
        try:
            stores.append(ManifestStore.load(run_dir))
        except (OSError, TypeError, ValueError) as error:
            logger.warning("Skipping unreadable run %s: %s", run_dir, error)
    stores.sort(key=lambda store: store.context.started_at, reverse=True)
    return stores
