"""CLI entrypoint for autopilot."""

import logging
from pathlib import Path

import rich_click as click
import uvicorn

from autopilot import __version__
from autopilot.config import REASONING_EFFORTS, SUPPORTED_ADAPTERS, Settings
from autopilot.controllers import (
    AutopilotCliController,
    EnrichCommand,
    ResumeCommand,
    RunCommand,
    RunsListCommand,
)
from autopilot.viewer import RUNS_SUBDIR, create_app, resolve_base_dir

click.rich_click.USE_MARKDOWN = True
CONTROLLER = AutopilotCliController()

_OUT_DIR_HELP = "Runs directory. Defaults to AUTOPILOT_OUT_DIR or runs/autopilot."


@click.group()
@click.version_option(version=__version__, prog_name="autopilot")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging level for diagnostics on stderr.",
)
def autopilot(log_level: str) -> None:
    """Drive a coding-agent CLI through generate, execute and review iterations."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@autopilot.command("run")
@click.argument("task", nargs=-1, required=True)
@click.option(
    "--adapter",
    type=click.Choice(SUPPORTED_ADAPTERS, case_sensitive=False),
    default=None,
    help="Agent CLI to drive. Defaults to AUTOPILOT_ADAPTER or codex.",
)
@click.option("--model", default=None, help="Model passed to the agent CLI.")
@click.option(
    "--effort",
    type=click.Choice(REASONING_EFFORTS, case_sensitive=False),
    default=None,
    help="Reasoning effort for every call unless a workflow overrides it.",
)
@click.option(
    "--concurrency",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum number of steps running at once.",
)
@click.option(
    "--max-iterations",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum generate/execute/review iterations.",
)
@click.option(
    "--unsafe/--no-unsafe",
    default=None,
    help="Let the agent bypass approvals and sandboxing.",
)
@click.option("--search/--no-search", default=None, help="Enable agent web search.")
@click.option("--out-dir", type=click.Path(path_type=Path), default=None, help=_OUT_DIR_HELP)
def run(  # noqa: PLR0913
    task: tuple[str, ...],
    adapter: str | None,
    model: str | None,
    effort: str | None,
    concurrency: int | None,
    max_iterations: int | None,
    unsafe: bool | None,
    search: bool | None,
    out_dir: Path | None,
) -> None:
    """Run a task until the reviewer reports it done or iterations run out."""

    result = CONTROLLER.run(
        RunCommand(
            task=" ".join(task),
            adapter=adapter,
            model=model,
            effort=effort,
            concurrency=concurrency,
            max_iterations=max_iterations,
            unsafe=unsafe,
            search=search,
            out_dir=out_dir,
        ),
        on_progress=click.echo,
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Autopilot run failed.")


@autopilot.command("runs")
@click.option("--out-dir", type=click.Path(path_type=Path), default=None, help=_OUT_DIR_HELP)
def runs(out_dir: Path | None) -> None:
    """List captured runs, newest first."""

    _emit_lines(CONTROLLER.list_runs(RunsListCommand(out_dir=out_dir)))


@autopilot.command("resume")
@click.argument("run_id")
@click.argument("thread_id")
@click.argument("prompt", nargs=-1, required=True)
@click.option(
    "--adapter",
    type=click.Choice(SUPPORTED_ADAPTERS, case_sensitive=False),
    default=None,
    help="Agent CLI owning the thread.",
)
@click.option("--out-dir", type=click.Path(path_type=Path), default=None, help=_OUT_DIR_HELP)
def resume(
    run_id: str,
    thread_id: str,
    prompt: tuple[str, ...],
    adapter: str | None,
    out_dir: Path | None,
) -> None:
    """Send a follow-up prompt to an agent thread and record it in the run."""

    result = CONTROLLER.resume(
        ResumeCommand(
            run_id=run_id,
            thread_id=thread_id,
            prompt=" ".join(prompt),
            adapter=adapter,
            out_dir=out_dir,
        ),
        on_progress=click.echo,
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Resume failed.")


@autopilot.command("enrich")
@click.argument("run_id")
@click.option("--out-dir", type=click.Path(path_type=Path), default=None, help=_OUT_DIR_HELP)
@click.option(
    "--codex-home",
    type=click.Path(path_type=Path),
    default=None,
    help="Codex home holding sessions/. Defaults to CODEX_HOME or ~/.codex.",
)
def enrich(run_id: str, out_dir: Path | None, codex_home: Path | None) -> None:
    """Re-scan agent transcripts into the run's provenance graph."""

    result = CONTROLLER.enrich(EnrichCommand(run_id=run_id, out_dir=out_dir, codex_home=codex_home))
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Enrichment failed.")


@autopilot.command("viewer")
@click.option("--host", default=None, help="Bind address. Defaults to AUTOPILOT_VIEWER_HOST.")
@click.option("--port", type=click.IntRange(min=1, max=65_535), default=None, help="Bind port.")
@click.option(
    "--out-dir",
    type=click.Path(path_type=Path),
    envvar="AUTOPILOT_OUT_DIR",
    default=None,
    help="Runs directory. Defaults to AUTOPILOT_OUT_DIR or the nearest runs/autopilot.",
)
@click.option(
    "--codex-home",
    type=click.Path(path_type=Path),
    default=None,
    help="Codex home holding sessions/. Defaults to CODEX_HOME or ~/.codex.",
)
def viewer(
    host: str | None,
    port: int | None,
    out_dir: Path | None,
    codex_home: Path | None,
) -> None:
    """Serve the read-only run viewer API."""

    settings = Settings.from_env()
    base_dir = resolve_base_dir(Path.cwd())
    runs_dir = out_dir or base_dir / RUNS_SUBDIR
    resolved_home = codex_home or settings.codex_home
    bind_host = host or settings.viewer.host
    bind_port = port or settings.viewer.port
    _emit_lines(
        [
            f"Run viewer listening on http://{bind_host}:{bind_port}",
            f"Runs dir: {runs_dir}",
            f"Codex home: {resolved_home}",
        ],
    )
    app = create_app(base_dir, resolved_home, runs_dir=runs_dir)
    uvicorn.run(app, host=bind_host, port=bind_port)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    autopilot()
