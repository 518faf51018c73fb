"""Async subprocess runner that tees agent output into capture files."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager, suppress
from dataclasses import dataclass
from pathlib import Path
from typing import IO

from autopilot.errors import AdapterError

logger = logging.getLogger(__name__)

STREAM_LIMIT_BYTES = 16 * 1024 * 1024


class _OversizedLineError(Exception):
    pass


@dataclass(slots=True)
class ProcessOutput:
    """Exit status and captured text of a finished agent process."""

    exit_code: int
    stdout: str
    stderr: str


async def run_agent_process(  # noqa: PLR0913
    argv: list[str],
    *,
    cwd: Path,
    stdout_path: Path | None = None,
    stderr_path: Path | None = None,
    on_stdout_line: Callable[[str], None] | None = None,
    env: dict[str, str] | None = None,
    stream_limit: int = STREAM_LIMIT_BYTES,
) -> ProcessOutput:
    """Spawn ``argv`` and stream stdout/stderr line by line as they arrive.

    Raises ``AdapterError`` when the executable cannot be started or emits a line
    longer than ``stream_limit`` bytes. The process is killed and reaped before any
    error leaves this function.
    """

    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd),
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=stream_limit,
        )
    except FileNotFoundError as error:
        _append(stderr_path, f"Failed to spawn {argv[0]}: {error}\n")
        raise AdapterError(f"Agent command not found: {argv[0]}", transient=False) from error
    except OSError as error:
        _append(stderr_path, f"Failed to spawn {argv[0]}: {error}\n")
        raise AdapterError(f"Agent command failed to start: {error}", transient=True) from error

    logger.debug("Spawned %s (pid=%s)", argv[0], process.pid)
    stdout_lines: list[str] = []
    stderr_lines: list[str] = []
    with _open_sink(stdout_path) as stdout_sink, _open_sink(stderr_path) as stderr_sink:
        assert process.stdout is not None
        assert process.stderr is not None
        pumps = [
            asyncio.ensure_future(
                _pump(process.stdout, stdout_lines, stdout_sink, on_stdout_line),
            ),
            asyncio.ensure_future(_pump(process.stderr, stderr_lines, stderr_sink, None)),
        ]
        try:
            await asyncio.gather(*pumps)
            exit_code = await process.wait()
        except _OversizedLineError as error:
            await _stop(process, pumps)
            message = f"Agent output line exceeded {stream_limit} bytes; process killed."
            logger.warning("%s (%s)", message, argv[0])
            if stderr_sink is not None:
                stderr_sink.write(message + "\n")
            raise AdapterError(message, exit_code=process.returncode) from error
        except BaseException:
            await _stop(process, pumps)
            raise

    return ProcessOutput(
        exit_code=exit_code,
        stdout="".join(stdout_lines),
        stderr="".join(stderr_lines),
    )


async def _stop(process: asyncio.subprocess.Process, pumps: list[asyncio.Future[None]]) -> None:
    if process.returncode is None:
        with suppress(ProcessLookupError):
            process.kill()
    for pump in pumps:
        pump.cancel()
    await asyncio.gather(*pumps, return_exceptions=True)
    await process.wait()


async def _pump(
    stream: asyncio.StreamReader,
    lines: list[str],
    sink: IO[str] | None,
    on_line: Callable[[str], None] | None,
) -> None:
    while True:
        try:
            raw = await stream.readline()
        except (ValueError, asyncio.LimitOverrunError) as error:
            raise _OversizedLineError from error
        if not raw:
            return
        line = raw.decode("utf-8", errors="replace")
        lines.append(line)
        if sink is not None:
            sink.write(line)
            sink.flush()
        if on_line is not None:
            on_line(line)


@contextmanager
def _open_sink(path: Path | None) -> Iterator[IO[str] | None]:
    if path is None:
        yield None
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        yield handle


def _append(path: Path | None, text: str) -> None:
    if path is None:
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(text)
