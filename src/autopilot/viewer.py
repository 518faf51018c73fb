"""Read-only HTTP API over captured runs under ``runs/autopilot/``.

The API only reads: run manifests, artifact files addressed relative to a run
directory, and codex transcripts by thread id. Keep it bound to localhost.
"""

from __future__ import annotations

import json
import logging
import re
import time
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse, Response

from autopilot import __version__
from autopilot.state.manifest import MANIFEST_FILENAME
from autopilot.state.transcripts import find_transcript_path

logger = logging.getLogger(__name__)

RUNS_SUBDIR = Path("runs") / "autopilot"
_RUN_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")

SECURITY_HEADERS = {
    "cache-control": "no-store",
    "x-content-type-options": "nosniff",
    "referrer-policy": "no-referrer",
    "cross-origin-resource-policy": "same-origin",
    "cross-origin-opener-policy": "same-origin",
    "content-security-policy": "; ".join(
        [
            "default-src 'none'",
            "base-uri 'none'",
            "form-action 'none'",
            "frame-ancestors 'none'",
            "script-src 'self'",
            "style-src 'self'",
            "img-src 'self' data:",
            "connect-src 'self'",
        ],
    ),
}

_TEXT_MEDIA_TYPE = "text/plain; charset=utf-8"


def is_safe_run_id(run_id: str) -> bool:
    return bool(_RUN_ID_PATTERN.match(run_id)) and run_id not in {".", ".."}


def resolve_base_dir(start: Path) -> Path:
    """Nearest ancestor of ``start`` holding ``runs/autopilot``, else ``start`` itself."""

    for candidate in (start, *start.parents):
        if (candidate / RUNS_SUBDIR).is_dir():
            return candidate
    return start


def list_runs(runs_dir: Path) -> list[dict[str, str]]:
    """Summaries of every readable manifest, newest first."""

    if not runs_dir.is_dir():
        return []
    entries: list[dict[str, str]] = []
    for run_dir in runs_dir.iterdir():
        if not run_dir.is_dir():
            continue
        try:
            payload = json.loads((run_dir / MANIFEST_FILENAME).read_text("utf-8"))
        except (OSError, ValueError):
            continue
        if not isinstance(payload, dict):
            continue
        entry = {"runId": run_dir.name, "startedAt": str(payload.get("startedAt", ""))}
        if payload.get("finishedAt"):
            entry["finishedAt"] = str(payload["finishedAt"])
        entries.append(entry)
    entries.sort(key=lambda item: item["startedAt"], reverse=True)
    return entries


def resolve_run_file(run_dir: Path, relative_path: str) -> Path:
    """Resolve an artifact path inside ``run_dir``.

    Raises ``ValueError`` for paths escaping the run directory (lexically or
    through symlinks) and ``FileNotFoundError`` for missing or non-regular files.
    """

    if Path(relative_path).is_absolute():
        raise ValueError(relative_path)
    real_run_dir = run_dir.resolve(strict=True)
    target = (real_run_dir / relative_path).resolve()
    if not _is_within(real_run_dir, target):
        raise ValueError(relative_path)
    if not target.is_file():
        raise FileNotFoundError(relative_path)
    return target


def _is_within(root: Path, target: Path) -> bool:
    return target != root and target.is_relative_to(root)


def _error(status_code: int, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": code})


def create_app(base_dir: Path, codex_home: Path, *, runs_dir: Path | None = None) -> FastAPI:
    """Build the viewer application for runs stored under ``base_dir``.

    ``runs_dir`` overrides the conventional ``runs/autopilot`` location.
    """

    if runs_dir is None:
        runs_dir = base_dir / RUNS_SUBDIR
    app = FastAPI(
        title="Autopilot run viewer",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.middleware("http")
    async def apply_security_headers(request: Request, call_next):
        start_time = time.monotonic()
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers[name] = value
        logger.debug(
            "%s %s %s %.3fs",
            request.method,
            request.url.path,
            response.status_code,
            time.monotonic() - start_time,
        )
        return response

    @app.get("/api/runs")
    async def runs_index() -> JSONResponse:
        return JSONResponse(content=list_runs(runs_dir))

    @app.get("/api/runs/{run_id}/manifest")
    async def run_manifest(run_id: str) -> Response:
        if not is_safe_run_id(run_id):
            return _error(400, "invalid_run_id")
        try:
            body = (runs_dir / run_id / MANIFEST_FILENAME).read_bytes()
        except OSError:
            return _error(404, "manifest_not_found")
        return Response(content=body, media_type="application/json")

    @app.get("/api/runs/{run_id}/file")
    async def run_file(run_id: str, path: str | None = None) -> Response:
        if not is_safe_run_id(run_id):
            return _error(400, "invalid_run_id")
        if not path:
            return _error(400, "missing_path")
        try:
            target = resolve_run_file(runs_dir / run_id, path)
        except ValueError:
            return _error(400, "invalid_path")
        except OSError:
            return _error(404, "file_not_found")
        return FileResponse(target, media_type=_TEXT_MEDIA_TYPE)

    @app.get("/api/transcript/{thread_id}")
    async def transcript(thread_id: str, meta: str | None = None) -> Response:
        not_found = PlainTextResponse(
            f"Transcript not found for thread {thread_id}.",
            status_code=404,
        )
        try:
            transcript_path = find_transcript_path(thread_id, codex_home)
        except OSError as error:
            logger.warning("Transcript lookup failed for %s: %s", thread_id, error)
            return not_found
        if transcript_path is None:
            return not_found
        if meta == "1":
            return JSONResponse(content={"path": str(transcript_path)})
        if not transcript_path.is_file():
            return not_found
        return FileResponse(
            transcript_path,
            media_type=_TEXT_MEDIA_TYPE,
            headers={"x-transcript-path": str(transcript_path)},
        )

    return app
