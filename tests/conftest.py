"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from autopilot.adapters.base import ExecuteRequest, ExecuteResult, resume_request
from autopilot.state.models import RunOptions

GENERATOR_MARKER = "use the workflow-generator skill."
REVIEWER_MARKER = "use the reviewer skill."

Reply = str | ExecuteResult | Exception


class ScriptedAdapter:
    """In-memory agent that answers generator, step and reviewer prompts from callbacks.

    Each callback receives the request and returns output text, a full
    ``ExecuteResult``, or an exception to raise. Thread ids are ``thread-<n>``.
    """

    name = "scripted"
    supports_transcripts = False

    def __init__(
        self,
        *,
        generate: Callable[[ExecuteRequest], Reply] | None = None,
        step: Callable[[ExecuteRequest], Reply] | None = None,
        review: Callable[[ExecuteRequest], Reply] | None = None,
        delay: float = 0.0,
    ) -> None:
        self._generate = generate or (lambda _request: "{}")
        self._step = step or (lambda _request: "ok")
        self._review = review or (lambda _request: json.dumps({"done": True}))
        self._delay = delay
        self.calls: list[ExecuteRequest] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def prompts(self, marker: str | None = None) -> list[str]:
        return [call.prompt for call in self.calls if marker is None or marker in call.prompt]

    def step_prompts(self) -> list[str]:
        return [
            call.prompt
            for call in self.calls
            if GENERATOR_MARKER not in call.prompt and REVIEWER_MARKER not in call.prompt
        ]

    async def execute(self, request: ExecuteRequest) -> ExecuteResult:
        self.calls.append(request)
        call_number = len(self.calls)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self._delay:
                await asyncio.sleep(self._delay)
            if request.prompt.startswith(GENERATOR_MARKER):
                reply = self._generate(request)
            elif request.prompt.startswith(REVIEWER_MARKER):
                reply = self._review(request)
            else:
                reply = self._step(request)
        finally:
            self.in_flight -= 1

        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, ExecuteResult):
            return reply
        return ExecuteResult(
            session_id=request.resume_thread_id or f"thread-{call_number}",
            output_text=reply,
        )

    async def resume(
        self,
        session_id: str,
        prompt: str,
        request: ExecuteRequest | None = None,
    ) -> ExecuteResult:
        return await self.execute(resume_request(session_id, prompt, request))


def workflow_json(workflow_id: str, steps: list[dict[str, Any]], **extra: Any) -> str:
    return json.dumps({"version": 1, "id": workflow_id, "steps": steps, **extra})


def write_transcript(
    codex_home: Path,
    thread_id: str,
    events: list[dict[str, Any]],
    *,
    name_prefix: str = "rollout-2025-01-01T00-00-00",
) -> Path:
    """Write a codex-style session transcript with ``event_msg`` records."""

    day_dir = codex_home / "sessions" / "2025" / "01" / "01"
    day_dir.mkdir(parents=True, exist_ok=True)
    path = day_dir / f"{name_prefix}-{thread_id}.jsonl"
    lines = [json.dumps({"type": "session_meta", "payload": {"id": thread_id}})]
    lines += [json.dumps({"type": "event_msg", "payload": event}) for event in events]
    path.write_text("\n".join(lines) + "\n", "utf-8")
    return path


@pytest.fixture()
def run_options() -> RunOptions:
    return RunOptions(
        adapter="scripted",
        model="test-model",
        effort="low",
        concurrency=3,
        max_iterations=3,
    )


@pytest.fixture()
def out_dir(tmp_path: Path) -> Path:
    path = tmp_path / "runs" / "autopilot"
    path.mkdir(parents=True)
    return path


@pytest.fixture()
def scripted_adapter() -> type[ScriptedAdapter]:
    return ScriptedAdapter


@pytest.fixture()
def make_workflow_json() -> Callable[..., str]:
    return workflow_json


@pytest.fixture()
def transcript_writer() -> Callable[..., Path]:
    return write_transcript
