"""AutopilotRunner: generate -> execute -> review loop over an agent CLI."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from autopilot.adapters.base import AgentAdapter
from autopilot.capture import CapturedExec, ExecRecorder
from autopilot.config import resolve_step_settings
from autopilot.errors import AutopilotError
from autopilot.state.manifest import MANIFEST_FILENAME, ManifestStore, RunStatus
from autopilot.state.models import UNKNOWN_THREAD_ID, RunOptions
from autopilot.workflow.models import (
    CompletionCheck,
    CompletionPending,
    StepResult,
    StepStatus,
    Workflow,
    WorkflowStep,
)
from autopilot.workflow.parser import parse_completion_check, parse_workflow
from autopilot.workflow.prompts import (
    DEFAULT_OUTPUT_TRUNCATE_CHARS,
    build_carry_summary,
    build_completion_prompt,
    build_step_prompt,
    build_workflow_prompt,
)
from autopilot.workflow.resolver import find_ready_steps, raise_unschedulable, resolve_waves

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class IterationRecord:
    """One generate/execute/review cycle."""

    index: int
    workflow: Workflow
    steps: list[StepResult]
    completion: CompletionCheck
    generator_exec_id: str | None = None
    completion_exec_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "workflow": self.workflow.to_dict(),
            "steps": [result.to_dict() for result in self.steps],
            "completion": self.completion.to_dict(),
            "generatorExecId": self.generator_exec_id,
            "completionExecId": self.completion_exec_id,
        }


@dataclass(slots=True)
class RunResult:
    """Result of a complete autopilot run."""

    run_id: str
    run_dir: Path
    status: RunStatus = RunStatus.RUNNING
    summary: str | None = None
    error: str | None = None
    iterations: list[IterationRecord] = field(default_factory=list)

    @property
    def manifest_path(self) -> Path:
        return self.run_dir / MANIFEST_FILENAME


class AutopilotRunner:
    """Drives one run: workflow generation, rolling-window step execution, review.

    All steps share a single event loop; at most ``concurrency`` adapter calls are
    in flight at once, and a step starts as soon as its dependencies are done and
    a slot is free.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        adapter: AgentAdapter,
        options: RunOptions,
        out_dir: Path,
        cwd: Path | None = None,
        codex_home: Path | None = None,
        output_truncate_chars: int = DEFAULT_OUTPUT_TRUNCATE_CHARS,
        on_progress: Callable[[str], None] | None = None,
    ) -> None:
        self._adapter = adapter
        self._options = options
        self._out_dir = out_dir
        self._cwd = cwd or Path.cwd()
        self._codex_home = codex_home
        self._truncate_chars = output_truncate_chars
        self._on_progress = on_progress or (lambda _msg: None)

    def _emit(self, msg: str) -> None:
        """Log and notify progress callback."""
        logger.info(msg)
        self._on_progress(msg)

    async def run(self, task: str) -> RunResult:
        """Run the loop until the reviewer is satisfied or iterations run out.

        Never raises for run-level failures: they end the run with status
        ``error``. The manifest is finalized and flushed on every exit path.
        """

        store = ManifestStore.create(
            task=task,
            options=self._options,
            out_dir=self._out_dir,
            cwd=self._cwd,
        )
        recorder = ExecRecorder(store=store, adapter=self._adapter, codex_home=self._codex_home)
        result = RunResult(run_id=store.context.run_id, run_dir=store.run_dir)
        run_start = time.monotonic()
        self._emit(
            f"Run {result.run_id} started: adapter={self._adapter.name} "
            f"model={self._options.model} maxIterations={self._options.max_iterations}",
        )
        await store.write()

        try:
            await self._iterate(task, store, recorder, result)
        except AutopilotError as exc:
            result.status = RunStatus.ERROR
            result.error = str(exc)
            logger.error("Run %s failed: %s", result.run_id, exc)
        except Exception as exc:  # noqa: BLE001
            result.status = RunStatus.ERROR
            result.error = f"Unexpected error: {exc}"
            logger.exception("Run %s unexpected error", result.run_id)
        finally:
            if result.status == RunStatus.RUNNING:
                result.status = RunStatus.ERROR
                result.error = result.error or "Run interrupted"
            store.finalize(result.status, result.error)
            await store.write()
            await store.write_run_state(_run_state(task, self._options, result))

        elapsed = time.monotonic() - run_start
        self._emit(f"Run {result.run_id} finished: {result.status.value} in {elapsed:.1f}s")
        return result

    async def _iterate(
        self,
        task: str,
        store: ManifestStore,
        recorder: ExecRecorder,
        result: RunResult,
    ) -> None:
        carry_summary = ""
        override: Workflow | None = None
        pending_completion_exec_id: str | None = None

        for iteration in range(1, self._options.max_iterations + 1):
            if override is not None:
                workflow = override
                generator_exec_id = pending_completion_exec_id
                self._emit(f"Iteration {iteration}: using reviewer workflow {workflow.id}")
            else:
                workflow, generator_exec_id = await self._generate_workflow(
                    task,
                    iteration,
                    carry_summary,
                    recorder,
                )
                if pending_completion_exec_id:
                    store.graph.record_completion_to_workflow_edge(
                        pending_completion_exec_id,
                        generator_exec_id,
                    )
                    await store.write()
            override = None
            pending_completion_exec_id = None
            self._emit(
                f"Iteration {iteration}: workflow={workflow.id} steps={len(workflow.steps)}",
            )

            step_results = await self._execute_workflow(task, workflow, recorder)
            store.graph.record_depends_on_edges(workflow, step_results)
            await store.write()

            completion, completion_exec_id = await self._check_completion(
                task,
                workflow,
                step_results,
                iteration,
                recorder,
            )
            store.graph.record_invokes_edges(generator_exec_id, step_results, completion_exec_id)
            await store.write()

            result.iterations.append(
                IterationRecord(
                    index=iteration,
                    workflow=workflow,
                    steps=step_results,
                    completion=completion,
                    generator_exec_id=generator_exec_id,
                    completion_exec_id=completion_exec_id,
                ),
            )
            await store.write_run_state(_run_state(task, self._options, result))

            if not isinstance(completion, CompletionPending):
                result.status = RunStatus.COMPLETED
                result.summary = completion.summary
                self._emit(f"Done: {completion.summary}")
                return

            self._emit(f"Not done: {completion.reason}")
            if completion.rejected_workflow_error:
                store.graph.record_warning(
                    f"Reviewer nextWorkflow rejected in iteration {iteration}: "
                    f"{completion.rejected_workflow_error}",
                )
            if completion.next_workflow is not None:
                self._emit("Reviewer provided next workflow; continuing.")
                override = completion.next_workflow
            carry_summary = build_carry_summary(workflow, step_results, completion)
            pending_completion_exec_id = completion_exec_id

        result.status = RunStatus.MAX_ITERATIONS
        self._emit(f"Stopped after maxIterations={self._options.max_iterations}")

    async def _generate_workflow(
        self,
        task: str,
        iteration: int,
        carry_summary: str,
        recorder: ExecRecorder,
    ) -> tuple[Workflow, str]:
        captured = await recorder.run(
            label=f"workflow-gen:iteration-{iteration}",
            prompt=build_workflow_prompt(task, iteration, carry_summary),
            model=self._options.model,
            effort=self._options.effort,
        )
        execute_result = captured.raise_for_error()
        return parse_workflow(execute_result.output_text), captured.exec_id

    async def _execute_workflow(
        self,
        task: str,
        workflow: Workflow,
        recorder: ExecRecorder,
    ) -> list[StepResult]:
        """Run every step, starting each as soon as its dependencies finished.

        Raises ``CircularDependencyError``/``StuckWorkflowError`` before any step
        starts when the workflow cannot be scheduled.
        """

        waves = resolve_waves(workflow.steps)
        limit = max(1, workflow.concurrency or self._options.concurrency)
        logger.info(
            "Workflow %s: %d steps in %d waves, concurrency=%d",
            workflow.id,
            len(workflow.steps),
            len(waves),
            limit,
        )

        completed: dict[str, StepResult] = {}
        running: dict[asyncio.Task[StepResult], str] = {}
        try:
            while len(completed) < len(workflow.steps):
                ready = find_ready_steps(
                    workflow.steps,
                    completed=completed,
                    running=set(running.values()),
                )
                for step in ready[: limit - len(running)]:
                    task_handle = asyncio.create_task(
                        self._execute_step(task, workflow, step, dict(completed), recorder),
                    )
                    running[task_handle] = step.id

                if not running:
                    raise_unschedulable(workflow.steps, completed=completed)

                done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
                for finished in done:
                    running.pop(finished)
                    step_result = finished.result()
                    completed[step_result.step_id] = step_result
                    suffix = f" error={step_result.error}" if step_result.error else ""
                    self._emit(
                        f"[step:{step_result.step_id}] {step_result.status.value} "
                        f"thread={step_result.thread_id}{suffix}",
                    )
        finally:
            for pending in running:
                pending.cancel()

        return [completed[step.id] for step in workflow.steps]

    async def _execute_step(
        self,
        task: str,
        workflow: Workflow,
        step: WorkflowStep,
        completed: dict[str, StepResult],
        recorder: ExecRecorder,
    ) -> StepResult:
        model, effort = resolve_step_settings(
            global_model=self._options.model,
            global_effort=self._options.effort,
            workflow_defaults=workflow.defaults,
            step_adapter_request=step.adapter_request,
        )
        captured = await recorder.run(
            label=f"step:{step.id}",
            prompt=build_step_prompt(task, step, completed),
            model=model,
            effort=effort,
        )
        thread_id = captured.thread_id if captured.thread_id != UNKNOWN_THREAD_ID else None
        usage = captured.result.usage if captured.result is not None else None
        if captured.error is not None:
            return StepResult(
                step_id=step.id,
                status=StepStatus.FAILED,
                thread_id=thread_id,
                exec_id=captured.exec_id,
                output_text=captured.output_text,
                usage=usage,
                error=str(captured.error),
            )
        return StepResult(
            step_id=step.id,
            status=StepStatus.SUCCEEDED,
            thread_id=thread_id,
            exec_id=captured.exec_id,
            output_text=captured.output_text,
            usage=usage,
        )

    async def _check_completion(  # noqa: PLR0913
        self,
        task: str,
        workflow: Workflow,
        step_results: list[StepResult],
        iteration: int,
        recorder: ExecRecorder,
    ) -> tuple[CompletionCheck, str]:
        captured = await recorder.run(
            label=f"completion-check:iteration-{iteration}",
            prompt=build_completion_prompt(
                task,
                workflow,
                step_results,
                iteration,
                max_output_chars=self._truncate_chars,
            ),
            model=self._options.model,
            effort=self._options.effort,
        )
        execute_result = captured.raise_for_error()
        return parse_completion_check(execute_result.output_text), captured.exec_id


def _run_state(task: str, options: RunOptions, result: RunResult) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "runId": result.run_id,
        "task": task,
        "options": options.to_dict(),
        "status": result.status.value,
        "iterations": [record.to_dict() for record in result.iterations],
    }
    if result.summary is not None:
        payload["summary"] = result.summary
    if result.error is not None:
        payload["error"] = result.error
    return payload


async def resume_run_thread(  # noqa: PLR0913
    run_dir: Path,
    *,
    adapter: AgentAdapter,
    thread_id: str,
    prompt: str,
    codex_home: Path | None = None,
    model: str | None = None,
    effort: str | None = None,
) -> CapturedExec:
    """Send a follow-up prompt to a thread of a finished run and record it there."""

    store = ManifestStore.load(run_dir)
    recorder = ExecRecorder(store=store, adapter=adapter, codex_home=codex_home)
    captured = await recorder.run(
        label=f"resume:{thread_id}",
        prompt=prompt,
        model=model or store.context.options.model,
        effort=effort or store.context.options.effort,
        resume_thread_id=thread_id,
    )
    logger.info(
        "Resumed thread %s in run %s as %s",
        thread_id,
        store.context.run_id,
        captured.exec_id,
    )
    return captured


async def enrich_run(run_dir: Path, *, codex_home: Path) -> ManifestStore:
    """Re-scan transcripts for every thread of a persisted run.

    Safe to repeat: edges already present are not added again.
    """

    store = ManifestStore.load(run_dir)
    for entry in store.execs:
        if entry.has_thread:
            store.graph.enrich_from_transcript(entry.thread_id, codex_home)
    await store.write()
    return store
