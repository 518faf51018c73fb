"""Dependency ordering for workflow steps."""

from __future__ import annotations

from collections.abc import Collection, Sequence

from autopilot.errors import CircularDependencyError, StuckWorkflowError
from autopilot.workflow.models import WorkflowStep


def resolve_waves(steps: Sequence[WorkflowStep]) -> list[list[WorkflowStep]]:
    """Group steps into waves whose dependencies are satisfied by earlier waves.

    Raises ``CircularDependencyError`` when dependencies form a cycle and
    ``StuckWorkflowError`` when some step waits on an id that no step provides.
    """

    completed: set[str] = set()
    waves: list[list[WorkflowStep]] = []
    while len(completed) < len(steps):
        ready = find_ready_steps(steps, completed=completed, running=())
        if not ready:
            raise_unschedulable(steps, completed=completed)
        waves.append(ready)
        completed.update(step.id for step in ready)
    return waves


def detect_cycle(steps: Sequence[WorkflowStep]) -> list[str] | None:
    """Return the first dependency cycle as a closed path, e.g. ``[a, b, a]``."""

    by_id = {step.id: step for step in steps}
    visited: set[str] = set()
    in_stack: set[str] = set()
    path: list[str] = []

    def visit(step_id: str) -> list[str] | None:
        if step_id in in_stack:
            start = path.index(step_id)
            return [*path[start:], step_id]
        if step_id in visited:
            return None

        visited.add(step_id)
        in_stack.add(step_id)
        path.append(step_id)

        step = by_id.get(step_id)
        if step is not None:
            for dep in step.dependencies:
                cycle = visit(dep)
                if cycle is not None:
                    return cycle

        path.pop()
        in_stack.discard(step_id)
        return None

    for step in steps:
        cycle = visit(step.id)
        if cycle is not None:
            return cycle
    return None


def find_ready_steps(
    steps: Sequence[WorkflowStep],
    *,
    completed: Collection[str],
    running: Collection[str],
) -> list[WorkflowStep]:
    """Steps not yet started whose dependencies are all completed."""

    return [
        step
        for step in steps
        if step.id not in completed
        and step.id not in running
        and all(dep in completed for dep in step.dependencies)
    ]


def raise_unschedulable(steps: Sequence[WorkflowStep], *, completed: Collection[str]) -> None:
    """Raise the most specific error for steps that can never become ready."""

    cycle = detect_cycle(steps)
    if cycle is not None:
        raise CircularDependencyError(cycle)
    remaining = [step.id for step in steps if step.id not in completed]
    raise StuckWorkflowError(remaining)
