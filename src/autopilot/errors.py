"""Exception hierarchy shared by the workflow, adapter and run layers."""

from __future__ import annotations


class AutopilotError(RuntimeError):
    """Base class for errors raised by the autopilot run loop."""


class WorkflowParseError(AutopilotError):
    """Agent output could not be turned into a valid workflow."""


class WorkflowScheduleError(AutopilotError):
    """Workflow steps cannot be ordered for execution."""


class CircularDependencyError(WorkflowScheduleError):
    """Step dependencies form a cycle."""

    def __init__(self, cycle: list[str]) -> None:
        super().__init__(f"Circular dependency detected: {' -> '.join(cycle)}")
        self.cycle = cycle


class StuckWorkflowError(WorkflowScheduleError):
    """Remaining steps wait on dependencies that never complete."""

    def __init__(self, remaining: list[str]) -> None:
        super().__init__(f"Workflow stuck: cannot resolve {', '.join(remaining)}")
        self.remaining = remaining


class AdapterError(AutopilotError):
    """Agent CLI invocation failed.

    ``transient`` hints whether retrying the same invocation could succeed.
    ``exec_id`` is filled in once the failure has been recorded in the manifest.
    """

    def __init__(  # noqa: PLR0913
        self,
        message: str,
        *,
        thread_id: str | None = None,
        exit_code: int | None = None,
        transient: bool = False,
        exec_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.thread_id = thread_id
        self.exit_code = exit_code
        self.transient = transient
        self.exec_id = exec_id
