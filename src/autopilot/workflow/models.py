"""Workflow, step and completion-check shapes exchanged with generator and reviewer agents."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from autopilot.adapters.usage import TokenUsage

WORKFLOW_VERSION = 1
STEP_TYPE_AGENT_RUN = "agent.run"


class StepStatus(str, Enum):
    """Terminal status of one step execution attempt."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(slots=True)
class WorkflowStep:
    """One unit of agent work inside a workflow.

    ``extra`` holds fields the agent emitted that this model does not know about;
    they are written back unchanged by ``to_dict``.
    """

    id: str
    goal: str
    type: str = STEP_TYPE_AGENT_RUN
    depends_on: list[str] | None = None
    context: str | None = None
    adapter_request: dict[str, Any] | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def dependencies(self) -> list[str]:
        return list(self.depends_on or [])

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = dict(self.extra)
        payload["id"] = self.id
        payload["type"] = self.type
        payload["goal"] = self.goal
        if self.depends_on is not None:
            payload["dependsOn"] = list(self.depends_on)
        if self.context is not None:
            payload["context"] = self.context
        if self.adapter_request is not None:
            payload["adapterRequest"] = dict(self.adapter_request)
        return payload


@dataclass(slots=True)
class Workflow:
    """Validated workflow produced by the generator or supplied by the reviewer."""

    id: str
    steps: list[WorkflowStep]
    version: int = WORKFLOW_VERSION
    name: str | None = None
    description: str | None = None
    concurrency: int | None = None
    defaults: dict[str, Any] | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def step_ids(self) -> list[str]:
        return [step.id for step in self.steps]

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = dict(self.extra)
        payload["version"] = self.version
        payload["id"] = self.id
        if self.name is not None:
            payload["name"] = self.name
        if self.description is not None:
            payload["description"] = self.description
        if self.concurrency is not None:
            payload["concurrency"] = self.concurrency
        if self.defaults is not None:
            payload["defaults"] = dict(self.defaults)
        payload["steps"] = [step.to_dict() for step in self.steps]
        return payload


@dataclass(slots=True)
class StepResult:
    """Outcome of a single step execution. Failures are data, not exceptions."""

    step_id: str
    status: StepStatus
    thread_id: str | None = None
    exec_id: str | None = None
    output_text: str = ""
    usage: TokenUsage | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == StepStatus.SUCCEEDED

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "stepId": self.step_id,
            "status": self.status.value,
            "threadId": self.thread_id,
            "execId": self.exec_id,
            "outputText": self.output_text,
        }
        if self.usage is not None:
            payload["usage"] = self.usage.to_dict()
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(slots=True)
class CompletionDone:
    """Reviewer declared the task complete."""

    summary: str

    @property
    def done(self) -> bool:
        return True

    def to_dict(self) -> dict[str, Any]:
        return {"done": True, "summary": self.summary}


@dataclass(slots=True)
class CompletionPending:
    """Reviewer wants more work; ``next_workflow`` overrides the next generation call."""

    reason: str
    next_workflow: Workflow | None = None
    rejected_workflow_error: str | None = None

    @property
    def done(self) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"done": False, "reason": self.reason}
        if self.next_workflow is not None:
            payload["nextWorkflow"] = self.next_workflow.to_dict()
        if self.rejected_workflow_error is not None:
            payload["rejectedWorkflowError"] = self.rejected_workflow_error
        return payload


CompletionCheck = CompletionDone | CompletionPending
