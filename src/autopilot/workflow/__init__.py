"""Workflow model, parser, dependency resolver and prompt builders."""

from autopilot.workflow.models import (
    CompletionCheck,
    CompletionDone,
    CompletionPending,
    StepResult,
    StepStatus,
    Workflow,
    WorkflowStep,
)
from autopilot.workflow.parser import normalize_workflow, parse_completion_check, parse_workflow
from autopilot.workflow.resolver import detect_cycle, find_ready_steps, resolve_waves

__all__ = [
    "CompletionCheck",
    "CompletionDone",
    "CompletionPending",
    "StepResult",
    "StepStatus",
    "Workflow",
    "WorkflowStep",
    "detect_cycle",
    "find_ready_steps",
    "normalize_workflow",
    "parse_completion_check",
    "parse_workflow",
    "resolve_waves",
]
