"""Parse-and-normalize boundary for generator and reviewer agent output."""

from __future__ import annotations

import logging
import math
from typing import Any

from autopilot.errors import WorkflowParseError
from autopilot.workflow.jsonutil import iter_json_objects
from autopilot.workflow.models import (
    STEP_TYPE_AGENT_RUN,
    WORKFLOW_VERSION,
    CompletionCheck,
    CompletionDone,
    CompletionPending,
    Workflow,
    WorkflowStep,
)

logger = logging.getLogger(__name__)

INVALID_REVIEWER_JSON_REASON = "Reviewer returned invalid JSON; stopping."

_WORKFLOW_FIELDS = frozenset(
    {"version", "id", "name", "description", "concurrency", "defaults", "steps"},
)
_STEP_FIELDS = frozenset({"id", "type", "goal", "dependsOn", "context", "adapterRequest"})


def parse_workflow(text: str) -> Workflow:
    """Parse raw (possibly prose-wrapped) agent output into a validated workflow.

    The first embedded object that normalizes wins. When none does, the error of
    the first workflow-shaped object (one with ``version`` or ``steps``) is raised.
    """

    rejected: list[tuple[dict[str, object], WorkflowParseError]] = []
    for payload in iter_json_objects(text):
        try:
            return normalize_workflow(payload)
        except WorkflowParseError as error:
            rejected.append((payload, error))

    if not rejected:
        raise WorkflowParseError("Invalid JSON: could not parse workflow")
    for payload, error in rejected:
        if "version" in payload or "steps" in payload:
            raise error
    raise rejected[0][1]


def normalize_workflow(value: object) -> Workflow:  # noqa: C901
    """Validate a decoded JSON value and return a typed workflow."""

    if not isinstance(value, dict):
        raise WorkflowParseError("Workflow must be an object")

    version = value.get("version")
    if isinstance(version, bool) or version != WORKFLOW_VERSION:
        raise WorkflowParseError("Workflow.version must be 1")

    workflow_id = value.get("id")
    if not isinstance(workflow_id, str) or not workflow_id.strip():
        raise WorkflowParseError("Workflow.id must be a non-empty string")

    raw_steps = value.get("steps")
    if not isinstance(raw_steps, list):
        raise WorkflowParseError("Workflow.steps must be an array")

    steps = [_normalize_step(raw, index) for index, raw in enumerate(raw_steps)]
    seen: set[str] = set()
    for step in steps:
        if step.id in seen:
            raise WorkflowParseError(f'Duplicate step id "{step.id}"')
        seen.add(step.id)

    name = value.get("name")
    description = value.get("description")
    defaults = value.get("defaults")
    return Workflow(
        version=WORKFLOW_VERSION,
        id=workflow_id.strip(),
        name=name if isinstance(name, str) else None,
        description=description if isinstance(description, str) else None,
        concurrency=_normalize_concurrency(value.get("concurrency")),
        defaults=dict(defaults) if isinstance(defaults, dict) else None,
        steps=steps,
        extra={key: item for key, item in value.items() if key not in _WORKFLOW_FIELDS},
    )


def parse_completion_check(text: str) -> CompletionCheck:
    """Parse reviewer output. Invalid JSON degrades to a not-done result."""

    candidates = list(iter_json_objects(text))
    payload = next((item for item in candidates if "done" in item), None)
    if payload is None and candidates:
        payload = candidates[0]
    if payload is None:
        logger.warning("Reviewer returned invalid JSON; treating run as not done.")
        return CompletionPending(reason=INVALID_REVIEWER_JSON_REASON)

    if payload.get("done") is True:
        summary = payload.get("summary")
        return CompletionDone(summary=_non_blank(summary) or "Done.")

    reason = _non_blank(payload.get("reason")) or "Not done."
    raw_next = payload.get("nextWorkflow")
    if raw_next is None:
        return CompletionPending(reason=reason)

    try:
        next_workflow = normalize_workflow(raw_next)
    except WorkflowParseError as error:
        logger.warning("Reviewer nextWorkflow rejected: %s", error)
        return CompletionPending(reason=reason, rejected_workflow_error=str(error))
    return CompletionPending(reason=reason, next_workflow=next_workflow)


def _normalize_step(raw: object, index: int) -> WorkflowStep:
    if not isinstance(raw, dict):
        raise WorkflowParseError(f"Step {index + 1} must be an object")

    raw_id = raw.get("id")
    step_id = raw_id.strip() if isinstance(raw_id, str) and raw_id.strip() else f"step-{index + 1}"

    step_type = raw.get("type", STEP_TYPE_AGENT_RUN)
    if step_type != STEP_TYPE_AGENT_RUN:
        raise WorkflowParseError(f'Step "{step_id}" has unsupported type "{step_type}"')

    goal = raw.get("goal")
    if not isinstance(goal, str) or not goal.strip():
        raise WorkflowParseError(f'Step "{step_id}" is missing goal')

    raw_depends = raw.get("dependsOn")
    depends_on: list[str] | None = None
    if isinstance(raw_depends, list):
        depends_on = [_stringify(dep).strip() for dep in raw_depends]
        depends_on = [dep for dep in depends_on if dep]

    context = raw.get("context")
    adapter_request = raw.get("adapterRequest")
    return WorkflowStep(
        id=step_id,
        goal=goal,
        type=STEP_TYPE_AGENT_RUN,
        depends_on=depends_on,
        context=context if isinstance(context, str) else None,
        adapter_request=dict(adapter_request) if isinstance(adapter_request, dict) else None,
        extra={key: item for key, item in raw.items() if key not in _STEP_FIELDS},
    )


def _normalize_concurrency(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    if not math.isfinite(value):
        return None
    return max(1, math.floor(value))


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _non_blank(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None
