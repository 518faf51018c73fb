"""Prompt templates for workflow generation, step execution and completion review."""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence

from autopilot.workflow.jsonutil import truncate
from autopilot.workflow.models import CompletionCheck, StepResult, Workflow, WorkflowStep

DEFAULT_OUTPUT_TRUNCATE_CHARS = 18_000

_WORKFLOW_SHAPE = """\
Output ONLY valid JSON for a workflow object with fields:
- version (1)
- id (string)
- steps: array of { id, type:"agent.run", goal, dependsOn? }"""

_WORKFLOW_RULES = """\
Rules:
- Keep it small (<= 8 steps). Prefer parallel research -> execute -> verify -> summarize.
- Every step.goal MUST begin with: "use the <skill> skill."
- Use only skills that exist in this workspace.
- Use dependsOn to express data dependencies.
- If iteration > 1, focus only on remaining work (do not repeat completed steps)."""

_STEP_FOOTER = """\
If you make code changes, run the most relevant checks/tests and report results.
Finish with a short 'Done' summary and any remaining risks."""

_COMPLETION_RULES = """\
Return JSON ONLY with one of these shapes:
1) {"done":true,"summary":"..."}
2) {"done":false,"reason":"...","nextWorkflow":{...workflow json...}}

Rules:
- Be strict: done=true only if the task is actually completed.
- If not done, provide a small nextWorkflow (<= 6 steps) that finishes the remaining work.
- nextWorkflow steps should begin with: "use the <skill> skill.\""""


def build_workflow_prompt(task: str, iteration: int, carry_summary: str) -> str:
    parts = ["use the workflow-generator skill.", "", f"Task: {task}"]
    if carry_summary.strip():
        parts += ["", "Context from previous iterations:", carry_summary]
    parts += ["", _WORKFLOW_SHAPE, "", _WORKFLOW_RULES, "", f"Iteration: {iteration}"]
    return "\n".join(parts)


def build_step_prompt(
    task: str,
    step: WorkflowStep,
    completed: Mapping[str, StepResult],
) -> str:
    """Step goal plus the outputs of its dependencies, failed ones included."""

    blocks = [step.goal.strip(), "", f"Overall task: {task}"]

    deps = [completed[dep] for dep in step.dependencies if dep in completed]
    if deps:
        blocks += ["", "Dependency outputs:"]
        for dep in deps:
            blocks.append(f"\n--- {dep.step_id} ({dep.status.value}) ---\n")
            blocks.append(dep.output_text or "(empty)")
            if dep.error:
                blocks.append(f"error: {dep.error}")

    if step.context and step.context.strip():
        blocks += ["", "Additional context:", step.context.strip()]

    blocks += ["", _STEP_FOOTER]
    return "\n".join(blocks)


def build_completion_prompt(
    task: str,
    workflow: Workflow,
    results: Sequence[StepResult],
    iteration: int,
    *,
    max_output_chars: int = DEFAULT_OUTPUT_TRUNCATE_CHARS,
) -> str:
    condensed = [
        {
            "stepId": result.step_id,
            "status": result.status.value,
            "threadId": result.thread_id,
            "output": truncate(result.output_text, max_output_chars),
            "error": result.error,
        }
        for result in results
    ]
    payload = json.dumps(
        {"workflowId": workflow.id, "results": condensed},
        ensure_ascii=False,
        indent=2,
    )
    parts = [
        "use the reviewer skill.",
        "",
        f"Task: {task}",
        f"Iteration: {iteration}",
        "",
        "Here are the workflow results (JSON):",
        payload,
        "",
        _COMPLETION_RULES,
    ]
    return "\n".join(parts)


def build_carry_summary(
    workflow: Workflow,
    results: Sequence[StepResult],
    completion: CompletionCheck,
) -> str:
    """Compact recap of an iteration threaded into the next generation prompt."""

    lines = [f"Previous workflow: {workflow.id}", "Step statuses:"]
    for result in results:
        lines.append(
            f"- {result.step_id}: {result.status.value} (thread {result.thread_id or 'unknown'})",
        )
        if result.error:
            lines.append(f"  error: {result.error}")
    if not completion.done:
        lines.append(f"Reviewer: not done ({completion.reason})")
    return "\n".join(lines)
