from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path

import allure

from autopilot.state import ExecArtifacts, ExecManifestEntry, ProvenanceGraph
from autopilot.state.graph import GraphEdge
from autopilot.state.transcripts import find_transcript_path, iter_collab_events
from autopilot.workflow import StepResult, StepStatus, Workflow, WorkflowStep

pytestmark = [
    allure.epic("Run State"),
    allure.feature("Provenance Graph"),
]


def _entry(exec_id: str, thread_id: str, label: str = "step:x") -> ExecManifestEntry:
    return ExecManifestEntry(
        exec_id=exec_id,
        label=label,
        thread_id=thread_id,
        status="succeeded",
        exit_code=0,
        started_at="",
        finished_at="",
        artifacts=ExecArtifacts(prompt_txt=f"{exec_id}/prompt.txt"),
    )


def _spawn(
    sender: str,
    target: str,
    call_id: str,
    status: str = "completed",
    prompt: str = "go",
) -> dict[str, str]:
    return {
        "type": "collab_agent_spawn_end",
        "sender_thread_id": sender,
        "new_thread_id": target,
        "call_id": call_id,
        "status": status,
        "prompt": prompt,
    }


def _edge_keys(graph: ProvenanceGraph) -> list[tuple[str, str, str]]:
    return [(edge.type, edge.from_node, edge.to_node) for edge in graph.edges.values()]


def test_workflow_edges_link_generator_steps_and_reviewer() -> None:
    graph = ProvenanceGraph()
    workflow = Workflow(
        id="wf",
        steps=[WorkflowStep(id="a", goal="g"), WorkflowStep(id="b", goal="g", depends_on=["a"])],
    )
    results = [
        StepResult(step_id="a", status=StepStatus.SUCCEEDED, exec_id="exec-002"),
        StepResult(step_id="b", status=StepStatus.FAILED, exec_id="exec-003"),
    ]

    graph.record_depends_on_edges(workflow, results)
    graph.record_invokes_edges("exec-001", results, "exec-004")
    graph.record_invokes_edges("exec-001", results, "exec-004")

    assert _edge_keys(graph) == [
        ("dependsOn", "exec:exec-002", "exec:exec-003"),
        ("invokes", "exec:exec-001", "exec:exec-002"),
        ("invokes", "exec:exec-001", "exec:exec-003"),
        ("invokes", "exec:exec-002", "exec:exec-004"),
        ("invokes", "exec:exec-003", "exec:exec-004"),
    ]
    assert {edge.source for edge in graph.edges.values()} == {"workflow"}


def test_resume_edge_starts_at_thread_node() -> None:
    graph = ProvenanceGraph()
    entry = _entry("exec-005", "thread-9", label="resume:thread-9")
    graph.record_exec_node(entry)

    graph.record_resume_edge("thread-9", entry)

    assert _edge_keys(graph) == [("resume", "thread:thread-9", "exec:exec-005")]
    assert graph.nodes["thread:thread-9"].type == "thread"


def test_thread_shared_by_several_execs_keeps_its_own_node() -> None:
    graph = ProvenanceGraph()
    graph.record_exec_node(_entry("exec-001", "thread-1"))
    assert graph.node_id_for_thread("thread-1") == "exec:exec-001"

    graph.record_exec_node(_entry("exec-002", "thread-1"))

    assert graph.node_id_for_thread("thread-1") == "thread:thread-1"


def test_edges_differing_only_in_prompt_collapse(tmp_path: Path, transcript_writer) -> None:
    transcript_writer(
        tmp_path,
        "thread-1",
        [
            _spawn("thread-1", "thread-2", "call-1", prompt="first wording"),
            _spawn("thread-1", "thread-2", "call-1", prompt="second wording"),
        ],
    )
    graph = ProvenanceGraph()

    graph.enrich_from_transcript("thread-1", tmp_path)

    assert len(graph.edges) == 1
    edge = next(iter(graph.edges.values()))
    assert edge.prompt == "first wording"
    assert edge.source == "transcript"
    assert not graph.warnings


def test_enrichment_twice_adds_no_edges(tmp_path: Path, transcript_writer) -> None:
    transcript_writer(
        tmp_path,
        "thread-1",
        [
            {
                "type": "collab_agent_spawn_begin",
                "sender_thread_id": "thread-1",
                "new_thread_id": "thread-2",
                "call_id": "call-1",
            },
            _spawn("thread-1", "thread-2", "call-1"),
            {
                "type": "collab_agent_interaction_end",
                "sender_thread_id": "thread-1",
                "receiver_thread_id": "thread-2",
                "call_id": "call-2",
            },
        ],
    )
    graph = ProvenanceGraph()

    graph.enrich_from_transcript("thread-1", tmp_path)
    first = [edge.to_dict() for edge in graph.edges.values()]
    graph.transcript_threads.clear()
    graph.enrich_from_transcript("thread-1", tmp_path)

    assert [edge.to_dict() for edge in graph.edges.values()] == first
    assert [edge["type"] for edge in first] == ["spawn", "spawn", "interact"]
    assert [edge["status"] for edge in first] == ["begin", "completed", "end"]


def test_enrichment_survives_manifest_reload(tmp_path: Path, transcript_writer) -> None:
    transcript_writer(tmp_path, "thread-1", [_spawn("thread-1", "thread-2", "call-1")])
    graph = ProvenanceGraph()
    graph.record_exec_node(_entry("exec-001", "thread-1"))
    graph.enrich_from_transcript("thread-1", tmp_path)

    reloaded = ProvenanceGraph.from_dict(graph.to_dict())
    reloaded.enrich_from_transcript("thread-1", tmp_path)

    assert reloaded.to_dict() == graph.to_dict()


def test_missing_transcript_is_a_warning(tmp_path: Path) -> None:
    graph = ProvenanceGraph()

    graph.enrich_from_transcript("thread-404", tmp_path)
    graph.enrich_from_transcript("thread-404", tmp_path)

    assert list(graph.warnings) == ["Transcript not found for threadId=thread-404"]
    assert not graph.edges


def test_call_id_reuse_with_different_endpoints_warns(
    tmp_path: Path,
    transcript_writer,
) -> None:
    transcript_writer(
        tmp_path,
        "thread-1",
        [_spawn("thread-1", "thread-2", "call-1"), _spawn("thread-1", "thread-3", "call-1")],
    )
    graph = ProvenanceGraph()

    graph.enrich_from_transcript("thread-1", tmp_path)

    assert len(graph.edges) == 2
    assert len(graph.warnings) == 1
    assert next(iter(graph.warnings)).startswith("Transcript call_id collision for call_id=call-1")


def test_graph_round_trips_through_manifest_dict() -> None:
    graph = ProvenanceGraph()
    graph.record_exec_node(_entry("exec-001", "thread-1"))
    graph.record_edge(
        GraphEdge(
            type="invokes",
            from_node="exec:exec-001",
            to_node="exec:exec-002",
            source="workflow",
        ),
    )
    graph.record_warning("Transcript not found for threadId=thread-1")

    payload = graph.to_dict()

    assert ProvenanceGraph.from_dict(payload).to_dict() == payload
    assert payload["nodes"][0]["artifacts"] == {"promptTxt": "exec-001/prompt.txt"}
    assert payload["edges"][0] == {
        "type": "invokes",
        "from": "exec:exec-001",
        "to": "exec:exec-002",
        "source": "workflow",
    }


def test_find_transcript_prefers_most_recent(
    tmp_path: Path,
    transcript_writer: Callable[..., Path],
) -> None:
    older = transcript_writer(tmp_path, "thread-1", [], name_prefix="rollout-2025-01-01T00-00-00")
    newer = transcript_writer(tmp_path, "thread-1", [], name_prefix="rollout-2025-01-02T00-00-00")
    transcript_writer(tmp_path, "thread-10", [], name_prefix="rollout-2025-01-03T00-00-00")
    older_mtime = older.stat().st_mtime
    os.utime(newer, (older_mtime + 10, older_mtime + 10))

    assert find_transcript_path("thread-1", tmp_path) == newer
    assert find_transcript_path("thread-2", tmp_path) is None
    assert find_transcript_path("thread-1", tmp_path / "missing") is None


def test_iter_collab_events_skips_unrelated_and_malformed_lines(tmp_path: Path) -> None:
    path = tmp_path / "rollout-x-thread-1.jsonl"
    path.write_text(
        "\n".join(
            [
                "not json",
                '{"type": "response_item", "payload": {"type": "message"}}',
                '{"type": "event_msg", "payload": {"type": "agent_message", "message": "hi"}}',
                '{"type": "event_msg", "payload": {"type": "collab_agent_spawn_end",'
                ' "sender_thread_id": "thread-1"}}',
                '{"type": "event_msg", "payload": {"type": "collab_agent_interaction_begin",'
                ' "sender_thread_id": "thread-1", "receiver_thread_id": "thread-2"}}',
            ],
        ),
        "utf-8",
    )

    events = list(iter_collab_events(path))

    assert len(events) == 1
    assert events[0].kind == "interact"
    assert events[0].status == "begin"
    assert events[0].call_id is None
