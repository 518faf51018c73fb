"""Deduplicated provenance graph of executions and agent threads.

Two write paths feed the same edge store: in-process workflow structure
(``dependsOn``, ``invokes``, ``resume``) and best-effort transcript scanning
(``spawn``, ``interact``). Edges are keyed so re-processing never duplicates them.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from autopilot.state.models import ExecArtifacts, ExecManifestEntry
from autopilot.state.transcripts import find_transcript_path, iter_collab_events
from autopilot.workflow.models import StepResult, Workflow

logger = logging.getLogger(__name__)

EDGE_DEPENDS_ON = "dependsOn"
EDGE_INVOKES = "invokes"
EDGE_RESUME = "resume"

SOURCE_WORKFLOW = "workflow"
SOURCE_RESUME = "resume"
SOURCE_TRANSCRIPT = "transcript"


def exec_node_id(exec_id: str) -> str:
    return f"exec:{exec_id}"


def thread_node_id(thread_id: str) -> str:
    return f"thread:{thread_id}"


@dataclass(slots=True)
class GraphNode:
    """``exec`` node per execution, or bare ``thread`` node."""

    id: str
    type: str
    thread_id: str
    exec_id: str | None = None
    label: str | None = None
    artifacts: ExecArtifacts | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"id": self.id, "type": self.type, "threadId": self.thread_id}
        if self.exec_id is not None:
            payload["execId"] = self.exec_id
        if self.label is not None:
            payload["label"] = self.label
        if self.artifacts is not None:
            payload["artifacts"] = self.artifacts.to_dict()
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> GraphNode:
        artifacts = payload.get("artifacts")
        return cls(
            id=str(payload["id"]),
            type=str(payload.get("type", "")),
            thread_id=str(payload.get("threadId", "")),
            exec_id=payload.get("execId"),
            label=payload.get("label"),
            artifacts=ExecArtifacts.from_dict(artifacts) if isinstance(artifacts, dict) else None,
        )


@dataclass(slots=True)
class GraphEdge:
    type: str
    from_node: str
    to_node: str
    source: str
    call_id: str | None = None
    status: str | None = None
    prompt: str | None = None

    def dedupe_key(self) -> str:
        return "|".join(
            [
                self.type,
                self.from_node,
                self.to_node,
                self.call_id or "",
                self.status or "",
                self.prompt or "",
            ],
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type, "from": self.from_node, "to": self.to_node}
        if self.call_id is not None:
            payload["callId"] = self.call_id
        if self.status is not None:
            payload["status"] = self.status
        if self.prompt is not None:
            payload["prompt"] = self.prompt
        payload["source"] = self.source
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> GraphEdge:
        return cls(
            type=str(payload["type"]),
            from_node=str(payload["from"]),
            to_node=str(payload["to"]),
            source=str(payload.get("source", SOURCE_WORKFLOW)),
            call_id=payload.get("callId"),
            status=payload.get("status"),
            prompt=payload.get("prompt"),
        )


def transcript_edge_key(
    edge_type: str,
    sender_thread_id: str,
    target_thread_id: str,
    call_id: str | None,
    status: str | None,
) -> str:
    """Identity of a transcript edge; prompt text is not part of it."""

    parts = [edge_type, sender_thread_id, target_thread_id, call_id or "", status or ""]
    return "transcript|" + "|".join(parts)


@dataclass(slots=True)
class ProvenanceGraph:
    """In-memory graph index, flattened into the manifest on every write."""

    nodes: dict[str, GraphNode] = field(default_factory=dict)
    edges: dict[str, GraphEdge] = field(default_factory=dict)
    warnings: dict[str, None] = field(default_factory=dict)
    thread_exec_nodes: dict[str, list[str]] = field(default_factory=dict)
    transcript_threads: set[str] = field(default_factory=set)
    transcript_call_ids: dict[str, str] = field(default_factory=dict)

    def record_exec_node(self, entry: ExecManifestEntry) -> str:
        node_id = exec_node_id(entry.exec_id)
        if node_id not in self.nodes:
            self.nodes[node_id] = GraphNode(
                id=node_id,
                type="exec",
                thread_id=entry.thread_id,
                exec_id=entry.exec_id,
                label=entry.label,
                artifacts=entry.artifacts,
            )
        if entry.has_thread:
            exec_nodes = self.thread_exec_nodes.setdefault(entry.thread_id, [])
            if node_id not in exec_nodes:
                exec_nodes.append(node_id)
        return node_id

    def ensure_thread_node(self, thread_id: str) -> str:
        node_id = thread_node_id(thread_id)
        if node_id not in self.nodes:
            self.nodes[node_id] = GraphNode(id=node_id, type="thread", thread_id=thread_id)
        return node_id

    def node_id_for_thread(self, thread_id: str) -> str:
        """The single exec node owning ``thread_id``, else the thread's own node."""

        exec_nodes = self.thread_exec_nodes.get(thread_id, [])
        if len(exec_nodes) == 1:
            return exec_nodes[0]
        return self.ensure_thread_node(thread_id)

    def record_edge(self, edge: GraphEdge, dedupe_key: str | None = None) -> bool:
        key = dedupe_key or edge.dedupe_key()
        if key in self.edges:
            return False
        self.edges[key] = edge
        return True

    def record_warning(self, message: str) -> None:
        if message not in self.warnings:
            logger.warning("%s", message)
        self.warnings[message] = None

    def record_depends_on_edges(self, workflow: Workflow, results: Iterable[StepResult]) -> None:
        exec_by_step = _exec_nodes_by_step(results)
        for step in workflow.steps:
            step_node = exec_by_step.get(step.id)
            if step_node is None:
                continue
            for dep in step.dependencies:
                dep_node = exec_by_step.get(dep)
                if dep_node is None:
                    continue
                self.record_edge(
                    GraphEdge(
                        type=EDGE_DEPENDS_ON,
                        from_node=dep_node,
                        to_node=step_node,
                        source=SOURCE_WORKFLOW,
                    ),
                )

    def record_invokes_edges(
        self,
        generator_exec_id: str | None,
        results: Iterable[StepResult],
        completion_exec_id: str | None,
    ) -> None:
        step_nodes = list(_exec_nodes_by_step(results).values())
        if generator_exec_id:
            for step_node in step_nodes:
                self.record_edge(
                    GraphEdge(
                        type=EDGE_INVOKES,
                        from_node=exec_node_id(generator_exec_id),
                        to_node=step_node,
                        source=SOURCE_WORKFLOW,
                    ),
                )
        if completion_exec_id:
            for step_node in step_nodes:
                self.record_edge(
                    GraphEdge(
                        type=EDGE_INVOKES,
                        from_node=step_node,
                        to_node=exec_node_id(completion_exec_id),
                        source=SOURCE_WORKFLOW,
                    ),
                )

    def record_completion_to_workflow_edge(
        self,
        completion_exec_id: str,
        generator_exec_id: str,
    ) -> None:
        self.record_edge(
            GraphEdge(
                type=EDGE_INVOKES,
                from_node=exec_node_id(completion_exec_id),
                to_node=exec_node_id(generator_exec_id),
                source=SOURCE_WORKFLOW,
            ),
        )

    def record_resume_edge(self, resumed_thread_id: str, entry: ExecManifestEntry) -> None:
        self.record_edge(
            GraphEdge(
                type=EDGE_RESUME,
                from_node=self.ensure_thread_node(resumed_thread_id),
                to_node=exec_node_id(entry.exec_id),
                source=SOURCE_RESUME,
            ),
        )

    def enrich_from_transcript(self, thread_id: str, codex_home: Path) -> None:
        """Add spawn/interact edges from the thread's transcript, at most once per thread.

        Lookup and parse failures become warnings; they never propagate.
        """

        if thread_id in self.transcript_threads:
            return
        self.transcript_threads.add(thread_id)

        try:
            path = find_transcript_path(thread_id, codex_home)
        except OSError as error:
            self.record_warning(f"Failed to scan transcripts for threadId={thread_id}: {error}")
            return
        if path is None:
            self.record_warning(f"Transcript not found for threadId={thread_id}")
            return

        try:
            for event in iter_collab_events(path):
                self._record_collab_event(
                    event.kind,
                    event.sender_thread_id,
                    event.target_thread_id,
                    event.call_id,
                    event.status,
                    event.prompt,
                )
        except (OSError, UnicodeDecodeError) as error:
            self.record_warning(f"Failed to parse transcript for threadId={thread_id}: {error}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [node.to_dict() for node in self.nodes.values()],
            "edges": [edge.to_dict() for edge in self.edges.values()],
            "warnings": list(self.warnings),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ProvenanceGraph:
        """Rebuild the index from a persisted manifest graph.

        Transcript threads are not marked as enriched, so a later enrichment
        pass re-scans them; dedupe keys keep that idempotent.
        """

        graph = cls()
        for raw_node in payload.get("nodes") or []:
            if not isinstance(raw_node, dict) or "id" not in raw_node:
                continue
            node = GraphNode.from_dict(raw_node)
            graph.nodes[node.id] = node
            if node.type == "exec" and node.thread_id and node.thread_id != "unknown":
                graph.thread_exec_nodes.setdefault(node.thread_id, []).append(node.id)
        for raw_edge in payload.get("edges") or []:
            if not isinstance(raw_edge, dict) or not {"type", "from", "to"} <= raw_edge.keys():
                continue
            edge = GraphEdge.from_dict(raw_edge)
            if edge.source == SOURCE_TRANSCRIPT:
                sender = _thread_of(edge.from_node)
                target = _thread_of(edge.to_node)
                key = transcript_edge_key(edge.type, sender, target, edge.call_id, edge.status)
                if edge.call_id:
                    graph.transcript_call_ids.setdefault(
                        edge.call_id,
                        "|".join([edge.type, sender, target, edge.status or ""]),
                    )
                graph.record_edge(edge, key)
            else:
                graph.record_edge(edge)
        for warning in payload.get("warnings") or []:
            if isinstance(warning, str):
                graph.warnings[warning] = None
        return graph

    def _record_collab_event(  # noqa: PLR0913
        self,
        kind: str,
        sender: str,
        target: str,
        call_id: str | None,
        status: str,
        prompt: str | None,
    ) -> None:
        from_node = self.ensure_thread_node(sender)
        to_node = self.ensure_thread_node(target)
        if call_id:
            signature = "|".join([kind, sender, target, status])
            prior = self.transcript_call_ids.get(call_id)
            if prior is None:
                self.transcript_call_ids[call_id] = signature
            elif prior != signature:
                self.record_warning(
                    f"Transcript call_id collision for call_id={call_id} "
                    f"(saw {prior} and {signature})",
                )
        self.record_edge(
            GraphEdge(
                type=kind,
                from_node=from_node,
                to_node=to_node,
                source=SOURCE_TRANSCRIPT,
                call_id=call_id,
                status=status,
                prompt=prompt,
            ),
            transcript_edge_key(kind, sender, target, call_id, status),
        )


def _exec_nodes_by_step(results: Iterable[StepResult]) -> dict[str, str]:
    return {result.step_id: exec_node_id(result.exec_id) for result in results if result.exec_id}


def _thread_of(node_id: str) -> str:
    return node_id.removeprefix("thread:")
