"""Artifact persistence, run manifest and provenance graph."""

from autopilot.state.artifacts import allocate_exec_id, slugify_label, write_exec_artifacts
from autopilot.state.graph import GraphEdge, GraphNode, ProvenanceGraph
from autopilot.state.manifest import MANIFEST_FILENAME, ManifestStore, RunStatus
from autopilot.state.models import ExecArtifacts, ExecManifestEntry, RunContext, RunOptions

__all__ = [
    "MANIFEST_FILENAME",
    "ExecArtifacts",
    "ExecManifestEntry",
    "GraphEdge",
    "GraphNode",
    "ManifestStore",
    "ProvenanceGraph",
    "RunContext",
    "RunOptions",
    "RunStatus",
    "allocate_exec_id",
    "slugify_label",
    "write_exec_artifacts",
]
