"""
graphscript compiler — Pipeline Deserialiser
============================================
Turns a validated pipeline document into typed `Flow` objects, and projects a
`Flow` onto the structural `CompilationGraph` that the planner, assembler and
emitter operate on.

Pipeline
--------
    pipeline.json  →  [schema.validate]                 (raises on bad input)
                   →  [parse]                           →  Flow
    Flow           →  [filter_for_compilation]          →  CompilationGraph

Everything the editor stores purely for display (viewport, `app_data`, node
position/size/selection flags) is kept on the `Flow` but dropped from the
projection.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Optional, Union

from .diagnostics import MalformedDocument
from .ir import CompilationGraph, Edge, Flow, Node, Pipeline
from .schema import validate


logger = logging.getLogger(__name__)

# Node keys with structural meaning; every other key is editor layout.
_NODE_KEYS = frozenset({"id", "type", "data"})


# ── Core parsing ──────────────────────────────────────────────────────────────

def _parse_node(node_spec: Dict[str, Any], index: int) -> Node:
    data = node_spec.get("data") or {}
    return Node(
        id=node_spec["id"],
        type=node_spec["type"],
        data=MappingProxyType(dict(data)),
        index=index,
    )


def _parse_edge(edge_spec: Dict[str, Any], index: int) -> Edge:
    source = edge_spec["source"]
    target = edge_spec["target"]
    return Edge(
        id=edge_spec.get("id") or f"edge-{index}-{source}-{target}",
        source=source,
        target=target,
        target_handle=edge_spec.get("targetHandle"),
        source_handle=edge_spec.get("sourceHandle"),
        index=index,
    )


def _parse_flow(pipeline_spec: Dict[str, Any]) -> Flow:
    flow_spec = pipeline_spec["flow"]

    nodes = tuple(_parse_node(spec, i) for i, spec in enumerate(flow_spec["nodes"]))
    edges = tuple(_parse_edge(spec, i) for i, spec in enumerate(flow_spec["edges"]))

    layout = {
        spec["id"]: {k: v for k, v in spec.items() if k not in _NODE_KEYS}
        for spec in flow_spec["nodes"]
    }

    return Flow(
        id=pipeline_spec["id"],
        name=pipeline_spec.get("name") or pipeline_spec["id"],
        nodes=nodes,
        edges=edges,
        viewport=flow_spec.get("viewport") or {},
        app_data=pipeline_spec.get("app_data") or {},
        node_layout=layout,
    )


# ── Public entry points ───────────────────────────────────────────────────────

def parse_pipeline(document: Dict[str, Any]) -> Pipeline:
    """
    Validate a pipeline document and return every flow it contains.

    Raises:
        MalformedDocument / DuplicateNodeId / DanglingEdge: see schema.validate.
    """
    validate(document)
    flows = tuple(_parse_flow(spec) for spec in document["pipelines"])
    logger.debug(
        "parsed pipeline document %r: %d flow(s)",
        document.get("id"), len(flows),
    )
    return Pipeline(
        doc_type=document["doc_type"],
        version=str(document["version"]),
        flows=flows,
        id=document.get("id"),
    )


def parse(document: Dict[str, Any], pipeline_id: Optional[str] = None) -> Flow:
    """
    Parse a pipeline document and return one flow.

    Args:
        document:    A pre-parsed dict (result of json.load / json.loads).
        pipeline_id: Which pipeline to return.  Defaults to the first one.

    Raises:
        MalformedDocument: If the document is invalid or `pipeline_id` does
                           not name a pipeline in it.
    """
    pipeline = parse_pipeline(document)
    flow = pipeline.get_flow(pipeline_id)
    if flow is None:
        raise MalformedDocument(f"pipeline '{pipeline_id}' not found in document")
    return flow


def parse_file(path: Union[str, Path], pipeline_id: Optional[str] = None) -> Flow:
    """
    Load a pipeline JSON file and parse it.

    Raises:
        FileNotFoundError: If the file does not exist.
        MalformedDocument: If the file is not valid JSON or fails validation.
    """
    path = Path(path)
    with path.open(encoding="utf-8") as fh:
        try:
            data = json.load(fh)
        except json.JSONDecodeError as exc:
            raise MalformedDocument(f"{path}: invalid JSON ({exc})") from exc
    return parse(data, pipeline_id=pipeline_id)


def filter_for_compilation(flow: Flow) -> CompilationGraph:
    """Project a flow onto its nodes and edges, dropping presentation data."""
    return CompilationGraph(name=flow.name, nodes=flow.nodes, edges=flow.edges)


__all__ = ["filter_for_compilation", "parse", "parse_file", "parse_pipeline"]
