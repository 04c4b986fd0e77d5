"""
graphscript compiler — Pipeline Document Schema + Validator
===========================================================
Structural validation of pipeline documents saved by the visual editor.
Runs without any third-party JSON Schema library.

Document format
---------------

    {
      "doc_type": "pipeline",                 // required, must be "pipeline"
      "version":  "3.0",                      // required, major in SUPPORTED_MAJOR_VERSIONS
      "id":       "optional-document-id",
      "pipelines": [
        {
          "id":   "primary",                  // required
          "name": "orders-cleanup",           // optional, defaults to id
          "flow": {
            "nodes": [
              {
                "id":       "node-1",           // unique within the flow (str, required)
                "type":     "csvFileInput",     // registry key (str, required)
                "data":     {"filePath": "orders.csv"},   // opaque config (object, optional)
                "position": {"x": 80, "y": 120}           // presentation only
              }
            ],
            "edges": [
              {
                "id":           "edge-1",
                "source":       "node-1",       // required
                "target":       "node-2",       // required
                "targetHandle": "left"          // optional, names the input slot
              }
            ],
            "viewport": {"x": 0, "y": 0, "zoom": 1}   // presentation only
          },
          "app_data": {}                        // editor metadata, ignored
        }
      ]
    }

Unknown fields at any level are ignored so newer editors can add metadata
without breaking older compilers.
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Set

from .diagnostics import DanglingEdge, DuplicateNodeId, MalformedDocument


DOC_TYPE = "pipeline"

SUPPORTED_MAJOR_VERSIONS: frozenset[int] = frozenset({1, 2, 3})


# ── Validation helpers ────────────────────────────────────────────────────────

def _require(condition: bool, message: str) -> None:
    if not condition:
        raise MalformedDocument(message)


def _require_keys(obj: Dict, keys: List[str], context: str) -> None:
    for key in keys:
        _require(key in obj, f"{context}: missing required field '{key}'")


def version_major(version: Any) -> int:
    """
    Return the major component of a document version.

    Accepts ints (3), floats (3.0) and strings ("3", "3.0", "3.1.2").

    Raises:
        MalformedDocument: If the value is not a recognisable version.
    """
    if isinstance(version, bool):
        raise MalformedDocument(f"unrecognised document version {version!r}")
    if isinstance(version, float) and not math.isfinite(version):
        raise MalformedDocument(f"unrecognised document version {version!r}")
    if isinstance(version, (int, float)):
        return int(version)
    if isinstance(version, str):
        head = version.strip().split(".", 1)[0]
        if head.isdigit():
            return int(head)
    raise MalformedDocument(f"unrecognised document version {version!r}")


# ── Public validator ─────────────────────────────────────────────────────────

def validate(data: Dict[str, Any]) -> None:
    """
    Validate a parsed pipeline document.

    Raises:
        MalformedDocument: On a missing/unrecognised doc_type or version, or
                           any structural violation.
        DuplicateNodeId:   If two nodes of one flow share an id.
        DanglingEdge:      If an edge references a node id that does not exist.
    """
    _require(isinstance(data, dict), "pipeline document must be a JSON object at the top level")
    _require_keys(data, ["doc_type", "version", "pipelines"], "document root")

    _require(
        data["doc_type"] == DOC_TYPE,
        f"unrecognised doc_type {data['doc_type']!r} (expected {DOC_TYPE!r})",
    )
    major = version_major(data["version"])
    _require(
        major in SUPPORTED_MAJOR_VERSIONS,
        f"unsupported document version {data['version']!r} "
        f"(supported major versions: {sorted(SUPPORTED_MAJOR_VERSIONS)})",
    )

    pipelines = data["pipelines"]
    _require(isinstance(pipelines, list), "pipelines must be a list")
    _require(len(pipelines) > 0, "pipelines must contain at least one pipeline")

    for p, pipeline in enumerate(pipelines):
        _validate_pipeline(pipeline, f"pipelines[{p}]")


def _validate_pipeline(pipeline: Any, ctx: str) -> None:
    _require(isinstance(pipeline, dict), f"{ctx}: each pipeline must be a JSON object")
    _require_keys(pipeline, ["id", "flow"], ctx)
    _require(isinstance(pipeline["id"], str), f"{ctx}.id must be a string")

    flow = pipeline["flow"]
    _require(isinstance(flow, dict), f"{ctx}.flow must be an object")
    _require_keys(flow, ["nodes", "edges"], f"{ctx}.flow")
    _require(isinstance(flow["nodes"], list), f"{ctx}.flow.nodes must be a list")
    _require(isinstance(flow["edges"], list), f"{ctx}.flow.edges must be a list")

    # ── Nodes ───────────────────────────────────────────────────────────────

    node_ids: Set[str] = set()

    for i, node in enumerate(flow["nodes"]):
        nctx = f"{ctx}.flow.nodes[{i}]"
        _require(isinstance(node, dict), f"{nctx}: each node must be a JSON object")
        _require_keys(node, ["id", "type"], nctx)
        _require(isinstance(node["id"],   str), f"{nctx}.id must be a string")
        _require(isinstance(node["type"], str), f"{nctx}.type must be a string")
        if "data" in node and node["data"] is not None:
            _require(isinstance(node["data"], dict), f"{nctx}.data must be an object")

        if node["id"] in node_ids:
            raise DuplicateNodeId(f"{nctx}: duplicate node id '{node['id']}'", node_id=node["id"])
        node_ids.add(node["id"])

    # ── Edges ───────────────────────────────────────────────────────────────

    for i, edge in enumerate(flow["edges"]):
        ectx = f"{ctx}.flow.edges[{i}]"
        _require(isinstance(edge, dict), f"{ectx}: each edge must be a JSON object")
        _require_keys(edge, ["source", "target"], ectx)

        for key in ("source", "target"):
            _require(isinstance(edge[key], str), f"{ectx}.{key} must be a string")
        for key in ("id", "sourceHandle", "targetHandle"):
            if edge.get(key) is not None:
                _require(isinstance(edge[key], str), f"{ectx}.{key} must be a string")

        for key, other in (("source", "target"), ("target", "source")):
            if edge[key] not in node_ids:
                # Point at the endpoint an editor can still highlight.
                raise DanglingEdge(
                    f"{ectx}: {key} '{edge[key]}' not found in nodes",
                    node_id=edge[other] if edge[other] in node_ids else None,
                )


__all__ = ["DOC_TYPE", "SUPPORTED_MAJOR_VERSIONS", "validate", "version_major"]
