"""
graphscript compiler — Graph Model
==================================
Typed, behaviour-free snapshot of a pipeline document.

    pipeline.json  →  [deserialiser.parse]              →  Flow
    Flow           →  [deserialiser.filter_for_compilation] →  CompilationGraph
                                                                  ↓
                                                            [planner] …

`Flow` keeps what the editor saved (including presentation data such as the
viewport and per-node positions).  `CompilationGraph` is the structural
projection every later phase works on; it has no presentation fields at all.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple


# ── Node ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Node:
    id: str
    type: str
    data: Mapping[str, Any] = field(default_factory=dict)

    # Document position (0-based).  Used only to break ordering ties.
    index: int = 0


# ── Edge ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Edge:
    id: str
    source: str
    target: str
    target_handle: Optional[str] = None
    source_handle: Optional[str] = None
    index: int = 0

    def __repr__(self) -> str:
        handle = f".{self.target_handle}" if self.target_handle else ""
        return f"Edge({self.source} -> {self.target}{handle})"


# ── Flow / Pipeline (as saved by the editor) ─────────────────────────────────

@dataclass(frozen=True)
class Flow:
    id: str
    name: str
    nodes: Tuple[Node, ...] = ()
    edges: Tuple[Edge, ...] = ()

    # Presentation-only.  Never read below the Graph Model.
    viewport: Mapping[str, Any] = field(default_factory=dict)
    app_data: Mapping[str, Any] = field(default_factory=dict)
    node_layout: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)


@dataclass(frozen=True)
class Pipeline:
    doc_type: str
    version: str
    flows: Tuple[Flow, ...]
    id: Optional[str] = None

    def get_flow(self, flow_id: Optional[str] = None) -> Optional[Flow]:
        if flow_id is None:
            return self.flows[0] if self.flows else None
        return next((f for f in self.flows if f.id == flow_id), None)


# ── Compilation projection ───────────────────────────────────────────────────

@dataclass(frozen=True)
class CompilationGraph:
    """Minimal structural view of a flow: nodes and edges in document order."""

    name: str
    nodes: Tuple[Node, ...] = ()
    edges: Tuple[Edge, ...] = ()

    _by_id:    Mapping[str, Node]              = field(init=False, repr=False, compare=False)
    _incoming: Mapping[str, Tuple[Edge, ...]]  = field(init=False, repr=False, compare=False)
    _outgoing: Mapping[str, Tuple[Edge, ...]]  = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        incoming: Dict[str, List[Edge]] = {n.id: [] for n in self.nodes}
        outgoing: Dict[str, List[Edge]] = {n.id: [] for n in self.nodes}
        for edge in self.edges:
            incoming.setdefault(edge.target, []).append(edge)
            outgoing.setdefault(edge.source, []).append(edge)

        object.__setattr__(self, "_by_id", MappingProxyType({n.id: n for n in self.nodes}))
        object.__setattr__(self, "_incoming", MappingProxyType({k: tuple(v) for k, v in incoming.items()}))
        object.__setattr__(self, "_outgoing", MappingProxyType({k: tuple(v) for k, v in outgoing.items()}))

    # ── Convenience queries ────────────────────────────────────────────────

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._by_id

    def get_node(self, node_id: str) -> Optional[Node]:
        return self._by_id.get(node_id)

    def get_incoming(self, node_id: str) -> Tuple[Edge, ...]:
        return self._incoming.get(node_id, ())

    def get_outgoing(self, node_id: str) -> Tuple[Edge, ...]:
        return self._outgoing.get(node_id, ())

    def sinks(self) -> List[Node]:
        """Nodes with no outgoing edges, in document order."""
        return [n for n in self.nodes if not self._outgoing.get(n.id)]
