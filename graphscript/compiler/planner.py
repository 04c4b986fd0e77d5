"""
graphscript compiler — Traversal Planner
========================================
Maps a CompilationGraph + target → Plan: the deterministic visiting order the
assembler walks.

Steps
-----
1. Roots      — the target node, or every sink (no outgoing edges) when no
                target is given.  A full compile also keeps nodes that
                reach no sink, so a closed cycle cannot vanish.
2. Ancestry   — reverse reachability from the roots over incoming edges.  Only
                these nodes are compiled; descendants of the target and
                unrelated branches never appear.
3. Resolution — every node in the ancestry must have a registered descriptor.
                All unknown types are reported together.
4. Ordering   — Kahn's algorithm over the restricted subgraph.  Among the
                nodes that are ready at the same time, the one declared first
                in the document wins, so an unchanged graph always yields the
                same order (and therefore byte-identical scripts).
5. Split      — ENVIRONMENT / CONNECTION nodes move from `order` to
                `deferred`.  The assembler splices them in right before their
                first consumer.

A cycle among the compiled nodes raises CycleDetected; it is never broken.
"""

from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Set, Tuple

from .diagnostics import (
    CompileCancelled,
    CompileError,
    CycleDetected,
    InvalidCompileRequest,
    UnknownNodeType,
)
from .ir import CompilationGraph, Edge
from .registry import DescriptorRegistry


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Plan:
    # Standard nodes, topologically sorted.
    order: Tuple[str, ...]
    # Environment / Connection nodes, same stable topological order.
    deferred: Tuple[str, ...]
    target: Optional[str] = None
    # node id → incoming edges inside the compiled subgraph, document order.
    incoming: Mapping[str, Tuple[Edge, ...]] = field(default_factory=dict)

    @property
    def nodes(self) -> Set[str]:
        return set(self.order) | set(self.deferred)


class TraversalPlanner:
    def __init__(
        self,
        graph: CompilationGraph,
        registry: DescriptorRegistry,
        should_cancel: Optional[Callable[[], bool]] = None,
    ):
        self.graph = graph
        self.registry = registry
        self.should_cancel = should_cancel

    # ── Ancestry ──────────────────────────────────────────────────────────

    def _check_cancelled(self) -> None:
        if self.should_cancel is not None and self.should_cancel():
            raise CompileCancelled("compilation cancelled")

    def _ancestors(self, roots: List[str]) -> Set[str]:
        """All nodes with a path into any root, roots included."""
        members: Set[str] = set()
        stack = list(reversed(roots))
        while stack:
            nid = stack.pop()
            if nid in members:
                continue
            self._check_cancelled()
            members.add(nid)
            for edge in self.graph.get_incoming(nid):
                if edge.source not in members:
                    stack.append(edge.source)
        return members

    # ── Descriptor resolution ─────────────────────────────────────────────

    def _resolve_all(self, members: Set[str]) -> Dict[str, bool]:
        """node id → is_deferred.  Raises with one diagnostic per unknown type."""
        deferred: Dict[str, bool] = {}
        unknown: List[UnknownNodeType] = []
        for node in self.graph.nodes:
            if node.id not in members:
                continue
            try:
                descriptor = self.registry.resolve(node.type, node.id)
            except UnknownNodeType as exc:
                unknown.append(exc)
                continue
            deferred[node.id] = descriptor.category.is_deferred

        if unknown:
            types = sorted({exc.type_name for exc in unknown})
            raise CompileError(
                f"unknown node type(s): {', '.join(types)}",
                diagnostics=[d for exc in unknown for d in exc.diagnostics],
            )
        return deferred

    # ── Ordering ──────────────────────────────────────────────────────────

    def _topological_order(self, members: Set[str]) -> List[str]:
        """Kahn's algorithm, ready-queue keyed by document position."""
        in_degree: Dict[str, int] = {nid: 0 for nid in members}
        for nid in members:
            for edge in self.graph.get_incoming(nid):
                if edge.source in members:
                    in_degree[nid] += 1

        ready: List[Tuple[int, str]] = [
            (self.graph.get_node(nid).index, nid)
            for nid, degree in in_degree.items() if degree == 0
        ]
        heapq.heapify(ready)

        order: List[str] = []
        while ready:
            _, nid = heapq.heappop(ready)
            order.append(nid)
            for edge in self.graph.get_outgoing(nid):
                if edge.target not in members:
                    continue
                in_degree[edge.target] -= 1
                if in_degree[edge.target] == 0:
                    heapq.heappush(ready, (self.graph.get_node(edge.target).index, edge.target))

        if len(order) != len(members):
            raise CycleDetected(self._cycle_members(members - set(order)))
        return order

    def _cycle_members(self, remaining: Set[str]) -> List[str]:
        """
        Nodes left over by Kahn are on a cycle or downstream of one.  Peel off
        the ones with no successor among the rest until only cycle
        participants (and nodes between cycles) are left.
        """
        remaining = set(remaining)
        changed = True
        while changed:
            changed = False
            for nid in list(remaining):
                if not any(e.target in remaining for e in self.graph.get_outgoing(nid)):
                    remaining.discard(nid)
                    changed = True
        return [n.id for n in self.graph.nodes if n.id in remaining]

    # ── Public API ────────────────────────────────────────────────────────

    def plan(self, target: Optional[str] = None) -> Plan:
        if target is not None:
            if target not in self.graph:
                raise InvalidCompileRequest(f"target node '{target}' not found in flow", node_id=target)
            roots = [target]
        else:
            roots = [n.id for n in self.graph.sinks()]

        members = self._ancestors(roots)
        if target is None:
            # In a DAG every node reaches a sink; anything left over sits on a
            # cycle with no way out, and Kahn below must see it.
            members.update(n.id for n in self.graph.nodes if n.id not in members)
        is_deferred = self._resolve_all(members)
        ordered = self._topological_order(members)

        incoming = {
            nid: tuple(e for e in self.graph.get_incoming(nid) if e.source in members)
            for nid in ordered
        }
        plan = Plan(
            order=tuple(nid for nid in ordered if not is_deferred[nid]),
            deferred=tuple(nid for nid in ordered if is_deferred[nid]),
            target=target,
            incoming=incoming,
        )
        logger.debug(
            "planned %r (target=%s): order=%s deferred=%s",
            self.graph.name, target, list(plan.order), list(plan.deferred),
        )
        return plan


def plan(
    graph: CompilationGraph,
    registry: DescriptorRegistry,
    target: Optional[str] = None,
    should_cancel: Optional[Callable[[], bool]] = None,
) -> Plan:
    return TraversalPlanner(graph, registry, should_cancel=should_cancel).plan(target)


__all__ = ["Plan", "TraversalPlanner", "plan"]
