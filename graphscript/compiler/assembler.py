"""
graphscript compiler — Code Assembler
=====================================
Walks a Plan and calls each node's descriptor, producing an `Assembly`: the
accumulated imports, helper functions, dependencies and body fragments the
emitter joins into the final script.

Variable naming
---------------
Every node that produces a value gets a Python variable:

    {base}_{ordinal}        e.g.  csv_file_input_1, filter_2

base     = descriptor.output_prefix, else snake_case(node.type)
ordinal  = position of the node among the flow's nodes with the same base,
           counted in *document* order over the whole flow.

Because the ordinal ignores traversal order, a full compile and a
"run up to node X" compile give every shared node the same name.
A descriptor may ask for an explicit name via preferred_name(); names that
clash with keywords, builtins, helper functions or an earlier binding get a
numeric suffix.

Deferred nodes
--------------
Environment / Connection setup is spliced in once, directly before the first
fragment that consumes it.  Deferred nodes nothing consumes (free-standing
environment settings) go to the top of the body.

Output steps
------------
Descriptors with is_output=True are wrapped:

    try:
        <fragment>
    except Exception as _exc:
        _report_step_failure("<node id>", "<node type>", _exc)
"""

from __future__ import annotations

import builtins
import keyword
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, FrozenSet, Iterator, List, Optional, Set, Tuple

from .diagnostics import (
    CompileError,
    ConflictingDependencyVersion,
    ConflictingHelperFunction,
    DescriptorEmitFailure,
    Diagnostic,
    DiagnosticKind,
    Severity,
)
from .ir import CompilationGraph, Edge, Node
from .planner import Plan
from .registry import Descriptor, DescriptorRegistry, Emission, InputRefs, Preview
from .templates import CodeWriter


logger = logging.getLogger(__name__)


# ── Host runtime contract ─────────────────────────────────────────────────────
# The host that runs the script defines these two functions.

DISPLAY_DATAFRAME_HOOK = "_display_dataframe"
DISPLAY_DOCUMENTS_HOOK = "_display_documents_as_html"

FAILURE_REPORTER = "_report_step_failure"

_FAILURE_REPORTER_IMPORTS = ("import json", "import sys")

_FAILURE_REPORTER_SOURCE = f'''\
def {FAILURE_REPORTER}(node_id, node_type, exc):
    """Print a structured failure notice for an output step to stderr."""
    notice = {{
        "status": "failed",
        "node_id": node_id,
        "node_type": node_type,
        "error_type": type(exc).__name__,
        "error": str(exc),
    }}
    print(json.dumps(notice), file=sys.stderr)
'''

_PREVIEW_HOOKS = {
    Preview.TABLE:     DISPLAY_DATAFRAME_HOOK,
    Preview.DOCUMENTS: DISPLAY_DOCUMENTS_HOOK,
}


def _has_statement(code: str) -> bool:
    return any(line.strip() and not line.strip().startswith("#") for line in code.splitlines())


class CompileMode(str, Enum):
    FULL         = "full"
    UNTIL_TARGET = "until_target"


# ── Ordered accumulators ──────────────────────────────────────────────────────

class OrderedSet:
    """Insertion-ordered set of strings; re-adding keeps the first position."""

    def __init__(self) -> None:
        self._items: Dict[str, None] = {}

    def add(self, item: str) -> bool:
        if item in self._items:
            return False
        self._items[item] = None
        return True

    def __contains__(self, item: object) -> bool:
        return item in self._items

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)


_REQUIREMENT_RE = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)\s*(?:\[([^\]]*)\])?\s*(.*?)\s*$")


def _parse_requirement(requirement: str) -> Tuple[str, str, FrozenSet[str], str]:
    """(name as written, normalised name, extras, specifier without spaces)."""
    match = _REQUIREMENT_RE.match(requirement)
    if not match:
        raise ValueError(f"invalid dependency specifier {requirement!r}")
    raw, extras, spec = match.groups()
    extra_names = frozenset(e.strip().lower() for e in (extras or "").split(",") if e.strip())
    return raw, re.sub(r"[-_.]+", "-", raw).lower(), extra_names, re.sub(r"\s+", "", spec)


def split_requirement(requirement: str) -> Tuple[str, str]:
    """'SQLAlchemy >= 2.0' → ('sqlalchemy', '>=2.0').  Names are PEP 503 normalised."""
    _, name, _, spec = _parse_requirement(requirement)
    return name, spec


class DependencySet:
    """
    Dependencies keyed by normalised distribution name, first-seen order.

    A bare name followed by a constrained one ("pandas", then "pandas>=2")
    keeps its position and takes the constraint.  Extras from every
    declaration are merged ("pandas[sql]" + "pandas[excel]").  Two different
    constraints for one distribution are a conflict.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, str] = {}
        self._declared_by: Dict[str, str] = {}

    def add(self, requirement: str, node_id: Optional[str] = None) -> None:
        try:
            _, name, extras, spec = _parse_requirement(requirement)
        except ValueError as exc:
            raise DescriptorEmitFailure(str(exc), node_id=node_id) from exc
        requirement = requirement.strip()

        existing = self._entries.get(name)
        if existing is None:
            self._entries[name] = requirement
            self._declared_by[name] = node_id or ""
            return

        raw, _, existing_extras, existing_spec = _parse_requirement(existing)
        if spec and existing_spec and spec != existing_spec:
            raise ConflictingDependencyVersion(
                f"dependency '{name}' required as {existing!r} "
                f"(node {self._declared_by[name] or '?'}) and as {requirement!r}",
                node_id=node_id,
            )

        merged_spec = existing_spec or spec
        merged_extras = existing_extras | extras
        if (merged_spec, merged_extras) == (existing_spec, existing_extras):
            return
        if (merged_spec, merged_extras) == (spec, extras):
            self._entries[name] = requirement
            return
        extras_text = f"[{','.join(sorted(merged_extras))}]" if merged_extras else ""
        self._entries[name] = f"{raw}{extras_text}{merged_spec}"

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)


# ── Naming ────────────────────────────────────────────────────────────────────

def snake_case(type_name: str) -> str:
    """'csvFileInput' → 'csv_file_input', 'WriteSink' → 'write_sink'."""
    name = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", type_name)
    name = re.sub(r"(?<=[A-Z])(?=[A-Z][a-z])", "_", name)
    name = re.sub(r"\W+", "_", name).strip("_").lower()
    if not name:
        return "node"
    if name[0].isdigit():
        return f"node_{name}"
    return name


class NameAllocator:
    def __init__(
        self,
        graph: CompilationGraph,
        base_of: Callable[[Node], str],
        reserved: Set[str],
    ):
        self._taken: Set[str] = set(reserved)
        self._ordinals: Dict[str, int] = {}

        counters: Dict[str, int] = {}
        self._bases: Dict[str, str] = {}
        for node in graph.nodes:
            base = base_of(node)
            counters[base] = counters.get(base, 0) + 1
            self._bases[node.id] = base
            self._ordinals[node.id] = counters[base]

    def synthesize(self, node: Node) -> str:
        return f"{self._bases[node.id]}_{self._ordinals[node.id]}"

    def claim(self, name: str) -> str:
        if not name.isidentifier():
            name = snake_case(name)
        candidate = name
        suffix = 2
        while candidate in self._taken or keyword.iskeyword(candidate):
            candidate = f"{name}_{suffix}"
            suffix += 1
        self._taken.add(candidate)
        return candidate

    def take(self, name: str) -> bool:
        """Claim exactly `name`; False if it is not a free identifier."""
        if not name.isidentifier() or keyword.iskeyword(name) or name in self._taken:
            return False
        self._taken.add(name)
        return True


# ── Result ────────────────────────────────────────────────────────────────────

@dataclass
class Assembly:
    graph_name: str
    mode: CompileMode
    target: Optional[str]
    imports: List[str]              = field(default_factory=list)
    functions: List[str]            = field(default_factory=list)
    dependencies: List[str]         = field(default_factory=list)
    body: List[str]                 = field(default_factory=list)
    output_refs: Dict[str, str]     = field(default_factory=dict)
    emitted: List[str]              = field(default_factory=list)
    diagnostics: List[Diagnostic]   = field(default_factory=list)


# ── Assembler ─────────────────────────────────────────────────────────────────

class CodeAssembler:
    def __init__(
        self,
        graph: CompilationGraph,
        registry: DescriptorRegistry,
        plan: Plan,
    ):
        self.graph = graph
        self.registry = registry
        self.plan = plan

        self._deferred: Set[str] = set(plan.deferred)
        self._deferred_rank: Dict[str, int] = {nid: i for i, nid in enumerate(plan.deferred)}

        # Per-call working state.
        self._imports = OrderedSet()
        self._dependencies = DependencySet()
        self._functions: Dict[str, str] = {}
        self._function_owner: Dict[str, str] = {}
        self._body: List[str] = []
        self._emitted: List[str] = []
        self._emitted_deferred: Set[str] = set()
        self._failed: Set[str] = set()
        self._errors: List[Diagnostic] = []
        self._warnings: List[Diagnostic] = []
        self.output_refs: Dict[str, str] = {}

        self._names = NameAllocator(graph, self._name_base, self._reserved_names())

    # ── Setup helpers ─────────────────────────────────────────────────────

    def _descriptor(self, node: Node) -> Descriptor:
        return self.registry.resolve(node.type, node.id)

    def _name_base(self, node: Node) -> str:
        descriptor = self.registry.get(node.type)
        prefix = descriptor.output_prefix if descriptor is not None else None
        return snake_case(prefix or node.type)

    def _reserved_names(self) -> Set[str]:
        reserved = set(dir(builtins))
        reserved.update({DISPLAY_DATAFRAME_HOOK, DISPLAY_DOCUMENTS_HOOK, FAILURE_REPORTER})
        for nid in self.plan.nodes:
            descriptor = self._descriptor(self.graph.get_node(nid))
            reserved.update(descriptor.functions.keys())
        return reserved

    # ── Accumulation ──────────────────────────────────────────────────────

    def _add_import(self, line: str) -> None:
        for part in line.splitlines():
            part = part.strip()
            if part:
                self._imports.add(part)

    def _add_function(self, name: str, source: str, node_id: str) -> None:
        source = source.strip("\n")
        existing = self._functions.get(name)
        if existing is None:
            self._functions[name] = source
            self._function_owner[name] = node_id
        elif existing.strip() != source.strip():
            raise ConflictingHelperFunction(
                f"helper function '{name}' is defined differently by node "
                f"'{self._function_owner[name]}' and node '{node_id}'",
                node_id=node_id,
            )

    def _collect(self, node: Node, descriptor: Descriptor) -> None:
        for line in descriptor.imports:
            self._add_import(line)
        for name, source in descriptor.functions.items():
            self._add_function(name, source, node.id)
        for requirement in descriptor.dependencies:
            self._dependencies.add(requirement, node.id)

    # ── Inputs ────────────────────────────────────────────────────────────

    def _input_refs(self, nid: str) -> InputRefs:
        ordered: List[str] = []
        by_handle: Dict[str, str] = {}
        connections: Dict[str, str] = {}

        for edge in self.plan.incoming.get(nid, ()):
            ref = self.output_refs.get(edge.source)
            if ref is None:
                logger.debug("node '%s' has no output to bind into '%s'", edge.source, nid)
                continue
            if edge.source in self._deferred:
                connections[edge.source] = ref
                continue
            ordered.append(ref)
            if edge.target_handle:
                by_handle[edge.target_handle] = ref

        return InputRefs(ordered=tuple(ordered), by_handle=by_handle, connections=connections)

    # ── Emission ──────────────────────────────────────────────────────────

    def _wrap_output(self, node: Node, code: str) -> str:
        for line in _FAILURE_REPORTER_IMPORTS:
            self._add_import(line)
        self._add_function(FAILURE_REPORTER, _FAILURE_REPORTER_SOURCE, node.id)

        w = CodeWriter()
        w.writeln("try:")
        with w.indented():
            w.block(code)
            if not _has_statement(code):
                w.writeln("pass")
        w.writeln("except Exception as _exc:")
        with w.indented():
            w.writeln(f"{FAILURE_REPORTER}({node.id!r}, {node.type!r}, _exc)")
        return w.result()

    def _fail(self, node: Node, message: str) -> None:
        self._failed.add(node.id)
        self._errors.append(Diagnostic(
            DiagnosticKind.DESCRIPTOR_EMIT_FAILURE,
            f"{node.type}: {message}",
            node_id=node.id,
        ))

    def _emit_node(self, nid: str) -> None:
        node = self.graph.get_node(nid)
        if any(e.source in self._failed for e in self.plan.incoming.get(nid, ())):
            # An upstream failure is already reported; don't pile on.
            self._failed.add(nid)
            return

        descriptor = self._descriptor(node)
        inputs = self._input_refs(nid)

        try:
            output: Optional[str] = None
            if descriptor.produces_output:
                output = self._names.claim(descriptor.preferred_name(node) or self._names.synthesize(node))
            result = descriptor.emit(node, inputs, output)
        except Exception as exc:
            logger.debug("descriptor for '%s' failed on node '%s'", node.type, nid, exc_info=True)
            self._fail(node, f"{type(exc).__name__}: {exc}")
            return

        if isinstance(result, str):
            result = Emission(code=result)
        if not isinstance(result, Emission):
            self._fail(node, f"emit() returned {type(result).__name__}, expected Emission or str")
            return

        ref = output
        if result.output_ref and result.output_ref != output:
            # An explicit binding must not shadow any other node's variable.
            if not self._names.take(result.output_ref):
                self._fail(node, f"output name {result.output_ref!r} is not a free identifier")
                return
            ref = result.output_ref
        if ref:
            self.output_refs[nid] = ref

        self._collect(node, descriptor)

        code = result.code.strip("\n")
        if descriptor.is_output:
            code = self._wrap_output(node, code)

        self._body.append(f"# Node: {nid} ({node.type})\n{code}")
        self._emitted.append(nid)

    def _splice_deferred(self, nid: str) -> None:
        """Emit a deferred node (and its own deferred prerequisites) at most once."""
        if nid in self._emitted_deferred:
            return
        self._emitted_deferred.add(nid)
        for edge in self._deferred_predecessors(nid):
            self._splice_deferred(edge.source)
        self._emit_node(nid)

    def _deferred_predecessors(self, nid: str) -> List[Edge]:
        edges = [e for e in self.plan.incoming.get(nid, ()) if e.source in self._deferred]
        return sorted(edges, key=lambda e: self._deferred_rank[e.source])

    def _has_standard_ancestry(self, nid: str) -> bool:
        for edge in self.plan.incoming.get(nid, ()):
            if edge.source not in self._deferred or self._has_standard_ancestry(edge.source):
                return True
        return False

    def _display_fragment(self, target: str) -> None:
        node = self.graph.get_node(target)
        descriptor = self._descriptor(node)
        ref = self.output_refs.get(target)
        hook = _PREVIEW_HOOKS.get(descriptor.preview)

        if ref is None or hook is None:
            self._warnings.append(Diagnostic(
                DiagnosticKind.NO_PREVIEWABLE_OUTPUT,
                f"{node.type} node has no output to display",
                node_id=target,
                severity=Severity.WARNING,
            ))
            return
        self._body.append(f"# Preview: {target}\n{hook}({ref})")

    # ── Public API ────────────────────────────────────────────────────────

    def assemble(self, mode: CompileMode = CompileMode.FULL) -> Assembly:
        target = self.plan.target
        order = list(self.plan.order)
        if mode is CompileMode.UNTIL_TARGET and target in order:
            order = order[: order.index(target) + 1]

        consumed = {
            e.source
            for nid in self.plan.incoming
            for e in self.plan.incoming[nid]
            if e.source in self._deferred
        }
        # Free-standing ambient settings first.
        for nid in self.plan.deferred:
            if nid not in consumed and not self._has_standard_ancestry(nid):
                self._splice_deferred(nid)

        for nid in order:
            for edge in self._deferred_predecessors(nid):
                self._splice_deferred(edge.source)
            self._emit_node(nid)

        # Unconsumed deferred nodes fed by standard steps go after their inputs.
        for nid in self.plan.deferred:
            self._splice_deferred(nid)

        if self._errors:
            raise CompileError(
                f"{len(self._errors)} node(s) could not be emitted",
                diagnostics=self._errors,
            )

        if mode is CompileMode.UNTIL_TARGET and target is not None:
            self._display_fragment(target)

        functions = list(self._functions.values())
        logger.debug(
            "assembled %r: %d fragment(s), %d import(s), %d helper(s), %d dependency(ies)",
            self.graph.name, len(self._body), len(self._imports), len(functions), len(self._dependencies),
        )
        return Assembly(
            graph_name=self.graph.name,
            mode=mode,
            target=target,
            imports=list(self._imports),
            functions=functions,
            dependencies=list(self._dependencies),
            body=list(self._body),
            output_refs=dict(self.output_refs),
            emitted=list(self._emitted),
            diagnostics=list(self._warnings),
        )


def assemble(
    graph: CompilationGraph,
    registry: DescriptorRegistry,
    plan: Plan,
    mode: CompileMode = CompileMode.FULL,
) -> Assembly:
    return CodeAssembler(graph, registry, plan).assemble(mode)


__all__ = [
    "Assembly",
    "CodeAssembler",
    "CompileMode",
    "DISPLAY_DATAFRAME_HOOK",
    "DISPLAY_DOCUMENTS_HOOK",
    "DependencySet",
    "FAILURE_REPORTER",
    "NameAllocator",
    "OrderedSet",
    "assemble",
    "snake_case",
    "split_requirement",
]
