"""
graphscript compiler — Pipeline Graph → Python Script
=====================================================
Compiles a pipeline document saved by the visual editor into one standalone,
deterministic Python script.

Pipeline
--------
    document  →  [deserialiser.parse]                 →  Flow
    Flow      →  [deserialiser.filter_for_compilation] →  CompilationGraph
    graph     →  [planner.TraversalPlanner]           →  Plan
    Plan      →  [assembler.CodeAssembler]            →  Assembly
    Assembly  →  [emitter.finalize]                   →  CompiledUnit

Public API
----------
    from graphscript.compiler import compile_pipeline, compile_until

    unit = compile_pipeline(document)
    if unit.ok:
        print(unit.script)
    else:
        for diagnostic in unit.diagnostics:
            print(diagnostic)

    # "Run up to this node" preview:
    unit = compile_until(document, "node-7")

Errors never escape these functions; they come back as diagnostics on a
CompiledUnit whose ``script`` is None.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any, Callable, Dict, Optional, Union

from graphscript.config import CompilerSettings

from .assembler import CodeAssembler, CompileMode
from .deserialiser import filter_for_compilation, parse
from .diagnostics import CompileError, Diagnostic, DiagnosticKind, InvalidCompileRequest
from .emitter import CompiledUnit, finalize
from .ir import CompilationGraph, Flow
from .planner import TraversalPlanner
from .registry import DescriptorRegistry, default_registry


logger = logging.getLogger(__name__)

Source = Union[Dict[str, Any], Flow, CompilationGraph]


def _as_graph(source: Source, pipeline_id: Optional[str]) -> CompilationGraph:
    if isinstance(source, CompilationGraph):
        return source
    if isinstance(source, Flow):
        return filter_for_compilation(source)
    return filter_for_compilation(parse(source, pipeline_id=pipeline_id))


def _as_mode(mode: Union[CompileMode, str]) -> CompileMode:
    try:
        return CompileMode(mode)
    except ValueError:
        raise InvalidCompileRequest(
            f"unknown compile mode {mode!r} "
            f"(expected one of: {', '.join(m.value for m in CompileMode)})"
        ) from None


def compile_pipeline(
    source: Source,
    registry: Optional[DescriptorRegistry] = None,
    target: Optional[str] = None,
    mode: Union[CompileMode, str] = CompileMode.FULL,
    *,
    pipeline_id: Optional[str] = None,
    settings: Optional[CompilerSettings] = None,
    generated_at: Optional[datetime.datetime] = None,
    should_cancel: Optional[Callable[[], bool]] = None,
) -> CompiledUnit:
    """
    Compile a pipeline into a standalone Python script.

    Args:
        source:        A pipeline document (dict), a parsed Flow, or a
                       CompilationGraph.
        registry:      Descriptor registry.  Defaults to the process-wide
                       registry (built-ins + installed plugins).
        target:        Compile only this node and its ancestors.  When None,
                       every sink is compiled.
        mode:          FULL, or UNTIL_TARGET to stop at `target` and append a
                       preview of its output.
        pipeline_id:   Which pipeline of the document to compile (default:
                       the first).
        settings:      Header/guard options.
        generated_at:  Timestamp for the header line (implies a timestamp).
        should_cancel: Polled once per visited node; returning True aborts
                       with a CompileCancelled diagnostic.

    Returns:
        A CompiledUnit.  ``script`` is None when any error diagnostic was
        produced.
    """
    settings = settings or CompilerSettings()
    try:
        mode = _as_mode(mode)
        if mode is CompileMode.UNTIL_TARGET and target is None:
            raise InvalidCompileRequest("until_target mode needs a target node")
        if registry is None:
            registry = default_registry(settings.load_plugins)

        graph = _as_graph(source, pipeline_id)
        plan = TraversalPlanner(graph, registry, should_cancel=should_cancel).plan(target)
        assembly = CodeAssembler(graph, registry, plan).assemble(mode)
    except CompileError as exc:
        logger.info("compile failed: %s", exc)
        return CompiledUnit(script=None, diagnostics=exc.diagnostics)

    unit = finalize(assembly, settings, generated_at)
    logger.info(
        "compiled %r (%s, target=%s): %d node(s), %d dependency(ies)",
        graph.name, mode.value, target, len(assembly.emitted), len(unit.dependencies),
    )
    return unit


def compile_until(
    source: Source,
    node_id: str,
    registry: Optional[DescriptorRegistry] = None,
    **kwargs: Any,
) -> CompiledUnit:
    """Compile everything `node_id` depends on, then display its output."""
    return compile_pipeline(source, registry, target=node_id, mode=CompileMode.UNTIL_TARGET, **kwargs)


__all__ = [
    "CompileMode",
    "CompiledUnit",
    "Diagnostic",
    "DiagnosticKind",
    "compile_pipeline",
    "compile_until",
]
