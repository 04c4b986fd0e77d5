"""
graphscript compiler — Diagnostics and error taxonomy
=====================================================
Every failure the compiler can detect is described by a `Diagnostic`.
Inside the pipeline, components raise a `CompileError` subclass carrying one
or more diagnostics; the public entry points in `graphscript.compiler` catch
them and return the diagnostics on the `CompiledUnit` instead of raising.

    Kind                          Raised by
    ────────────────────────────  ─────────────────────────────
    MalformedDocument             schema / deserialiser
    DuplicateNodeId               schema / deserialiser
    DanglingEdge                  schema / deserialiser
    InvalidCompileRequest         planner / compile entry points
    UnknownNodeType               registry / planner
    CycleDetected                 planner
    CompileCancelled              planner
    DescriptorEmitFailure         assembler
    ConflictingDependencyVersion  assembler
    ConflictingHelperFunction     assembler
    NoPreviewableOutput           assembler (warning only)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple


class DiagnosticKind(str, Enum):
    MALFORMED_DOCUMENT             = "MalformedDocument"
    DUPLICATE_NODE_ID              = "DuplicateNodeId"
    DANGLING_EDGE                  = "DanglingEdge"
    INVALID_COMPILE_REQUEST        = "InvalidCompileRequest"
    UNKNOWN_NODE_TYPE              = "UnknownNodeType"
    CYCLE_DETECTED                 = "CycleDetected"
    COMPILE_CANCELLED              = "CompileCancelled"
    DESCRIPTOR_EMIT_FAILURE        = "DescriptorEmitFailure"
    CONFLICTING_DEPENDENCY_VERSION = "ConflictingDependencyVersion"
    CONFLICTING_HELPER_FUNCTION    = "ConflictingHelperFunction"
    NO_PREVIEWABLE_OUTPUT          = "NoPreviewableOutput"


class Severity(str, Enum):
    ERROR   = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class Diagnostic:
    kind: DiagnosticKind
    message: str
    node_id: Optional[str] = None
    severity: Severity = Severity.ERROR

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind":     self.kind.value,
            "node_id":  self.node_id,
            "message":  self.message,
            "severity": self.severity.value,
        }

    def __str__(self) -> str:
        where = f" [node {self.node_id}]" if self.node_id else ""
        return f"{self.kind.value}{where}: {self.message}"


# ── Exceptions ────────────────────────────────────────────────────────────────

class CompileError(ValueError):
    """Base class for every error the compiler detects."""

    kind: DiagnosticKind = DiagnosticKind.MALFORMED_DOCUMENT

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        diagnostics: Optional[Iterable[Diagnostic]] = None,
    ):
        super().__init__(message)
        self.node_id = node_id
        if diagnostics is None:
            diagnostics = [Diagnostic(self.kind, message, node_id)]
        self.diagnostics: Tuple[Diagnostic, ...] = tuple(diagnostics)


class MalformedDocument(CompileError):
    kind = DiagnosticKind.MALFORMED_DOCUMENT


class DuplicateNodeId(CompileError):
    kind = DiagnosticKind.DUPLICATE_NODE_ID


class DanglingEdge(CompileError):
    kind = DiagnosticKind.DANGLING_EDGE


class InvalidCompileRequest(CompileError):
    kind = DiagnosticKind.INVALID_COMPILE_REQUEST


class UnknownNodeType(CompileError):
    kind = DiagnosticKind.UNKNOWN_NODE_TYPE

    def __init__(self, type_name: str, node_id: Optional[str] = None):
        self.type_name = type_name
        super().__init__(f"no descriptor registered for node type '{type_name}'", node_id)


class CycleDetected(CompileError):
    kind = DiagnosticKind.CYCLE_DETECTED

    def __init__(self, participating_nodes: List[str]):
        self.participating_nodes = list(participating_nodes)
        message = "graph contains a cycle through: " + ", ".join(self.participating_nodes)
        super().__init__(
            message,
            diagnostics=[
                Diagnostic(self.kind, message, node_id)
                for node_id in self.participating_nodes
            ],
        )


class CompileCancelled(CompileError):
    kind = DiagnosticKind.COMPILE_CANCELLED


class DescriptorEmitFailure(CompileError):
    kind = DiagnosticKind.DESCRIPTOR_EMIT_FAILURE


class ConflictingDependencyVersion(CompileError):
    kind = DiagnosticKind.CONFLICTING_DEPENDENCY_VERSION


class ConflictingHelperFunction(CompileError):
    kind = DiagnosticKind.CONFLICTING_HELPER_FUNCTION


class DescriptorError(ValueError):
    """Raised by descriptors when a node's `data` cannot be turned into code."""


class RegistryFrozen(RuntimeError):
    """Raised when registering into a registry after startup has completed."""


__all__ = [
    "CompileCancelled",
    "CompileError",
    "ConflictingDependencyVersion",
    "ConflictingHelperFunction",
    "CycleDetected",
    "DanglingEdge",
    "DescriptorEmitFailure",
    "DescriptorError",
    "Diagnostic",
    "DiagnosticKind",
    "DuplicateNodeId",
    "InvalidCompileRequest",
    "MalformedDocument",
    "RegistryFrozen",
    "Severity",
    "UnknownNodeType",
]
