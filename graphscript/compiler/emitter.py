"""
graphscript compiler — Script Finalizer
=======================================
Joins an Assembly into the final script text and wraps it in a CompiledUnit.

Output structure (fixed; tools that inject imports rely on it)
--------------------------------------------------------------
    #!/usr/bin/env python3
    # Compiled by graphscript 0.4.0 from pipeline 'orders'
    # Generated-At: 2026-…            (only when timestamps are enabled)
    # Do not edit by hand; recompile the pipeline to regenerate.

    # Dependencies: pandas, sqlalchemy>=2.0
    <install guard>                   (only when enabled)

    <imports, first-seen order, deduplicated>

    <helper functions, deduplicated>

    <body fragments, deferred setup already spliced in>

The timestamp line is the only non-deterministic text the compiler can
produce, and it is off unless explicitly requested.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from graphscript.config import CompilerSettings

from .assembler import Assembly, CompileMode, split_requirement
from .diagnostics import Diagnostic
from .templates import CodeWriter


BANNER_PREFIX = "# Dependencies:"
TIMESTAMP_PREFIX = "# Generated-At:"


# ── Result ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CompiledUnit:
    script: Optional[str]
    dependencies: Tuple[str, ...] = ()
    diagnostics: Tuple[Diagnostic, ...] = ()

    @property
    def ok(self) -> bool:
        return self.script is not None

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.is_error]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "script":       self.script,
            "dependencies": list(self.dependencies),
            "diagnostics":  [d.to_dict() for d in self.diagnostics],
        }


# ── Sections ──────────────────────────────────────────────────────────────────

def _header(
    assembly: Assembly,
    settings: CompilerSettings,
    generated_at: Optional[datetime.datetime],
) -> List[str]:
    lines = [
        "#!/usr/bin/env python3",
        f"# Compiled by {settings.tool_name} {settings.tool_version} "
        f"from pipeline {assembly.graph_name!r}",
    ]
    if assembly.mode is CompileMode.UNTIL_TARGET:
        lines.append(f"# Partial compile: up to node {assembly.target!r}")
    if generated_at is not None:
        lines.append(f"{TIMESTAMP_PREFIX} {generated_at.isoformat()}")
    lines.append("# Do not edit by hand; recompile the pipeline to regenerate.")
    return lines


def banner_line(dependencies: Sequence[str]) -> str:
    if not dependencies:
        return BANNER_PREFIX
    return f"{BANNER_PREFIX} {', '.join(dependencies)}"


def parse_banner(script: str) -> List[str]:
    """Read the dependency list back out of a compiled script."""
    for line in script.splitlines():
        if line.startswith(BANNER_PREFIX):
            rest = line[len(BANNER_PREFIX):].strip()
            return [d.strip() for d in rest.split(",") if d.strip()]
    return []


def _install_guard(dependencies: Sequence[str]) -> List[str]:
    """Install-if-missing block; runs before the first import of the script."""
    w = CodeWriter()
    w.writeln("import importlib.metadata as _metadata")
    w.writeln("import subprocess as _subprocess")
    w.writeln("import sys as _sys")
    w.blank()
    w.writeln("for _dist, _requirement in [")
    with w.indented():
        for req in dependencies:
            w.writeln(f"({split_requirement(req)[0]!r}, {req!r}),")
    w.writeln("]:")
    with w.indented():
        w.writeln("try:")
        w.push().writeln("_metadata.distribution(_dist)").pop()
        w.writeln("except _metadata.PackageNotFoundError:")
        w.push().writeln(
            '_subprocess.check_call([_sys.executable, "-m", "pip", "install", "--quiet", _requirement])'
        )
    return w.lines()


def _banner(assembly: Assembly, settings: CompilerSettings, future_imports: List[str]) -> List[str]:
    lines = [banner_line(assembly.dependencies)]
    # `from __future__` must precede any statement, including the guard.
    lines.extend(future_imports)
    if settings.install_guard and assembly.dependencies:
        lines.extend(_install_guard(assembly.dependencies))
    return lines


def _functions(sources: List[str]) -> List[str]:
    lines: List[str] = []
    for i, source in enumerate(sources):
        if i:
            lines.extend(["", ""])
        lines.extend(source.splitlines())
    return lines


def _body(fragments: List[str]) -> List[str]:
    if not fragments:
        return ["pass  # empty pipeline"]
    lines: List[str] = []
    for i, fragment in enumerate(fragments):
        if i:
            lines.append("")
        lines.extend(fragment.splitlines())
    return lines


# ── Public API ────────────────────────────────────────────────────────────────

def emit(
    assembly: Assembly,
    settings: Optional[CompilerSettings] = None,
    generated_at: Optional[datetime.datetime] = None,
) -> str:
    """
    Emit the complete script for an Assembly.

    Args:
        assembly:     Output of the code assembler.
        settings:     Header/guard options.  Defaults to CompilerSettings().
        generated_at: Timestamp for the header.  When None and
                      settings.include_timestamp is set, the current UTC time
                      is used.
    """
    settings = settings or CompilerSettings()
    if generated_at is None and settings.include_timestamp:
        generated_at = datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0)

    future_imports = [i for i in assembly.imports if i.startswith("from __future__")]
    imports = [i for i in assembly.imports if not i.startswith("from __future__")]

    sections: List[List[str]] = [
        _header(assembly, settings, generated_at),
        _banner(assembly, settings, future_imports),
        imports,
        _functions(assembly.functions),
        _body(assembly.body),
    ]

    lines: List[str] = []
    for section in sections:
        if not section:
            continue
        if lines:
            lines.extend(["", ""] if section is not sections[1] else [""])
        lines.extend(section)
    return "\n".join(lines) + "\n"


def finalize(
    assembly: Assembly,
    settings: Optional[CompilerSettings] = None,
    generated_at: Optional[datetime.datetime] = None,
) -> CompiledUnit:
    return CompiledUnit(
        script=emit(assembly, settings, generated_at),
        dependencies=tuple(assembly.dependencies),
        diagnostics=tuple(assembly.diagnostics),
    )


__all__ = ["BANNER_PREFIX", "CompiledUnit", "banner_line", "emit", "finalize", "parse_banner"]
