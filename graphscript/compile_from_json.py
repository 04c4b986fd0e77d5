"""
compile_from_json.py — CLI for the graphscript pipeline compiler
================================================================
Compiles a pipeline JSON file saved by the editor into a standalone Python
script.

Usage
-----
    graphscript-compile <pipeline.json> [options]
    python -m graphscript.compile_from_json <pipeline.json> [options]

Options
-------
    --pipeline-id ID    Which pipeline of the document to compile (default: first)
    --target NODE       Compile only NODE and everything it depends on
    --until             With --target: stop at NODE and display its output
    --out DIR           Output directory (default: ./compiled)
    --print             Print the generated source to stdout instead of writing a file
    --timestamp         Add a "# Generated-At:" line to the header
    --install-guard     Embed a pip install-if-missing block for the dependencies
    --no-plugins        Do not load descriptor plugins from installed packages
    --log-level LEVEL   Logging level (default: GRAPHSCRIPT_LOG_LEVEL or WARNING)

Examples
--------
    # Compile the whole pipeline:
    graphscript-compile pipelines/orders.json

    # Preview the output of one step:
    graphscript-compile pipelines/orders.json --target node-4 --until --print
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from graphscript.compiler import CompileMode, compile_pipeline
from graphscript.compiler.assembler import snake_case
from graphscript.compiler.deserialiser import parse_file
from graphscript.compiler.diagnostics import CompileError
from graphscript.compiler.registry import build_registry
from graphscript.config import CompilerSettings


logger = logging.getLogger("graphscript.cli")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="graphscript-compile",
        description="Compile a pipeline JSON graph to a standalone Python script.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    p.add_argument(
        "pipeline_json",
        metavar="pipeline.json",
        help="Path to the pipeline JSON file to compile.",
    )
    p.add_argument("--pipeline-id", default=None, help="Pipeline to compile (default: the first one).")
    p.add_argument("--target", metavar="NODE", default=None, help="Compile only NODE and its ancestors.")
    p.add_argument(
        "--until",
        action="store_true",
        help="Stop at --target and append a display call for its output.",
    )
    p.add_argument(
        "--out",
        metavar="DIR",
        default="compiled",
        help="Output directory for the compiled .py file (default: ./compiled).",
    )
    p.add_argument(
        "--print",
        dest="print_only",
        action="store_true",
        help="Print generated source to stdout instead of writing a file.",
    )
    p.add_argument("--timestamp", action="store_true", default=None, help="Add a generation timestamp line.")
    p.add_argument("--install-guard", action="store_true", default=None, help="Embed an install-if-missing block.")
    p.add_argument("--no-plugins", dest="load_plugins", action="store_false", default=None,
                   help="Skip descriptor plugins from installed packages.")
    p.add_argument("--log-level", default=None, help="Logging level (DEBUG, INFO, WARNING, ...).")
    return p


def _pipeline_name_to_filename(name: str) -> str:
    """Turn 'Orders Cleanup' → 'orders_cleanup.py'."""
    return f"{snake_case(name.replace(' ', '_').replace('-', '_'))}.py"


def main(argv=None) -> int:
    load_dotenv()
    args = _build_parser().parse_args(argv)

    settings = CompilerSettings.from_env().with_overrides(
        include_timestamp=args.timestamp,
        install_guard=args.install_guard,
        load_plugins=args.load_plugins,
        log_level=args.log_level.upper() if args.log_level else None,
    )
    logging.basicConfig(
        level=settings.logging_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.debug("settings: %s", settings)

    if args.until and args.target is None:
        print("[error] --until needs --target", file=sys.stderr)
        return 2

    json_path = Path(args.pipeline_json)
    if not json_path.exists():
        print(f"[error] File not found: {json_path}", file=sys.stderr)
        return 1

    # ── Load + validate ──────────────────────────────────────────────────────
    try:
        flow = parse_file(json_path, pipeline_id=args.pipeline_id)
    except CompileError as exc:
        for diagnostic in exc.diagnostics:
            print(f"[error] {diagnostic}", file=sys.stderr)
        return 1

    print(f"[graphscript] pipeline : {flow.name}", file=sys.stderr)
    print(f"[graphscript] nodes    : {len(flow.nodes)}", file=sys.stderr)
    print(f"[graphscript] edges    : {len(flow.edges)}", file=sys.stderr)

    # ── Compile ──────────────────────────────────────────────────────────────
    mode = CompileMode.UNTIL_TARGET if args.until else CompileMode.FULL
    unit = compile_pipeline(
        flow,
        build_registry(load_plugins=settings.load_plugins),
        target=args.target,
        mode=mode,
        settings=settings,
    )
    for diagnostic in unit.diagnostics:
        level = "error" if diagnostic.is_error else "warning"
        print(f"[{level}] {diagnostic}", file=sys.stderr)
    if not unit.ok:
        return 1

    # ── Output ───────────────────────────────────────────────────────────────
    if args.print_only:
        sys.stdout.write(unit.script)
        return 0

    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)
    out_path = out_dir / _pipeline_name_to_filename(flow.name)
    out_path.write_text(unit.script, encoding="utf-8")

    print(f"[graphscript] wrote    : {out_path}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
