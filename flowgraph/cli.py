"""Command-line entry point for the flow graph engine.

Usage:
    flowgraph serve --port 8000
    flowgraph test-transform --code 'return { doubled: input.value * 2 };' --input '{"value": 5}'
    flowgraph test-transform --file transform.ts --input-file sample.json
    flowgraph validate flow.json
"""

from __future__ import annotations

import json
import logging
import sys
from argparse import ArgumentParser, Namespace
from pathlib import Path

from flowgraph.config import EngineSettings


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _read_source(inline: str | None, path: str | None) -> str | None:
    if path:
        return Path(path).read_text(encoding="utf-8")
    return inline


def _cmd_test_transform(args: Namespace, settings: EngineSettings) -> int:
    try:
        code = _read_source(args.code, args.file)
        raw_input = _read_source(args.input, args.input_file)
    except OSError as e:
        print(f"error: cannot read {e.filename}: {e.strerror}", file=sys.stderr)
        return 2
    if code is None:
        print("error: one of --code or --file is required", file=sys.stderr)
        return 2
    try:
        sample = json.loads(raw_input) if raw_input is not None else None
    except json.JSONDecodeError as e:
        print(f"error: sample input is not valid JSON: {e}", file=sys.stderr)
        return 2

    from flowgraph.sandbox.runner import TransformSandbox

    sandbox = TransformSandbox(
        timeout_ms=args.timeout_ms or settings.sandbox_timeout_ms,
        max_memory_mb=settings.sandbox_max_memory_mb,
        grace_ms=settings.sandbox_grace_ms,
    )
    result = sandbox.test_transform(code, sample)
    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.success else 1


def _cmd_validate(args: Namespace, settings: EngineSettings) -> int:
    """Migrate and audit a flow document read from disk. Never writes the file back."""
    from flowgraph.graph.migrate import migrate
    from flowgraph.graph.model import Flow
    from flowgraph.graph.topology import audit_flow
    from flowgraph.registry import NodeRegistry

    try:
        document = json.loads(Path(args.path).read_text(encoding="utf-8"))
    except OSError as e:
        print(f"error: cannot read {args.path}: {e.strerror}", file=sys.stderr)
        return 2
    except json.JSONDecodeError as e:
        print(f"error: {args.path} is not valid JSON: {e}", file=sys.stderr)
        return 2
    if not isinstance(document, dict):
        print(f"error: {args.path} does not contain a flow object", file=sys.stderr)
        return 2

    result = migrate(Flow.from_dict(document))
    if result.changed:
        print(
            f"note: document needs migration ({result.slugs_assigned} slug(s), "
            f"{result.nodes_rewritten} node(s) with legacy references)"
        )
    report = audit_flow(result.flow, NodeRegistry.default().category_of)
    if report.valid:
        print(f"{args.path}: ok ({len(result.flow.nodes)} nodes, "
              f"{len(result.flow.connections)} connections)")
        return 0
    for error in report.errors:
        print(f"{args.path}: {error}")
    return 1


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="flowgraph",
        description="Flow graph engine — HTTP server and local tools",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve_p = sub.add_parser("serve", help="Run the HTTP API")
    serve_p.add_argument("--host", default="0.0.0.0")
    serve_p.add_argument("--port", type=int, default=8000)
    serve_p.add_argument("--reload", action="store_true", help="Auto-reload on code changes")

    tt_p = sub.add_parser("test-transform", help="Run transform code in the sandbox")
    code_g = tt_p.add_mutually_exclusive_group()
    code_g.add_argument("--code", help="Transform code (body, function, or arrow function)")
    code_g.add_argument("--file", help="Read transform code from this file")
    input_g = tt_p.add_mutually_exclusive_group()
    input_g.add_argument("--input", help="Sample input as a JSON string")
    input_g.add_argument("--input-file", help="Read sample input JSON from this file")
    tt_p.add_argument(
        "--timeout-ms",
        type=int,
        default=None,
        metavar="MS",
        help="Override FLOWGRAPH_SANDBOX_TIMEOUT_MS for this run",
    )

    val_p = sub.add_parser("validate", help="Audit a flow document for invariant violations")
    val_p.add_argument("path", help="Path to a flow JSON document")

    return parser


def main(argv: list[str] | None = None) -> None:
    settings = EngineSettings.from_env()
    logging.basicConfig(level=settings.log_level, format="%(levelname)s: %(message)s")

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "serve":
        from flowgraph.api import serve
        serve(host=args.host, port=args.port, reload=args.reload)
    elif args.command == "test-transform":
        sys.exit(_cmd_test_transform(args, settings))
    elif args.command == "validate":
        sys.exit(_cmd_validate(args, settings))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
