"""
Command-line interface for chatflow.

Usage:
    chatflow validate flows/welcome.json
    chatflow compile flows/welcome.json --flow-id welcome --name "Welcome" --output welcome.ir.json
"""

import argparse
import json
import sys
from pathlib import Path

from pydantic import ValidationError

from chatflow.config import RuntimeConfig
from chatflow.graph import FlowGraph, FlowValidationError, compile_flow, validate_graph
from chatflow.observability import configure_logging


def _load_graph(path: str) -> FlowGraph:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    # Accept either a bare {nodes, edges} document or a flow row with a "graph" key
    if isinstance(data, dict) and "graph" in data and "nodes" not in data:
        data = data["graph"]
    return FlowGraph.from_dict(data)


def _read(path: str) -> FlowGraph | None:
    try:
        return _load_graph(path)
    except FileNotFoundError:
        print(f"Error: file not found: {path}", file=sys.stderr)
    except json.JSONDecodeError as e:
        print(f"Error: {path} is not valid JSON: {e}", file=sys.stderr)
    except ValidationError as e:
        print(f"Error: {path} is not a flow graph:\n{e}", file=sys.stderr)
    return None


def cmd_validate(args: argparse.Namespace) -> int:
    graph = _read(args.graph)
    if graph is None:
        return 1

    result = validate_graph(graph, allow_fan_out=args.allow_fan_out)
    if result.is_valid:
        print(f"OK: {len(graph.nodes)} node(s), {len(graph.edges)} edge(s)")
        return 0

    print(f"Invalid flow ({len(result.errors)} error(s)):")
    for error in result.errors:
        print(f"  - {error}")
    return 1


def cmd_compile(args: argparse.Namespace) -> int:
    graph = _read(args.graph)
    if graph is None:
        return 1

    flow_id = args.flow_id or Path(args.graph).stem
    try:
        flow = compile_flow(
            flow_id,
            args.name or flow_id,
            graph,
            version=args.version,
            allow_fan_out=args.allow_fan_out,
        )
    except FlowValidationError as e:
        print(f"Invalid flow ({len(e.errors)} error(s)):")
        for error in e.errors:
            print(f"  - {error}")
        return 1

    document = flow.to_json()
    if args.output:
        Path(args.output).write_text(document + "\n", encoding="utf-8")
        print(f"Wrote {args.output}")
    else:
        print(document)
    return 0


def register_commands(subparsers: argparse._SubParsersAction) -> None:
    validate_parser = subparsers.add_parser("validate", help="Validate a flow graph")
    validate_parser.add_argument("graph", help="Path to the graph JSON document")
    validate_parser.add_argument(
        "--allow-fan-out",
        action="store_true",
        default=None,
        help="Accept several edges on one output (first edge wins)",
    )
    validate_parser.set_defaults(func=cmd_validate)

    compile_parser = subparsers.add_parser("compile", help="Compile a flow graph to its IR")
    compile_parser.add_argument("graph", help="Path to the graph JSON document")
    compile_parser.add_argument("--flow-id", help="Flow ID (default: file name)")
    compile_parser.add_argument("--name", help="Flow name (default: flow ID)")
    compile_parser.add_argument("--version", type=int, default=1, help="IR version number")
    compile_parser.add_argument("--output", "-o", help="Write the IR here instead of stdout")
    compile_parser.add_argument(
        "--allow-fan-out",
        action="store_true",
        default=None,
        help="Accept several edges on one output (first edge wins)",
    )
    compile_parser.set_defaults(func=cmd_compile)


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(
        prog="chatflow",
        description="chatflow - validate and compile chat automation flows",
    )
    parser.add_argument("--log-level", default=None, help="Log level (default from config)")

    subparsers = parser.add_subparsers(dest="command", required=True)
    register_commands(subparsers)

    args = parser.parse_args(argv)

    config = RuntimeConfig.load()
    configure_logging(level=args.log_level or config.log_level)
    if args.allow_fan_out is None:
        args.allow_fan_out = config.allow_fan_out

    if hasattr(args, "func"):
        sys.exit(args.func(args))


if __name__ == "__main__":
    main()
