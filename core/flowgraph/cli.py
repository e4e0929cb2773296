"""
Command-line interface for flowgraph.

Usage:
    flowgraph run graph.json
    flowgraph run graph.json --output run.json --log-level DEBUG
    flowgraph validate graph.json
    flowgraph order graph.json
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from pydantic import ValidationError

from flowgraph.config import ConfigError, EngineConfig
from flowgraph.executors import default_registry
from flowgraph.graph.errors import CycleDetectedError
from flowgraph.graph.executor import WorkflowExecutor
from flowgraph.graph.ordering import topological_order
from flowgraph.observability import configure_logging
from flowgraph.schemas.run import RunRequest


def _load_request(path: str) -> RunRequest:
    """Read a ``{nodes, edges}`` document from disk."""
    text = Path(path).read_text(encoding="utf-8")
    return RunRequest.model_validate(json.loads(text))


def _load_or_report(path: str) -> RunRequest | None:
    try:
        return _load_request(path)
    except FileNotFoundError:
        print(f"Error: graph file not found: {path}", file=sys.stderr)
    except json.JSONDecodeError as e:
        print(f"Error: {path} is not valid JSON: {e}", file=sys.stderr)
    except ValidationError as e:
        print(f"Error: {path} is not a valid graph:\n{e}", file=sys.stderr)
    return None


def cmd_run(args: argparse.Namespace) -> int:
    """Execute a graph with the reference executors."""
    try:
        config = EngineConfig.load()
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    configure_logging(
        level=args.log_level or config.log_level,
        format=args.log_format or config.log_format,
    )

    request = _load_or_report(args.graph)
    if request is None:
        return 1

    executor = WorkflowExecutor(registry=default_registry(), config=config)
    response = asyncio.run(executor.execute(request))

    payload = json.dumps(response.to_wire(), indent=2, ensure_ascii=False)
    if args.output:
        Path(args.output).write_text(payload + "\n", encoding="utf-8")
        print(f"Run {response.run_id}: {response.status.value} (written to {args.output})")
    else:
        print(payload)

    return 0 if response.success else 1


def cmd_validate(args: argparse.Namespace) -> int:
    """Check a graph for structural problems and cycles."""
    request = _load_or_report(args.graph)
    if request is None:
        return 1

    graph = request.to_graph()
    errors = graph.validate()
    if not errors:
        try:
            topological_order(graph.nodes, graph.edges, strict=True)
        except CycleDetectedError as e:
            errors.append(str(e))

    if errors:
        print("✗ Graph is invalid:")
        for err in errors:
            print(f"  • {err}")
        return 1

    print(f"✓ Graph is valid ({len(graph.nodes)} nodes, {len(graph.edges)} edges)")
    return 0


def cmd_order(args: argparse.Namespace) -> int:
    """Print the static execution order, one node ID per line."""
    request = _load_or_report(args.graph)
    if request is None:
        return 1

    graph = request.to_graph()
    try:
        order = topological_order(graph.nodes, graph.edges, strict=True)
    except CycleDetectedError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    for node_id in order:
        print(node_id)
    return 0


def register_commands(subparsers: argparse._SubParsersAction) -> None:
    run_parser = subparsers.add_parser("run", help="Execute a workflow graph")
    run_parser.add_argument("graph", help="Path to a graph JSON file")
    run_parser.add_argument("--output", "-o", help="Write the run response to this file")
    run_parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (default: from config, INFO)",
    )
    run_parser.add_argument(
        "--log-format",
        choices=["auto", "human", "json"],
        default=None,
        help="Log output format",
    )
    run_parser.set_defaults(func=cmd_run)

    validate_parser = subparsers.add_parser("validate", help="Validate a workflow graph")
    validate_parser.add_argument("graph", help="Path to a graph JSON file")
    validate_parser.set_defaults(func=cmd_validate)

    order_parser = subparsers.add_parser("order", help="Print the topological execution order")
    order_parser.add_argument("graph", help="Path to a graph JSON file")
    order_parser.set_defaults(func=cmd_order)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="flowgraph",
        description="flowgraph - Run workflow graphs",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    register_commands(subparsers)

    args = parser.parse_args(argv)

    if hasattr(args, "func"):
        sys.exit(args.func(args))


if __name__ == "__main__":
    main()
