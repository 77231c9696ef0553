"""Main CLI entry point."""

import argparse
import sys

from packflow.cli.graph import graph_command
from packflow.cli.run import run_command
from packflow.cli.validate import validate_command
from packflow.utils.logging import configure_logging


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="packflow",
        description="packflow - run node graphs over game database packs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  packflow run flow.json --config engine.yaml   Run a graph
  packflow validate flow.json                   Check structure and connections
  packflow graph flow.json --format mermaid     Visualize the graph
        """,
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Set logging verbosity (default: INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # packflow run
    run_parser = subparsers.add_parser("run", help="Execute a graph")
    run_parser.add_argument("graph", help="Path to a graph document (JSON or YAML)")
    run_parser.add_argument("--config", help="Engine settings YAML")
    run_parser.add_argument("--json", action="store_true", help="Print the report as JSON")

    # packflow validate
    validate_parser = subparsers.add_parser("validate", help="Validate a graph document")
    validate_parser.add_argument("graph", help="Path to a graph document (JSON or YAML)")

    # packflow graph
    graph_parser = subparsers.add_parser("graph", help="Visualize the node graph")
    graph_parser.add_argument("graph", help="Path to a graph document (JSON or YAML)")
    graph_parser.add_argument(
        "--format",
        choices=["ascii", "mermaid"],
        default="ascii",
        help="Output format (default: ascii)",
    )

    args = parser.parse_args(argv)
    configure_logging(structured=False, level=args.log_level)

    if args.command == "run":
        return run_command(args)
    elif args.command == "validate":
        return validate_command(args)
    elif args.command == "graph":
        return graph_command(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
