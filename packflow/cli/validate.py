"""Validate command implementation."""

from pydantic import ValidationError as PydanticValidationError

from packflow.config import GraphDocument
from packflow.exceptions import PackflowException, ValidationError
from packflow.graph import GraphTopology
from packflow.ports import check_connection


def validate_command(args):
    """Check a graph document: schema, structure and every connection."""
    try:
        graph = GraphDocument.load(args.graph).to_graph()
        GraphTopology(graph).validate()
    except (PackflowException, PydanticValidationError, OSError, ValueError) as e:
        print(f"Graph validation failed: {e}")
        return 1

    problems = []
    for conn in graph.connections:
        try:
            check_connection(graph, conn)
        except ValidationError as e:
            problems.append(str(e))

    if problems:
        print("Graph validation failed:")
        for problem in problems:
            print(f"  - {problem}")
        return 1

    print(f"Graph is valid ({len(graph.nodes)} nodes, {len(graph.connections)} connections)")
    return 0
