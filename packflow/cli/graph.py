"""
Graph CLI Command
=================

Visualizes the node graph.
"""

from pydantic import ValidationError as PydanticValidationError

from packflow.config import GraphDocument
from packflow.exceptions import PackflowException
from packflow.graph import GraphTopology


def graph_command(args):
    """
    Handle graph subcommand.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code
    """
    try:
        topology = GraphTopology(GraphDocument.load(args.graph).to_graph())
        if args.format == "mermaid":
            print(topology.to_mermaid())
        else:
            topology.validate()
            print(topology.visualize())
        return 0
    except (PackflowException, PydanticValidationError, OSError, ValueError) as e:
        print(f"Error generating graph: {e}")
        return 1
