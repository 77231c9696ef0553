"""packflow - dataflow engine for game database packs."""

__version__ = "0.3.0"

from packflow.config import Connection, EngineConfig, Graph, GraphDocument, Node  # noqa: E402
from packflow.exceptions import (  # noqa: E402
    GraphStructureError,
    NodeError,
    PackflowException,
    ValidationError,
)
from packflow.ports import NodeKind, PortType  # noqa: E402
from packflow.scheduler import ExecutionReport, GraphScheduler  # noqa: E402

__all__ = [
    "Connection",
    "EngineConfig",
    "ExecutionReport",
    "Graph",
    "GraphDocument",
    "GraphScheduler",
    "Node",
    "NodeKind",
    "PortType",
    "GraphStructureError",
    "NodeError",
    "PackflowException",
    "ValidationError",
    "__version__",
]
