"""Per-node execution: context, result model and the exception guard."""

import time
import traceback
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from packflow.archive import ArchiveStore, ModCatalog
from packflow.counters import CounterRegistry
from packflow.exceptions import NodeError
from packflow.ports import NodeKind
from packflow.schema import SchemaRegistry
from packflow.utils.logging import BoundLogger, logger


class ExecutionResult(BaseModel):
    """Result of one node execution."""

    model_config = {"arbitrary_types_allowed": True}

    node_id: str = ""
    kind: Optional[NodeKind] = None
    success: bool
    data: Optional[Any] = None
    else_data: Optional[Any] = None
    multi_outputs: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    duration: float = 0.0

    def output(self, source_handle: Optional[str] = None) -> Optional[Any]:
        """Payload seen by a connection leaving on ``source_handle``."""
        if not self.success:
            return None
        if source_handle == "else":
            return self.else_data
        if source_handle and source_handle in self.multi_outputs:
            return self.multi_outputs[source_handle]
        return self.data

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success}
        if self.data is not None:
            result["data"] = self.data.to_dict()
        if self.else_data is not None:
            result["elseData"] = self.else_data.to_dict()
        if self.multi_outputs:
            result["multiOutputs"] = {k: v.to_dict() for k, v in self.multi_outputs.items()}
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class NodeContext:
    """Collaborators handed to every executor for one node execution."""

    node_id: str
    kind: NodeKind
    archive: ArchiveStore
    schemas: SchemaRegistry
    catalog: ModCatalog
    counters: CounterRegistry
    execution_id: str = ""
    output_dir: str = "output"
    log: BoundLogger = field(default=None)

    def __post_init__(self):
        if self.log is None:
            self.log = logger.bind(node_id=self.node_id, kind=NodeKind(self.kind).value)

    def result(self, data: Any, else_data: Any = None, multi_outputs: Optional[Dict[str, Any]] = None):
        return ExecutionResult(
            node_id=self.node_id,
            kind=self.kind,
            success=True,
            data=data,
            else_data=else_data,
            multi_outputs=multi_outputs or {},
        )


def run_node(registry, configuration: Dict[str, Any], data: Any, context: NodeContext) -> ExecutionResult:
    """Execute one node, converting every exception into a failed result.

    Args:
        registry: ExecutorRegistry to look the kind up in
        configuration: The node's configuration snapshot
        data: Aggregated input (payload, list, tuple or None)
        context: Collaborators for this execution

    Returns:
        ExecutionResult; never raises
    """
    start = time.time()
    try:
        spec = registry.get(context.kind)
        params = spec.parse_params(configuration)
        output = spec.func(context, params, data)
        result = output if isinstance(output, ExecutionResult) else context.result(output)
    except NodeError as e:
        context.log.warning("Node failed", error=str(e))
        result = ExecutionResult(node_id=context.node_id, kind=context.kind, success=False, error=str(e))
    except Exception as e:
        context.log.error("Node raised unexpected error", error=str(e), error_type=type(e).__name__)
        context.log.debug("Traceback", traceback=traceback.format_exc())
        result = ExecutionResult(
            node_id=context.node_id,
            kind=context.kind,
            success=False,
            error=str(e) or type(e).__name__,
        )

    result.duration = time.time() - start
    return result
