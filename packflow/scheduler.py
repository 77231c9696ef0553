"""Graph scheduler: validates a graph and runs its nodes in dependency order."""

import copy
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from packflow.archive import ArchiveStore, ModCatalog
from packflow.config import EngineConfig, Graph, Node
from packflow.counters import CounterRegistry
from packflow.exceptions import GraphStructureError, ValidationError
from packflow.executors import register_standard_executors
from packflow.executors.output import EXECUTION_ID_FORMAT
from packflow.graph import GraphTopology
from packflow.node import ExecutionResult, NodeContext, run_node
from packflow.payloads import ChangedColumnSelection, TableSelection, Text
from packflow.ports import FanIn, NodeKind, check_connection, ports_for
from packflow.registry import ExecutorRegistry
from packflow.schema import SchemaRegistry
from packflow.utils.logging import logger


@dataclass
class ExecutionReport:
    """Outcome of one graph run."""

    success: bool = False
    total_executed: int = 0
    success_count: int = 0
    failure_count: int = 0
    error: Optional[str] = None
    results: Dict[str, ExecutionResult] = field(default_factory=dict)
    node_kinds: Dict[str, NodeKind] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    execution_id: str = ""
    duration: float = 0.0

    def get_node_result(self, node_id: str) -> Optional[ExecutionResult]:
        """Get the result of one node.

        Args:
            node_id: Node id

        Returns:
            ExecutionResult if the node ran, None otherwise
        """
        return self.results.get(node_id)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "success": self.success,
            "totalExecuted": self.total_executed,
            "successCount": self.success_count,
            "failureCount": self.failure_count,
        }
        if self.error:
            result["error"] = self.error
        result["perNode"] = {node_id: r.to_dict() for node_id, r in self.results.items()}
        return result

    def summary(self) -> str:
        """Human readable one-line-per-node status listing."""
        lines = [
            f"Execution {self.execution_id}: {self.success_count}/{self.total_executed} "
            f"nodes succeeded in {self.duration:.2f}s"
        ]
        if self.error:
            lines.append(f"Error: {self.error}")
        for node_id, kind in self.node_kinds.items():
            result = self.results.get(node_id)
            if result is None:
                status = "SKIPPED"
            elif result.success:
                status = "OK"
            else:
                status = f"FAILED: {result.error}"
            lines.append(f"  {node_id} [{kind.value}] {status}")
        return "\n".join(lines)


class GraphScheduler:
    """Runs graphs against one archive store, schema registry and mod catalog.

    The scheduler owns its counter registry, so counter sequences continue
    across runs only when ``reset_counters`` is turned off.

    Example:
        ```python
        scheduler = GraphScheduler(store, schemas, catalog)
        report = scheduler.run(Graph.from_dict(document))
        print(report.summary())
        ```
    """

    def __init__(
        self,
        archive: ArchiveStore,
        schemas: SchemaRegistry,
        catalog: ModCatalog,
        counters: Optional[CounterRegistry] = None,
        config: Optional[EngineConfig] = None,
        registry: Optional[ExecutorRegistry] = None,
    ):
        self.archive = archive
        self.schemas = schemas
        self.catalog = catalog
        self.counters = counters if counters is not None else CounterRegistry()
        self.config = config or EngineConfig()
        self.registry = registry or register_standard_executors()
        self._cancelled = False

    def cancel(self) -> None:
        """Stop the current run before its next node executes."""
        self._cancelled = True

    def run(
        self,
        graph: Graph,
        reset_counters: Optional[bool] = None,
        execution_id: Optional[str] = None,
    ) -> ExecutionReport:
        """Execute every reachable node of ``graph`` once.

        Args:
            graph: Graph to run; node configurations are snapshotted
            reset_counters: Override the configured counter reset
            execution_id: Shared id for save nodes (generated if None)

        Returns:
            ExecutionReport; structural problems abort the run before any
            node executes and are reported in ``error``
        """
        start = time.time()
        self._cancelled = False
        execution_id = execution_id or datetime.now().strftime(EXECUTION_ID_FORMAT)
        report = ExecutionReport(
            execution_id=execution_id,
            node_kinds={node.id: node.kind for node in graph.nodes},
        )

        topology = GraphTopology(graph)
        try:
            topology.validate()
        except GraphStructureError as e:
            logger.error("Graph rejected", error=str(e))
            report.error = str(e)
            report.skipped = [node.id for node in graph.nodes]
            report.duration = time.time() - start
            return report

        invalid = self._illegal_targets(graph)
        if self.config.reset_counters if reset_counters is None else reset_counters:
            self.counters.reset()

        snapshots = {node.id: copy.deepcopy(node.configuration) for node in graph.nodes}
        logger.info("Starting run", execution_id=execution_id, nodes=len(graph.nodes))

        queue = deque((node_id, None) for node_id in topology.starting_nodes())
        while queue:
            if self._cancelled:
                report.error = "Run cancelled"
                logger.warning("Run cancelled", executed=report.total_executed)
                break

            node_id, data = queue.popleft()
            if node_id in report.results:
                continue

            node = topology.nodes[node_id]
            result = self._execute(node, snapshots[node_id], data, execution_id, invalid.get(node_id))
            report.results[node_id] = result
            report.total_executed += 1
            if not result.success:
                report.failure_count += 1
                continue

            report.success_count += 1
            for dependent in topology.dependents_of(node_id):
                if dependent in report.results:
                    continue
                if all(
                    src in report.results and report.results[src].success
                    for src in topology.sources_of(dependent)
                ):
                    queue.append((dependent, self.aggregate_input(topology, dependent, report.results)))

        report.skipped = [node.id for node in graph.nodes if node.id not in report.results]
        report.success = report.success_count > 0
        report.duration = time.time() - start
        logger.info(
            "Run finished",
            execution_id=execution_id,
            executed=report.total_executed,
            failed=report.failure_count,
            skipped=len(report.skipped),
        )
        return report

    def _illegal_targets(self, graph: Graph) -> Dict[str, str]:
        invalid: Dict[str, str] = {}
        for conn in graph.connections:
            try:
                check_connection(graph, conn)
            except ValidationError as e:
                logger.warning("Illegal connection", connection_id=conn.id, error=str(e))
                invalid.setdefault(conn.target_id, str(e))
        return invalid

    def _execute(
        self,
        node: Node,
        configuration: Dict[str, Any],
        data: Any,
        execution_id: str,
        illegal: Optional[str],
    ) -> ExecutionResult:
        context = NodeContext(
            node_id=node.id,
            kind=node.kind,
            archive=self.archive,
            schemas=self.schemas,
            catalog=self.catalog,
            counters=self.counters,
            execution_id=execution_id,
            output_dir=self.config.output_dir,
        )
        if illegal is not None:
            context.log.warning("Node not run: illegal incoming connection", error=illegal)
            return ExecutionResult(node_id=node.id, kind=node.kind, success=False, error=illegal)

        context.log.debug("Executing node")
        result = run_node(self.registry, configuration, data, context)
        context.log.debug("Node finished", success=result.success, duration=f"{result.duration:.3f}s")
        return result

    @staticmethod
    def aggregate_input(
        topology: GraphTopology, node_id: str, results: Dict[str, ExecutionResult]
    ) -> Any:
        """Build the input of ``node_id`` from its upstream results.

        The shape depends on the node kind's fan-in policy; see ``FanIn``.
        """
        node = topology.nodes[node_id]
        ports = ports_for(node.kind)
        incoming = topology.incoming[node_id]

        def payload(conn):
            upstream = results.get(conn.source_id)
            return upstream.output(conn.source_handle) if upstream is not None else None

        if ports.fan_in == FanIn.MERGE_LIST:
            return [p for p in (payload(c) for c in incoming) if p is not None]

        if ports.fan_in == FanIn.SAVE_PRIORITY:
            payloads = [p for p in (payload(c) for c in incoming) if p is not None]
            for wanted in (Text, ChangedColumnSelection):
                for p in payloads:
                    if isinstance(p, wanted):
                        return p
            tables = [p for p in payloads if isinstance(p, TableSelection)]
            return TableSelection.union(tables) if tables else None

        if ports.fan_in == FanIn.NAMED:
            slots: Dict[str, Any] = {handle: None for handle in ports.named_inputs}
            for conn in incoming:
                value = payload(conn)
                if conn.target_handle in slots:
                    slots[conn.target_handle] = value
                    continue
                for handle in ports.named_inputs:
                    if slots[handle] is None and getattr(value, "port_type", None) in ports.inputs[handle]:
                        slots[handle] = value
                        break
            return tuple(slots[h] for h in ports.named_inputs)

        if ports.fan_in == FanIn.TABLE_UNION and len(incoming) > 1:
            tables = [p for p in (payload(c) for c in incoming) if isinstance(p, TableSelection)]
            return TableSelection.union(tables) if tables else None

        if not incoming:
            return None
        if len(incoming) > 1:
            logger.warning(
                "Multiple connections into single-input node, using the last",
                node_id=node_id,
                connections=len(incoming),
            )
        return payload(incoming[-1])
