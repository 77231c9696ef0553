"""Graph topology builder and analyzer."""

from collections import defaultdict, deque
from typing import Dict, List, Optional

from packflow.config import Connection, Graph
from packflow.exceptions import GraphStructureError


class GraphTopology:
    """Adjacency bookkeeping and structural checks over one Graph."""

    def __init__(self, graph: Graph):
        """Initialize topology.

        Args:
            graph: Submitted graph
        """
        self.graph = graph
        self.nodes = {node.id: node for node in graph.nodes}
        self.outgoing: Dict[str, List[Connection]] = defaultdict(list)
        self.incoming: Dict[str, List[Connection]] = defaultdict(list)

        for conn in graph.connections:
            self.outgoing[conn.source_id].append(conn)
            self.incoming[conn.target_id].append(conn)

    def starting_nodes(self) -> List[str]:
        """Nodes with zero incoming connections, in document order."""
        return [node_id for node_id in self.nodes if not self.incoming[node_id]]

    def sources_of(self, node_id: str) -> List[str]:
        return [c.source_id for c in self.incoming[node_id]]

    def dependents_of(self, node_id: str) -> List[str]:
        """Distinct direct targets of ``node_id``, in connection order."""
        seen = []
        for conn in self.outgoing[node_id]:
            if conn.target_id not in seen:
                seen.append(conn.target_id)
        return seen

    def validate(self) -> None:
        """Check the graph can be scheduled.

        Raises:
            GraphStructureError: If there are no starting nodes or a cycle
        """
        if not self.starting_nodes():
            raise GraphStructureError("no starting nodes", cycle=self.find_cycle())

        ordered = self.topological_sort()
        if len(ordered) != len(self.nodes):
            stuck = [n for n in self.nodes if n not in set(ordered)]
            raise GraphStructureError(
                f"cyclic remainder never becomes ready: {', '.join(stuck)}",
                cycle=self.find_cycle(),
            )

    def topological_sort(self) -> List[str]:
        """Kahn's algorithm; nodes on or behind a cycle are left out."""
        in_degree = {node_id: len(self.incoming[node_id]) for node_id in self.nodes}
        queue = deque([n for n, degree in in_degree.items() if degree == 0])
        ordered = []

        while queue:
            node_id = queue.popleft()
            ordered.append(node_id)
            for conn in self.outgoing[node_id]:
                in_degree[conn.target_id] -= 1
                if in_degree[conn.target_id] == 0:
                    queue.append(conn.target_id)

        return ordered

    def find_cycle(self) -> Optional[List[str]]:
        """Return one cycle path (first node repeated at the end), if any."""
        visited = set()
        rec_stack = set()

        def visit(node_id: str, path: List[str]) -> Optional[List[str]]:
            if node_id in rec_stack:
                cycle_start = path.index(node_id)
                return path[cycle_start:] + [node_id]
            if node_id in visited:
                return None

            visited.add(node_id)
            rec_stack.add(node_id)
            path.append(node_id)

            for dependent in self.dependents_of(node_id):
                cycle = visit(dependent, path[:])
                if cycle:
                    return cycle

            rec_stack.remove(node_id)
            return None

        for node_id in self.nodes:
            if node_id not in visited:
                cycle = visit(node_id, [])
                if cycle:
                    return cycle
        return None

    def get_execution_layers(self) -> List[List[str]]:
        """Group nodes into layers whose members have no edges between them.

        Assumes ``validate()`` passed.
        """
        in_degree = {node_id: len(set(self.sources_of(node_id))) for node_id in self.nodes}
        layers = []
        remaining = list(self.nodes)

        while remaining:
            current_layer = [n for n in remaining if in_degree[n] == 0]
            if not current_layer:
                raise GraphStructureError("Cannot create execution layers", cycle=self.find_cycle())
            layers.append(current_layer)
            for node_id in current_layer:
                remaining.remove(node_id)
                for dependent in self.dependents_of(node_id):
                    if dependent in remaining:
                        in_degree[dependent] -= 1

        return layers

    def visualize(self) -> str:
        """Text rendering of the execution layers."""
        lines = ["Node Graph:", ""]
        for i, layer in enumerate(self.get_execution_layers()):
            lines.append(f"Layer {i + 1}:")
            for node_id in layer:
                node = self.nodes[node_id]
                sources = self.sources_of(node_id)
                deps = f" (from: {', '.join(sources)})" if sources else ""
                lines.append(f"  - {node_id} [{node.kind.value}]{deps}")
            lines.append("")
        return "\n".join(lines)

    def to_mermaid(self) -> str:
        lines = ["graph LR"]
        for node_id, node in self.nodes.items():
            lines.append(f'    {node_id}["{node_id}<br/>{node.kind.value}"]')
        for conn in self.graph.connections:
            label = conn.source_handle or conn.target_handle
            arrow = f"-->|{label}|" if label else "-->"
            lines.append(f"    {conn.source_id} {arrow} {conn.target_id}")
        return "\n".join(lines)
