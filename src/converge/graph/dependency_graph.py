"""Build directed dependency graph from declared resources."""

import heapq
import networkx as nx
from typing import Dict, Iterable, List, Optional, Sequence, Set
from ..model.models import DependencyEdge, ResourceAddress, ResourceDeclaration
from ..utils.errors import CyclicDependencyError
from ..utils.logging import get_logger

logger = get_logger("graph.dependency_graph")

_WHITE, _GREY, _BLACK = 0, 1, 2


class DependencyGraph:
    """Directed dependency graph: nodes=addresses, edges=dependent -> dependency."""

    def __init__(self):
        self.graph = nx.DiGraph()
        self._index: Dict[ResourceAddress, int] = {}

    def add_node(self, address: ResourceAddress) -> None:
        """Add an address; the first insertion fixes its tie-break position."""
        if address not in self._index:
            self._index[address] = len(self._index)
            self.graph.add_node(address)

    def add_edge(self, source: ResourceAddress, target: ResourceAddress) -> None:
        """Record that `source` depends on `target`."""
        self.add_node(source)
        self.add_node(target)
        self.graph.add_edge(source, target)
        logger.debug(f"Added dependency edge: {source} -> {target}")

    def build_from_declarations(
        self,
        declarations: Sequence[ResourceDeclaration],
        edges: Iterable[DependencyEdge]
    ) -> None:
        """
        Build the graph and verify it is acyclic.

        Args:
            declarations: Declaration set, in declaration order
            edges: Edges produced by the reference resolver

        Raises:
            CyclicDependencyError: If the edges form a cycle
        """
        for declaration in declarations:
            self.add_node(declaration.address)
        for edge in edges:
            self.add_edge(edge.source, edge.target)

        self.check_acyclic()
        logger.info(f"Built dependency graph with {self.graph.number_of_nodes()} nodes and {self.graph.number_of_edges()} edges")

    def build_from_dependencies(self, dependencies: Dict[ResourceAddress, List[ResourceAddress]]) -> None:
        """Build from an address -> dependencies mapping, ignoring unknown targets."""
        for address in sorted(dependencies, key=str):
            self.add_node(address)
        for address in sorted(dependencies, key=str):
            for target in dependencies[address]:
                if target in self._index:
                    self.add_edge(address, target)
        self.check_acyclic()

    def check_acyclic(self) -> None:
        cycle = self.find_cycle()
        if cycle:
            raise CyclicDependencyError([str(a) for a in cycle])

    def _ordered(self, nodes: Iterable[ResourceAddress]) -> List[ResourceAddress]:
        return sorted(nodes, key=self._index.__getitem__)

    def find_cycle(self) -> Optional[List[ResourceAddress]]:
        """
        Depth-first search with white/grey/black colouring.

        Returns:
            Addresses on the first cycle found, in dependency order starting
            from the node where the cycle closes, or None if acyclic
        """
        color = {node: _WHITE for node in self.graph.nodes}
        stack: List[ResourceAddress] = []

        def visit(node: ResourceAddress) -> Optional[List[ResourceAddress]]:
            color[node] = _GREY
            stack.append(node)
            for target in self._ordered(self.graph.successors(node)):
                if color[target] == _GREY:
                    return stack[stack.index(target):]
                if color[target] == _WHITE:
                    found = visit(target)
                    if found:
                        return found
            stack.pop()
            color[node] = _BLACK
            return None

        for node in self._ordered(self.graph.nodes):
            if color[node] == _WHITE:
                found = visit(node)
                if found:
                    logger.debug(f"Cycle found: {' -> '.join(str(a) for a in found)}")
                    return found
        return None

    def topological_order(self) -> List[ResourceAddress]:
        """
        Kahn's algorithm: every address after all addresses it depends on.

        Ready nodes are taken by declaration index so identical input always
        yields the identical order.
        """
        remaining = {node: self.graph.out_degree(node) for node in self.graph.nodes}
        ready = [(self._index[node], node) for node, count in remaining.items() if count == 0]
        heapq.heapify(ready)
        order: List[ResourceAddress] = []

        while ready:
            _, node = heapq.heappop(ready)
            order.append(node)
            for dependent in self.graph.predecessors(node):
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    heapq.heappush(ready, (self._index[dependent], dependent))

        if len(order) != self.graph.number_of_nodes():
            self.check_acyclic()
        return order

    def dependencies_of(self, address: ResourceAddress) -> List[ResourceAddress]:
        """Direct dependencies of an address."""
        if address not in self.graph:
            return []
        return self._ordered(self.graph.successors(address))

    def get_downstream_resources(self, address: ResourceAddress) -> Set[ResourceAddress]:
        """Get all addresses that depend on the given address (transitively)."""
        if address not in self.graph:
            return set()
        return set(nx.ancestors(self.graph, address))

    def get_upstream_resources(self, address: ResourceAddress) -> Set[ResourceAddress]:
        """Get all addresses the given address depends on (transitively)."""
        if address not in self.graph:
            return set()
        return set(nx.descendants(self.graph, address))

    def __contains__(self, address: ResourceAddress) -> bool:
        return address in self._index

    def __len__(self) -> int:
        return self.graph.number_of_nodes()
