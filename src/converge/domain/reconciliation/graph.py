"""Resource dependency graph produced by the graph builder.

The graph is read-only once built: the underlying networkx graph is frozen
and nodes are immutable, so the differ, scheduler and executor can share one
instance across worker threads.

Edges point from a dependency to its dependent (``A -> B`` means B depends on
A), which makes a topological order a valid creation order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

import networkx as nx

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from converge.domain.model import DependencyEdge, EdgeKind, ResourceAddress, ResourceNode


@dataclass(frozen=True, slots=True)
class ResourceGraph:
    _nodes: Mapping[ResourceAddress, ResourceNode] = field(repr=False)
    _edges: tuple[DependencyEdge, ...] = field(repr=False)
    _graph: nx.DiGraph[ResourceAddress] = field(repr=False)

    @classmethod
    def from_parts(
        cls,
        nodes: Iterable[ResourceNode],
        edges: Iterable[DependencyEdge],
    ) -> ResourceGraph:
        """Assemble a graph without validating it; see ``builder.build``."""

        node_map = {node.address: node for node in nodes}
        edge_list = tuple(dict.fromkeys(edges))

        graph: nx.DiGraph[ResourceAddress] = nx.DiGraph()
        graph.add_nodes_from(sorted(node_map))
        for edge in edge_list:
            if graph.has_edge(edge.source, edge.target):
                graph.edges[edge.source, edge.target]["kinds"].add(edge.kind)
            else:
                graph.add_edge(edge.source, edge.target, kinds={edge.kind})
        return cls(MappingProxyType(node_map), edge_list, nx.freeze(graph))

    @classmethod
    def empty(cls) -> ResourceGraph:
        return cls.from_parts((), ())

    @property
    def nodes(self) -> tuple[ResourceNode, ...]:
        return tuple(self._nodes[address] for address in self.addresses)

    @property
    def addresses(self) -> tuple[ResourceAddress, ...]:
        return tuple(sorted(self._nodes))

    @property
    def edges(self) -> tuple[DependencyEdge, ...]:
        return self._edges

    def node(self, address: ResourceAddress) -> ResourceNode:
        return self._nodes[address]

    def get(self, address: ResourceAddress) -> ResourceNode | None:
        return self._nodes.get(address)

    def __contains__(self, address: object) -> bool:
        return address in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def dependencies_of(self, address: ResourceAddress) -> tuple[ResourceAddress, ...]:
        return tuple(sorted(self._graph.predecessors(address)))

    def dependents_of(self, address: ResourceAddress) -> tuple[ResourceAddress, ...]:
        return tuple(sorted(self._graph.successors(address)))

    def edge_kinds(self, source: ResourceAddress, target: ResourceAddress) -> frozenset[EdgeKind]:
        if not self._graph.has_edge(source, target):
            return frozenset()
        return frozenset(self._graph.edges[source, target]["kinds"])

    def find_cycle(self) -> tuple[ResourceAddress, ...] | None:
        """Return a cycle as ``(A, B, ..., A)`` using depth-first search, if any."""

        try:
            cycle_edges = nx.find_cycle(self._graph)
        except nx.NetworkXNoCycle:
            return None
        path = [edge[0] for edge in cycle_edges]
        path.append(cycle_edges[-1][1])
        return tuple(path)

    def topological_order(self) -> tuple[ResourceAddress, ...]:
        """Dependencies first; ties broken by address for deterministic output."""

        return tuple(nx.lexicographical_topological_sort(self._graph, key=str))
