"""Shared breadth-first traversal over the recipe graph.

Every solver component walks the graph through this module so that node
ordering (and therefore tie-breaking) is identical everywhere.  Callers
restrict the walk with an ``edge_filter`` predicate.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .graph import Edge, EdgeId, Graph, NodeId

logger = logging.getLogger(__name__)

EdgeFilter = Callable[[Edge], bool]


@dataclass
class TraversalPath:
    nodes: List[NodeId] = field(default_factory=list)
    edges: List[EdgeId] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.edges)

    def legs(self) -> List[Tuple[NodeId, NodeId, EdgeId]]:
        """Return ``(from, to, edge)`` triples in path order."""

        return [(self.nodes[i], self.nodes[i + 1], eid) for i, eid in enumerate(self.edges)]


@dataclass
class Component:
    nodes: List[NodeId] = field(default_factory=list)
    edges: List[EdgeId] = field(default_factory=list)


def kind_filter(*kinds: str) -> EdgeFilter:
    allowed = frozenset(kinds)

    def _accept(edge: Edge) -> bool:
        return edge.kind in allowed

    return _accept


def _accepts(edge_filter: Optional[EdgeFilter], edge: Edge) -> bool:
    return edge_filter is None or edge_filter(edge)


def bfs_order(
    graph: Graph, starts: Iterable[NodeId], edge_filter: Optional[EdgeFilter] = None
) -> List[NodeId]:
    """Nodes reachable from ``starts`` in breadth-first discovery order."""

    seen: Dict[NodeId, None] = {}
    queue: deque = deque()
    for start in starts:
        if start in graph and start not in seen:
            seen[start] = None
            queue.append(start)
    while queue:
        current = queue.popleft()
        for edge in graph.incident_edges(current):
            if not _accepts(edge_filter, edge):
                continue
            other = edge.other(current)
            if other not in seen:
                seen[other] = None
                queue.append(other)
    return list(seen)


def reachable(graph: Graph, start: NodeId, edge_filter: Optional[EdgeFilter] = None) -> List[NodeId]:
    return bfs_order(graph, [start], edge_filter)


def component_of_edge(
    graph: Graph, edge_id: EdgeId, edge_filter: Optional[EdgeFilter] = None
) -> Component:
    """Connected component containing ``edge_id`` (nodes and edges in discovery order)."""

    edge = graph.get_edge(edge_id)
    if edge is None:
        return Component()
    nodes = bfs_order(graph, [edge.a, edge.b], edge_filter)
    edges: Dict[EdgeId, None] = {edge_id: None}
    for node_id in nodes:
        for incident in graph.incident_edges(node_id):
            if _accepts(edge_filter, incident):
                edges.setdefault(incident.id, None)
    return Component(nodes=nodes, edges=list(edges))


def component_of_node(
    graph: Graph, node_id: NodeId, edge_filter: Optional[EdgeFilter] = None
) -> Component:
    nodes = bfs_order(graph, [node_id], edge_filter)
    edges: Dict[EdgeId, None] = {}
    for current in nodes:
        for incident in graph.incident_edges(current):
            if _accepts(edge_filter, incident):
                edges.setdefault(incident.id, None)
    return Component(nodes=nodes, edges=list(edges))


def shortest_path(
    graph: Graph,
    start: NodeId,
    goal: NodeId,
    edge_filter: Optional[EdgeFilter] = None,
    *,
    step_filter: Optional[Callable[[Edge, NodeId, NodeId], bool]] = None,
) -> Optional[TraversalPath]:
    """Fewest-edge path from ``start`` to ``goal`` or ``None`` when unreachable.

    ``step_filter`` receives ``(edge, from_node, to_node)`` and may veto a step
    using information that depends on the traversal direction.
    """

    if start not in graph or goal not in graph:
        return None
    if start == goal:
        return TraversalPath(nodes=[start], edges=[])

    prev: Dict[NodeId, Optional[Tuple[NodeId, EdgeId]]] = {start: None}
    queue: deque = deque([start])
    while queue and goal not in prev:
        current = queue.popleft()
        for edge in graph.incident_edges(current):
            if not _accepts(edge_filter, edge):
                continue
            other = edge.other(current)
            if other in prev:
                continue
            if step_filter is not None and not step_filter(edge, current, other):
                continue
            prev[other] = (current, edge.id)
            queue.append(other)
            if other == goal:
                break

    if goal not in prev:
        logger.debug("No path between %s and %s", start, goal)
        return None

    nodes: List[NodeId] = [goal]
    edges: List[EdgeId] = []
    cursor = goal
    while prev[cursor] is not None:
        parent, via = prev[cursor]  # type: ignore[misc]
        edges.append(via)
        nodes.append(parent)
        cursor = parent
    nodes.reverse()
    edges.reverse()
    return TraversalPath(nodes=nodes, edges=edges)


__all__ = [
    "Component",
    "EdgeFilter",
    "TraversalPath",
    "bfs_order",
    "component_of_edge",
    "component_of_node",
    "kind_filter",
    "reachable",
    "shortest_path",
]
