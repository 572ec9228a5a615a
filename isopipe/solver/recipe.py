"""Recipe-level queries shared by the solvability checker and the calculator."""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np

from ..constraints import AxisLock, DirectionalConstraint, PlaneRef
from ..graph import Edge, Graph, NodeId, has_dim
from .math_utils import EPS, as_array, dominant_axis


def hint_delta(graph: Graph, start: NodeId, end: NodeId) -> np.ndarray:
    """World-space (schematic) vector from ``start`` to ``end``."""

    a = graph.get_node_world_pos(start)
    b = graph.get_node_world_pos(end)
    if a is None or b is None:
        return np.zeros(3)
    return as_array(b) - as_array(a)


def edge_hint(graph: Graph, edge: Edge) -> np.ndarray:
    return hint_delta(graph, edge.a, edge.b)


def implicit_axis_lock(graph: Graph, edge: Edge) -> Optional[AxisLock]:
    """Construction edges are axis-aligned: lock them to their dominant hint axis."""

    if edge.kind != "construction":
        return None
    axis = dominant_axis(edge_hint(graph, edge), EPS)
    return AxisLock(axis) if axis is not None else None


def effective_direction(graph: Graph, edge: Edge) -> Optional[DirectionalConstraint]:
    explicit = edge.meta.direction
    if explicit is not None:
        return explicit
    return implicit_axis_lock(graph, edge)


def has_explicit_axis_lock(edge: Edge) -> bool:
    return any(isinstance(item, AxisLock) for item in edge.meta.constraints)


def node_plane_ref(graph: Graph, node_id: NodeId) -> Optional[PlaneRef]:
    """Plane declared on the node (tee plane) or on any incident edge."""

    node = graph.get_node(node_id)
    if node is not None and node.meta.plane_ref is not None:
        return node.meta.plane_ref
    for edge in graph.incident_edges(node_id):
        plane = edge.meta.plane
        if plane is not None:
            return plane
    return None


def edge_plane_ref(graph: Graph, edge: Edge, from_node: NodeId) -> Optional[PlaneRef]:
    return edge.meta.plane or node_plane_ref(graph, from_node)


def segment_ends(graph: Graph, node_id: NodeId) -> Optional[Tuple[NodeId, NodeId]]:
    node = graph.get_node(node_id)
    if node is None:
        return None
    return node.meta.on_segment


def measured_segment_edge(graph: Graph, node_id: NodeId) -> Optional[Tuple[Edge, NodeId]]:
    """First measured edge from an on-segment node toward one of its segment ends."""

    ends = segment_ends(graph, node_id)
    if ends is None:
        return None
    for edge in graph.incident_edges(node_id):
        if not has_dim(edge):
            continue
        other = edge.other(node_id)
        if other in ends:
            return edge, other
    return None


def straight_run_edges(graph: Graph, node_id: NodeId) -> Optional[Tuple[Edge, Edge]]:
    node = graph.get_node(node_id)
    if node is None or node.meta.topo != "straight":
        return None
    centre = graph.incident_edges(node_id, "center")
    if len(centre) != 2:
        return None
    return centre[0], centre[1]


def is_interpolatable(graph: Graph, node_id: NodeId) -> bool:
    """On-segment or straight-run node with at least one measured sub-length."""

    if measured_segment_edge(graph, node_id) is not None:
        return True
    run = straight_run_edges(graph, node_id)
    return run is not None and (has_dim(run[0]) or has_dim(run[1]))


def has_implied_length(graph: Graph, edge: Edge) -> bool:
    """``True`` when an interpolation fixes the length of an unmeasured ``edge``."""

    for node_id in (edge.a, edge.b):
        other = edge.other(node_id)
        ends = segment_ends(graph, node_id)
        if ends is not None and other in ends:
            for incident in graph.incident_edges(node_id):
                if incident.id != edge.id and has_dim(incident) and incident.other(node_id) in ends:
                    return True
        run = straight_run_edges(graph, node_id)
        if run is not None and edge.id in (run[0].id, run[1].id):
            sibling = run[1] if run[0].id == edge.id else run[0]
            if has_dim(sibling):
                return True
    return False


def is_tee_branch(graph: Graph, edge: Edge, from_node: NodeId) -> bool:
    """Edge leaving an on-segment node sideways, with no direction of its own."""

    ends = segment_ends(graph, from_node)
    if ends is None or not edge.touches(from_node):
        return False
    if effective_direction(graph, edge) is not None:
        return False
    return edge.other(from_node) not in ends


__all__ = [
    "edge_hint",
    "edge_plane_ref",
    "effective_direction",
    "has_explicit_axis_lock",
    "has_implied_length",
    "hint_delta",
    "implicit_axis_lock",
    "is_interpolatable",
    "is_tee_branch",
    "measured_segment_edge",
    "node_plane_ref",
    "segment_ends",
    "straight_run_edges",
]
