"""Static solvability analysis of a recipe graph.

The checker walks a fixed list of rules and reports the first one that fails.
It never mutates the graph and never raises for graph content: failures are
returned as :class:`SolvabilityResult` data with a reason from
:data:`SOLVABILITY_REASONS`.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from ..constraints import PLANE_CONSTRAINTS, RELATIVE_CONSTRAINTS, Coplanar, PlaneRef, referenced_edges
from ..graph import Edge, Graph, NodeId, has_dim
from ..logging_utils import debug_log_call
from ..traversal import reachable
from .model import SolvabilityResult
from .recipe import (
    effective_direction,
    has_explicit_axis_lock,
    has_implied_length,
    is_interpolatable,
    is_tee_branch,
    node_plane_ref,
)

logger = logging.getLogger(__name__)

TRIANGLE_TOL = 1e-6

_CONSTRAINT_KEYS = {"ParallelTo": "parallel_to", "PerpTo": "perp_to", "AngleTo": "angle_to"}


def _fail(reason: str, **details: object) -> SolvabilityResult:
    logger.debug("Solvability check failed: %s %s", reason, details)
    return SolvabilityResult(ok=False, reason=reason, details=dict(details))  # type: ignore[arg-type]


def _check_anchor(graph: Graph) -> Tuple[Optional[SolvabilityResult], Optional[NodeId]]:
    anchors = graph.anchors()
    if len(anchors) != 1:
        return _fail("anchor_count", count=len(anchors)), None
    return None, anchors[0].id


def _check_absolute_reference(graph: Graph, anchor_id: NodeId) -> Optional[SolvabilityResult]:
    if any(has_explicit_axis_lock(edge) for edge in graph.incident_edges(anchor_id)):
        return None
    return _fail("no_absolute_reference", where="anchor_neighborhood", anchor=anchor_id)


def _check_reachability(graph: Graph, anchor_id: NodeId) -> Optional[SolvabilityResult]:
    seen = reachable(graph, anchor_id)
    total = len(graph)
    if len(seen) == total:
        return None
    seen_set = set(seen)
    unreached = [node_id for node_id in graph.node_ids() if node_id not in seen_set]
    return _fail("disconnected_subgraph", reachable=len(seen), total=total, unreached=unreached)


def _check_dimensions(graph: Graph) -> Optional[SolvabilityResult]:
    for edge in graph.all_edges():
        if has_dim(edge) or has_implied_length(graph, edge):
            continue
        return _fail("dimension_missing", edge_id=edge.id)
    return None


def _refs_exist(graph: Graph, refs: Iterable[Optional[str]]) -> bool:
    return all(ref is not None and graph.get_edge(ref) is not None for ref in refs)


def _plane_refs(plane: Optional[PlaneRef]) -> Tuple[Optional[str], ...]:
    return referenced_edges(Coplanar(plane)) if plane is not None else ()


def _plane_references_exist(graph: Graph, edge: Edge) -> bool:
    plane = edge.meta.plane or node_plane_ref(graph, edge.a) or node_plane_ref(graph, edge.b)
    return _refs_exist(graph, _plane_refs(plane))


def _check_references(graph: Graph) -> Optional[SolvabilityResult]:
    for edge in graph.all_edges():
        constraint = edge.meta.direction
        if isinstance(constraint, PLANE_CONSTRAINTS):
            has_plane = (
                edge.meta.plane is not None
                or node_plane_ref(graph, edge.a) is not None
                or node_plane_ref(graph, edge.b) is not None
            )
            if not has_plane:
                return _fail("ambiguous_location", edge_id=edge.id, needs="plane_ref")
            if not _plane_references_exist(graph, edge):
                return _fail("ambiguous_location", edge_id=edge.id, needs="plane_ref_edges")
        for item in edge.meta.constraints:
            if isinstance(item, RELATIVE_CONSTRAINTS) and not _refs_exist(graph, referenced_edges(item)):
                key = _CONSTRAINT_KEYS[type(item).__name__]
                return _fail("insufficient_constraints_at_node", edge_id=edge.id, missing=f"{key}.ref")
            if isinstance(item, Coplanar) and not _refs_exist(graph, referenced_edges(item)):
                return _fail("ambiguous_location", edge_id=edge.id, needs="plane_ref_edges")
    for node in graph.all_nodes():
        if not _refs_exist(graph, _plane_refs(node.meta.plane_ref)):
            return _fail("ambiguous_location", node_id=node.id, needs="plane_ref_edges")
    return None


def _node_has_direction(graph: Graph, node_id: NodeId) -> bool:
    for edge in graph.incident_edges(node_id):
        if effective_direction(graph, edge) is not None:
            return True
        if is_tee_branch(graph, edge, edge.other(node_id)):
            return True
    return False


def _check_nodes(graph: Graph, anchor_id: NodeId) -> Optional[SolvabilityResult]:
    for node_id in graph.node_ids():
        if node_id == anchor_id:
            continue
        incident = graph.incident_edges(node_id)
        if not incident:
            return _fail("insufficient_constraints_at_node", node_id=node_id, why="no_incident_edges")
        if _node_has_direction(graph, node_id) or is_interpolatable(graph, node_id):
            continue
        measured = [edge for edge in incident if has_dim(edge)]
        has_two = len(measured) >= 2
        has_plane = node_plane_ref(graph, node_id) is not None
        if not (has_two and has_plane):
            return _fail(
                "insufficient_constraints_at_node",
                node_id=node_id,
                why="needs_direction_or_triangulation",
                has_directional=False,
                has_two_measured_edges=has_two,
                has_plane_ref=has_plane,
            )
    return None


def _pair_key(a: NodeId, b: NodeId) -> Tuple[NodeId, NodeId]:
    return (a, b) if a <= b else (b, a)


def _check_triangles(graph: Graph) -> Optional[SolvabilityResult]:
    by_pair: Dict[Tuple[NodeId, NodeId], Edge] = {}
    for edge in graph.all_edges():
        by_pair[_pair_key(edge.a, edge.b)] = edge

    node_ids: List[NodeId] = graph.node_ids()
    count = len(node_ids)
    for i in range(count):
        for j in range(i + 1, count):
            e12 = by_pair.get(_pair_key(node_ids[i], node_ids[j]))
            if e12 is None or not has_dim(e12):
                continue
            for k in range(j + 1, count):
                e23 = by_pair.get(_pair_key(node_ids[j], node_ids[k]))
                e13 = by_pair.get(_pair_key(node_ids[i], node_ids[k]))
                if not (has_dim(e23) and has_dim(e13)):
                    continue
                a = e12.dim.value_mm  # type: ignore[union-attr]
                b = e23.dim.value_mm  # type: ignore[union-attr]
                c = e13.dim.value_mm  # type: ignore[union-attr]
                if a + b <= c + TRIANGLE_TOL or a + c <= b + TRIANGLE_TOL or b + c <= a + TRIANGLE_TOL:
                    return _fail(
                        "dimension_conflict",
                        nodes=[node_ids[i], node_ids[j], node_ids[k]],
                        edges=[e12.id, e23.id, e13.id],  # type: ignore[union-attr]
                    )
    return None


@debug_log_call(logger, name="check_solvable")
def check_solvable(graph: Graph) -> SolvabilityResult:
    """Return the first failing solvability rule for ``graph`` (or ``ok=True``)."""

    failure, anchor_id = _check_anchor(graph)
    if failure is not None or anchor_id is None:
        return failure or _fail("anchor_count", count=0)

    for rule in (
        lambda: _check_absolute_reference(graph, anchor_id),
        lambda: _check_reachability(graph, anchor_id),
        lambda: _check_dimensions(graph),
        lambda: _check_references(graph),
        lambda: _check_nodes(graph, anchor_id),
        lambda: _check_triangles(graph),
    ):
        failure = rule()
        if failure is not None:
            return failure
    return SolvabilityResult(ok=True)


def is_solvable(graph: Graph) -> bool:
    return check_solvable(graph).ok


__all__ = ["TRIANGLE_TOL", "check_solvable", "is_solvable"]
