"""Stateless metric calculator: recipe graph to solved coordinates.

``solve`` seeds the single anchor at the origin and then sweeps the graph in
passes.  Each pass tries, in order, direct placement along a resolved edge
direction, interpolation of on-segment nodes, interpolation of straight-run
nodes and finally circle-circle triangulation in a resolved plane.  The loop
stops when a pass places nothing (or when the pass bound is reached).
"""

from __future__ import annotations

import logging
import math
from typing import Dict, List, Optional, Tuple

import numpy as np

from ..constraints import AngleTo, AxisLock, ByEdgeUp, ByEdges, ByNormal, ParallelTo, PerpTo, PlaneRef
from ..graph import Edge, Graph, NodeId, has_dim, has_user_dim
from ..logging_utils import apply_debug_logging
from ..trace import LoggingTraceSink, TraceSink, emit
from .config import resolve_config
from .math_utils import (
    AXIS_VECTORS,
    UP,
    as_tuple,
    circle_intersections,
    match_sign,
    project_off,
    rotate_about_axis,
    unit,
)
from .model import CoordinateMap, SolverConfig
from .recipe import (
    edge_hint,
    edge_plane_ref,
    effective_direction,
    hint_delta,
    measured_segment_edge,
    node_plane_ref,
    segment_ends,
    straight_run_edges,
)
from .solvability import check_solvable

logger = logging.getLogger(__name__)

TRIANGULATION_TOL = 1e-6
_UP_PARALLEL_DOT = 0.99


class MetricPlacement:
    """One placement run over ``graph``; ``coords`` grows as nodes are resolved."""

    def __init__(self, graph: Graph, config: SolverConfig, sink: Optional[TraceSink] = None) -> None:
        self.graph = graph
        self.config = config
        self.sink = sink
        self.coords: Dict[NodeId, np.ndarray] = {}

    # ------------------------------------------------------------ directions
    def reference_direction(self, edge_id: Optional[str]) -> Optional[np.ndarray]:
        if edge_id is None:
            return None
        ref = self.graph.get_edge(edge_id)
        if ref is None or ref.a not in self.coords or ref.b not in self.coords:
            return None
        return unit(self.coords[ref.b] - self.coords[ref.a], self.config.structural_eps)

    def plane_normal(self, plane: Optional[PlaneRef]) -> Optional[np.ndarray]:
        eps = self.config.structural_eps
        if plane is None:
            return None
        if isinstance(plane, ByNormal):
            return unit(plane.normal, eps)
        if isinstance(plane, ByEdges):
            first = self.reference_direction(plane.first)
            second = self.reference_direction(plane.second)
            if first is None or second is None:
                return None
            return unit(np.cross(first, second), eps)
        if isinstance(plane, ByEdgeUp):
            along = self.reference_direction(plane.ref)
            if along is None:
                return None
            up = UP
            if abs(float(np.dot(along, up))) > _UP_PARALLEL_DOT:
                up = AXIS_VECTORS["X"] if abs(float(along[0])) < _UP_PARALLEL_DOT else AXIS_VECTORS["Z"]
            return unit(np.cross(along, up), eps)
        return None

    def _outward(self, direction: np.ndarray, edge: Edge, from_id: NodeId) -> np.ndarray:
        # ``direction`` is expressed a->b; flip when walking from b.
        return -direction if from_id == edge.b else direction

    def edge_direction(self, from_id: NodeId, edge: Edge) -> Optional[np.ndarray]:
        """Unit direction from ``from_id`` toward the other endpoint, or ``None``."""

        eps = self.config.structural_eps
        hint = unit(edge_hint(self.graph, edge), eps)
        constraint = effective_direction(self.graph, edge)

        if constraint is None:
            branch = self._tee_branch_direction(from_id, edge, hint)
            return self._outward(branch, edge, from_id) if branch is not None else None

        if isinstance(constraint, AxisLock):
            direction = match_sign(AXIS_VECTORS[constraint.axis], hint)
            return self._outward(direction, edge, from_id)

        normal = self.plane_normal(edge_plane_ref(self.graph, edge, from_id))
        ref_dir = self.reference_direction(constraint.ref)
        if ref_dir is None:
            return None

        if isinstance(constraint, AngleTo):
            if normal is None:
                return None
            direction = unit(rotate_about_axis(ref_dir, normal, math.radians(constraint.deg)), eps)
            if direction is None:
                return None
            plane_hint = project_off(hint, [normal]) if hint is not None else None
            return self._outward(match_sign(direction, plane_hint), edge, from_id)

        if isinstance(constraint, PerpTo):
            if normal is None:
                return None
            direction = unit(np.cross(normal, ref_dir), eps)
            if direction is None:
                return None
            plane_hint = project_off(hint, [normal]) if hint is not None else None
            return self._outward(match_sign(direction, plane_hint), edge, from_id)

        if isinstance(constraint, ParallelTo):
            sign_hint = hint
            if normal is not None and hint is not None:
                sign_hint = project_off(hint, [normal])
            return self._outward(match_sign(ref_dir, sign_hint), edge, from_id)
        return None

    def _tee_branch_direction(
        self, from_id: NodeId, edge: Edge, hint: Optional[np.ndarray]
    ) -> Optional[np.ndarray]:
        """Branch leaving an on-segment node: perpendicular to the runner (a->b form)."""

        ends = segment_ends(self.graph, from_id)
        if ends is None or edge.other(from_id) in ends:
            return None
        start, end = ends
        runner = None
        if start in self.coords and end in self.coords:
            runner = unit(self.coords[end] - self.coords[start], 1e-12)
        if runner is None:
            runner = unit(hint_delta(self.graph, start, end), 1e-12)
        if runner is None:
            return None

        normal = self._tee_plane_normal(from_id)
        direction: Optional[np.ndarray] = None
        if normal is not None:
            direction = unit(np.cross(normal, runner), 1e-12)
            if direction is not None and hint is not None:
                direction = match_sign(direction, project_off(hint, [runner, normal]))
        if direction is None and hint is not None:
            direction = project_off(hint, [runner])
        if direction is None:
            best = min(AXIS_VECTORS.values(), key=lambda axis: abs(float(np.dot(axis, runner))))
            direction = project_off(best, [runner])
            if direction is None:
                direction = AXIS_VECTORS["Z"]
        return direction

    def _tee_plane_normal(self, node_id: NodeId) -> Optional[np.ndarray]:
        for incident in self.graph.incident_edges(node_id):
            plane = incident.meta.plane
            if isinstance(plane, ByNormal):
                return unit(plane.normal, 1e-12)
        node = self.graph.get_node(node_id)
        if node is not None and isinstance(node.meta.plane_ref, ByNormal):
            return unit(node.meta.plane_ref.normal, 1e-12)
        return None

    # -------------------------------------------------------------- placement
    def _place(self, node_id: NodeId, pos: np.ndarray, how: str, **data: object) -> None:
        self.coords[node_id] = pos
        logger.debug("Placed %s via %s at %s", node_id, how, as_tuple(pos))
        emit(self.sink, "calc.placed", node=node_id, via=how, pos=as_tuple(pos), **data)

    def place_direct(self) -> bool:
        progress = False
        for edge in self.graph.all_edges():
            if not has_dim(edge):
                continue
            a_placed = edge.a in self.coords
            b_placed = edge.b in self.coords
            if a_placed == b_placed:
                continue
            from_id, to_id = (edge.a, edge.b) if a_placed else (edge.b, edge.a)
            direction = self.edge_direction(from_id, edge)
            if direction is None:
                emit(self.sink, "calc.no_direction", edge=edge.id, src=from_id, dst=to_id)
                continue
            length = float(edge.dim.value_mm)  # type: ignore[union-attr, arg-type]
            self._place(to_id, self.coords[from_id] + direction * length, "edge", edge=edge.id)
            progress = True
        return progress

    def _interpolate(self, start: np.ndarray, end: np.ndarray, length: float, from_start: bool) -> np.ndarray:
        along = end - start
        span = float(np.linalg.norm(along)) or 1.0
        step = along / span
        return start + step * length if from_start else end - step * length

    def place_on_segment(self) -> bool:
        progress = False
        for node in self.graph.all_nodes():
            if node.id in self.coords or node.meta.on_segment is None:
                continue
            start, end = node.meta.on_segment
            if start not in self.coords or end not in self.coords:
                continue
            found = measured_segment_edge(self.graph, node.id)
            if found is None:
                continue
            edge, toward = found
            length = float(edge.dim.value_mm)  # type: ignore[union-attr, arg-type]
            pos = self._interpolate(self.coords[start], self.coords[end], length, toward == start)
            self._place(node.id, pos, "on_segment", segment=(start, end))
            progress = True
        return progress

    def place_straight_runs(self) -> bool:
        progress = False
        for node in self.graph.all_nodes():
            if node.id in self.coords:
                continue
            run = straight_run_edges(self.graph, node.id)
            if run is None:
                continue
            first, second = run
            start_id = first.other(node.id)
            end_id = second.other(node.id)
            if start_id not in self.coords or end_id not in self.coords:
                continue
            if has_dim(first):
                length, from_start = float(first.dim.value_mm), True  # type: ignore[union-attr, arg-type]
            elif has_dim(second):
                length, from_start = float(second.dim.value_mm), False  # type: ignore[union-attr, arg-type]
            else:
                continue
            pos = self._interpolate(self.coords[start_id], self.coords[end_id], length, from_start)
            self._place(node.id, pos, "straight_run", between=(start_id, end_id))
            progress = True
        return progress

    def triangulate(self, node_id: NodeId) -> Optional[np.ndarray]:
        """Circle-circle intersection in the node's plane; ``None`` when not possible."""

        eps = self.config.structural_eps
        placed = [
            edge
            for edge in self.graph.incident_edges(node_id)
            if has_dim(edge) and edge.other(node_id) in self.coords
        ]
        if len(placed) < 2:
            return None
        normal = self.plane_normal(node_plane_ref(self.graph, node_id))
        if normal is None:
            return None

        best: Optional[Tuple[float, Edge, Edge]] = None
        for i, first in enumerate(placed):
            for second in placed[i + 1 :]:
                gap = float(
                    np.linalg.norm(self.coords[second.other(node_id)] - self.coords[first.other(node_id)])
                )
                if best is None or gap > best[0]:
                    best = (gap, first, second)
        if best is None:
            return None
        _, e1, e2 = best
        p1 = self.coords[e1.other(node_id)]
        p2 = self.coords[e2.other(node_id)]
        r1 = float(e1.dim.value_mm)  # type: ignore[union-attr, arg-type]
        r2 = float(e2.dim.value_mm)  # type: ignore[union-attr, arg-type]

        h1 = float(np.dot(p1, normal))
        h2 = float(np.dot(p2, normal))
        origin = p1 - normal * h1
        p1_in_plane = origin
        p2_in_plane = p2 - normal * h2

        u = unit(p2_in_plane - p1_in_plane, eps)
        if u is None:
            return None
        v = unit(np.cross(normal, u), eps)
        if v is None:
            return None

        r1_sq = r1 * r1 - h1 * h1
        r2_sq = r2 * r2 - h2 * h2
        if r1_sq < -TRIANGULATION_TOL or r2_sq < -TRIANGULATION_TOL:
            emit(self.sink, "calc.triangulation_conflict", node=node_id, edges=(e1.id, e2.id))
            return None

        c1 = np.array([float(np.dot(p1_in_plane - origin, u)), float(np.dot(p1_in_plane - origin, v))])
        c2 = np.array([float(np.dot(p2_in_plane - origin, u)), float(np.dot(p2_in_plane - origin, v))])
        hits = circle_intersections(
            c1, math.sqrt(max(0.0, r1_sq)), c2, math.sqrt(max(0.0, r2_sq)), TRIANGULATION_TOL
        )
        if not hits:
            return None
        candidates = [origin + u * float(q[0]) + v * float(q[1]) for q in hits]
        return max(candidates, key=lambda cand: float(np.dot(cand - p1, v)))

    def place_triangulated(self) -> bool:
        progress = False
        for node_id in self.graph.node_ids():
            if node_id in self.coords:
                continue
            pos = self.triangulate(node_id)
            if pos is None:
                continue
            self._place(node_id, pos, "triangulation")
            progress = True
        return progress

    def run(self, anchor_id: NodeId) -> bool:
        self.coords = {anchor_id: np.zeros(3)}
        bound = self.config.pass_bound(len(self.graph.all_edges()))
        for pass_no in range(1, bound + 1):
            emit(self.sink, "calc.pass", number=pass_no, placed=len(self.coords))
            progress = self.place_direct()
            progress = self.place_on_segment() or progress
            progress = self.place_straight_runs() or progress
            progress = self.place_triangulated() or progress
            if not progress:
                break
        return len(self.coords) == len(self.graph)


def solve(
    graph: Graph,
    *,
    config: Optional[SolverConfig] = None,
    sink: Optional[TraceSink] = None,
) -> Optional[CoordinateMap]:
    """Return solved coordinates for every node, or ``None`` when the recipe is incomplete."""

    verdict = check_solvable(graph)
    if not verdict.ok:
        logger.info("Recipe not solvable: %s %s", verdict.reason, verdict.details)
        return None

    anchor_id = graph.anchors()[0].id
    placement = MetricPlacement(graph, resolve_config(config), sink or LoggingTraceSink())
    if not placement.run(anchor_id):
        unplaced: List[NodeId] = [nid for nid in graph.node_ids() if nid not in placement.coords]
        logger.info("Incomplete metric placement: %d/%d nodes", len(placement.coords), len(graph))
        emit(placement.sink, "calc.incomplete", unplaced=unplaced)
        return None

    for pos in placement.coords.values():
        if not np.all(np.isfinite(pos)):
            logger.warning("Non-finite coordinate produced; discarding solve")
            return None

    derived: Dict[str, float] = {}
    for edge in graph.all_edges():
        if has_user_dim(edge):
            continue
        derived[edge.id] = float(np.linalg.norm(placement.coords[edge.b] - placement.coords[edge.a]))

    logger.info("Solved %d nodes, %d derived edge lengths", len(placement.coords), len(derived))
    return CoordinateMap(
        {node_id: as_tuple(pos) for node_id, pos in placement.coords.items()},
        derived,
    )


apply_debug_logging(globals(), logger=logger, skip={"MetricPlacement._place"})


__all__ = ["MetricPlacement", "TRIANGULATION_TOL", "solve"]
