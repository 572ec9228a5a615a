"""Incremental re-solve of the component touched by a dimension edit.

The pipeline run for every external edit is:

1. recompute the component (construction-priming + derive/validate),
2. normalise the lock budget around every user-measured diagonal,
3. recompute again and autosolve each remaining user diagonal by adjusting
   the oldest-edited construction leg on its path.

Recency decides ownership everywhere: members are ranked by
``user_edited_at`` (newest first) with the edge id as tie-break.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import numpy as np

from ..graph import Conflict, Dimension, Edge, EdgeId, Graph, NodeId
from ..logging_utils import apply_debug_logging
from ..trace import TraceSink, component_snapshot
from ..traversal import TraversalPath, component_of_edge, kind_filter, shortest_path
from .context import SolveContext
from .math_utils import AXIS_INDEX, as_tuple, dominant_axis, signed_axis_unit, unit
from .model import SolverConfig
from .recipe import hint_delta

logger = logging.getLogger(__name__)

NEG_INF = float("-inf")


@dataclass
class LockMember:
    edge_id: EdgeId
    role: str
    axis: str
    stamp: float
    index: int = -1
    sign: float = 1.0


def edit_stamp(edge: Optional[Edge]) -> float:
    if edge is None or edge.dim is None:
        return NEG_INF
    stamp = edge.dim.user_edited_at
    if isinstance(stamp, (int, float)) and math.isfinite(stamp):
        return float(stamp)
    return NEG_INF


def recency_key(member: LockMember):
    return (-member.stamp, member.edge_id)


def _finite_value(dim: Optional[Dimension]) -> Optional[float]:
    if dim is None:
        return None
    value = dim.value_mm
    if isinstance(value, (int, float)) and math.isfinite(value):
        return float(value)
    return None


class ReactiveSolver:
    """Reacts to ``on_edge_dimension_changed`` and keeps derived lengths current."""

    def __init__(
        self,
        graph: Graph,
        config: Optional[SolverConfig] = None,
        sink: Optional[TraceSink] = None,
    ) -> None:
        self.context = SolveContext.create(graph, config, sink)
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def graph(self) -> Graph:
        return self.context.graph

    @property
    def metric(self) -> Dict[NodeId, tuple]:
        """Working coordinates of the last recomputed component."""

        return {node_id: as_tuple(pos) for node_id, pos in self.context.metric.items()}

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.graph.on_edge_dimension_changed(self._on_dimension_changed)
            logger.info("Reactive solver attached")

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
            logger.info("Reactive solver detached")

    def _on_dimension_changed(self, edge_id: EdgeId) -> None:
        if self.context.guard.active:
            return
        self.handle_edge_dimension_changed(edge_id)

    # ------------------------------------------------------------------ entry
    def handle_edge_dimension_changed(self, edge_id: EdgeId) -> None:
        if self.graph.get_edge(edge_id) is None:
            return
        self.context.trace("reactive.edit", edge=edge_id)
        self.recompute_component(edge_id)

        diagonals = self.user_diagonals(edge_id)
        if not diagonals:
            return
        for diagonal in diagonals:
            self.normalize_locks(diagonal)
        for diagonal in self.user_diagonals(edge_id):
            self.recompute_component(diagonal)
            self.autosolve_diagonal(diagonal)

    def user_diagonals(self, edge_id: EdgeId) -> List[EdgeId]:
        out: List[EdgeId] = []
        for candidate in component_of_edge(self.graph, edge_id).edges:
            edge = self.graph.get_edge(candidate)
            if edge is not None and edge.kind == "center" and edge.dim is not None and edge.dim.is_user:
                out.append(candidate)
        return out

    # -------------------------------------------------------------- recompute
    def _seed(self, nodes: List[NodeId]) -> NodeId:
        for node_id in nodes:
            node = self.graph.get_node(node_id)
            if node is not None and node.meta.is_anchor:
                return node_id
        eps = self.context.config.structural_eps
        for node_id in nodes:
            world = self.graph.get_node_world_pos(node_id)
            if world is not None and all(abs(c) <= eps for c in world):
                return node_id
        return nodes[0]

    def _propagation_direction(self, edge: Edge) -> np.ndarray:
        hint = hint_delta(self.graph, edge.a, edge.b)
        if edge.kind == "construction":
            return signed_axis_unit(hint, self.context.config.structural_eps)
        direction = unit(hint, self.context.config.structural_eps)
        return direction if direction is not None else np.zeros(3)

    def recompute_component(self, edge_id: EdgeId) -> Dict[NodeId, np.ndarray]:
        """Rebuild the working metric for the component of ``edge_id`` and sync edges."""

        graph = self.graph
        config = self.context.config
        component = component_of_edge(graph, edge_id)
        if not component.nodes:
            return {}
        edges = [edge for edge in (graph.get_edge(eid) for eid in component.edges) if edge is not None]
        priming = any(edge.kind == "construction" for edge in edges)

        metric: Dict[NodeId, np.ndarray] = {self._seed(component.nodes): np.zeros(3)}
        bound = config.pass_bound(len(edges))
        passes = 0
        changed = True
        while changed and passes < bound:
            changed = False
            passes += 1
            for edge in edges:
                if priming and edge.kind != "construction":
                    continue
                value = _finite_value(edge.dim)
                if value is None:
                    continue
                a_known = edge.a in metric
                b_known = edge.b in metric
                if a_known == b_known:
                    continue
                direction = self._propagation_direction(edge)
                if a_known:
                    metric[edge.b] = metric[edge.a] + direction * value
                else:
                    metric[edge.a] = metric[edge.b] - direction * value
                changed = True

        self.context.metric = metric
        self._derive_and_validate(edges, metric)
        self.context.trace(
            "reactive.recompute",
            edge=edge_id,
            passes=passes,
            **component_snapshot(
                graph, component.nodes, component.edges, {k: as_tuple(v) for k, v in metric.items()}
            ),
        )
        return metric

    def _derive_and_validate(self, edges: List[Edge], metric: Dict[NodeId, np.ndarray]) -> None:
        config = self.context.config
        for edge in edges:
            if edge.a not in metric or edge.b not in metric:
                continue
            geometric = float(np.linalg.norm(metric[edge.b] - metric[edge.a]))
            dim = edge.dim
            if dim is not None and dim.is_user:
                delta = abs((dim.value_mm or 0.0) - geometric)
                previous = dim.conflict
                if delta > config.user_conflict_tol_mm:
                    if previous is None or not math.isclose(
                        previous.delta_mm or 0.0, delta, abs_tol=config.structural_eps
                    ):
                        logger.info("Conflict on %s: measured differs by %.3f mm", edge.id, delta)
                        self.context.write_dimension(edge.id, dim.evolve(conflict=Conflict(delta_mm=delta)), silent=True)
                elif previous is not None:
                    self.context.write_dimension(edge.id, dim.evolve(conflict=None), silent=True)
                continue

            if geometric <= config.structural_eps:
                logger.debug("Skipping zero-length derivation for %s", edge.id)
                continue
            if (
                dim is not None
                and dim.conflict is None
                and dim.value_mm is not None
                and abs(dim.value_mm - geometric) <= config.structural_eps
            ):
                continue
            self.context.write_dimension(
                edge.id,
                Dimension(
                    value_mm=geometric,
                    source="derived",
                    mode=dim.mode if dim is not None else "aligned",
                    label=dim.label if dim is not None else None,
                    derived_from={"kind": "metric"},
                ),
            )

    # ------------------------------------------------------- lock budgeting
    def _construction_path(self, diagonal: Edge) -> Optional[TraversalPath]:
        path = shortest_path(self.graph, diagonal.a, diagonal.b, kind_filter("construction"))
        if path is None or not path.edges:
            return None
        return path

    def _path_legs(self, path: TraversalPath) -> List[LockMember]:
        legs: List[LockMember] = []
        metric = self.context.metric
        eps = self.context.config.structural_eps
        for index, (start, end, edge_id) in enumerate(path.legs()):
            edge = self.graph.get_edge(edge_id)
            if edge is None or edge.kind != "construction":
                continue
            world = hint_delta(self.graph, start, end)
            axis = dominant_axis(world, eps) or "X"
            slot = AXIS_INDEX[axis]
            solved = metric[end] - metric[start] if start in metric and end in metric else world
            if abs(float(solved[slot])) > eps:
                sign = math.copysign(1.0, float(solved[slot]))
            elif abs(float(world[slot])) > eps:
                sign = math.copysign(1.0, float(world[slot]))
            else:
                sign = 1.0
            legs.append(LockMember(edge_id, "leg", axis, edit_stamp(edge), index=index, sign=sign))
        return legs

    def _current_length(self, edge: Edge) -> float:
        metric = self.context.metric
        if edge.a in metric and edge.b in metric:
            return float(np.linalg.norm(metric[edge.b] - metric[edge.a]))
        world = hint_delta(self.graph, edge.a, edge.b)
        if edge.kind == "construction":
            axis = dominant_axis(world, self.context.config.structural_eps) or "X"
            return abs(float(world[AXIS_INDEX[axis]]))
        return float(np.linalg.norm(world))

    def demote(self, edge_id: EdgeId) -> None:
        """Turn a user length into a derived one (diagonals lose their value)."""

        edge = self.graph.get_edge(edge_id)
        if edge is None:
            return
        previous = edge.dim or Dimension()
        keep = _finite_value(previous)
        if keep is None:
            keep = self._current_length(edge)
        logger.info("Demoting %s (%s) from user to derived", edge_id, edge.kind)
        self.context.write_dimension(
            edge_id,
            Dimension(
                value_mm=keep if edge.kind == "construction" else None,
                source="derived",
                mode=previous.mode,
                label=previous.label,
                derived_from={"kind": "autoDemote", "was": "user"},
            ),
        )

    def normalize_locks(self, diagonal_id: EdgeId) -> List[EdgeId]:
        """Keep the ``k`` most recent members around a user diagonal; demote the rest."""

        diagonal = self.graph.get_edge(diagonal_id)
        if diagonal is None or diagonal.kind != "center" or diagonal.dim is None or not diagonal.dim.is_user:
            return []
        path = self._construction_path(diagonal)
        if path is None:
            return []
        legs = self._path_legs(path)
        k = max(1, len({leg.axis for leg in legs}))
        ranked = sorted(
            [LockMember(diagonal_id, "diag", "*", edit_stamp(diagonal))] + legs,
            key=recency_key,
        )
        keep = {member.edge_id for member in ranked[:k]}
        self.context.trace(
            "reactive.normalize",
            diagonal=diagonal_id,
            k=k,
            ranked=[(m.edge_id, m.role, m.axis, m.stamp) for m in ranked],
            kept=sorted(keep),
        )

        demoted: List[EdgeId] = []
        for member in ranked:
            if member.edge_id in keep:
                continue
            edge = self.graph.get_edge(member.edge_id)
            if edge is not None and edge.dim is not None and edge.dim.is_user:
                self.demote(member.edge_id)
                demoted.append(member.edge_id)
        if demoted:
            self.recompute_component(diagonal_id)
        return demoted

    # -------------------------------------------------------------- autosolve
    def autosolve_diagonal(self, diagonal_id: EdgeId) -> Optional[EdgeId]:
        """Adjust the oldest construction leg so the path spans the diagonal's length.

        Returns the adjusted leg id, or ``None`` when nothing was written (an
        infeasible target is recorded as a conflict on the diagonal instead).
        """

        graph = self.graph
        eps = self.context.config.structural_eps
        diagonal = graph.get_edge(diagonal_id)
        if diagonal is None or diagonal.dim is None or not diagonal.dim.is_user:
            return None
        target = _finite_value(diagonal.dim)
        if target is None:
            return None
        path = self._construction_path(diagonal)
        if path is None:
            return None
        legs = self._path_legs(path)
        if not legs:
            return None

        ranked = sorted([LockMember(diagonal_id, "diag", "*", edit_stamp(diagonal))] + legs, key=lambda m: -m.stamp)
        locked = {member.edge_id for member in ranked[:2]}
        by_age = sorted(legs, key=lambda m: (m.stamp, m.edge_id))
        adjustable = [leg for leg in by_age if leg.edge_id not in locked]
        pick = adjustable[0] if adjustable else by_age[0]
        self.context.trace("reactive.autosolve_pick", diagonal=diagonal_id, pick=pick.edge_id, locked=sorted(locked))

        picked_edge = graph.get_edge(pick.edge_id)
        if picked_edge is not None and picked_edge.dim is not None and picked_edge.dim.is_user:
            self.demote(pick.edge_id)
            self.recompute_component(diagonal_id)

        metric = self.context.metric
        start, end = path.nodes[0], path.nodes[-1]
        if start not in metric or end not in metric:
            return None
        total = metric[end] - metric[start]
        slot = AXIS_INDEX[pick.axis]
        current_total = float(total[slot])
        others_sq = float(sum(total[i] * total[i] for i in range(3) if i != slot))

        required_sq = target * target - others_sq
        if required_sq < -eps:
            dim_now = graph.get_edge(diagonal_id).dim or Dimension()  # type: ignore[union-attr]
            delta = math.sqrt(others_sq) - target
            logger.warning("Diagonal %s cannot reach %.3f mm (short by %.3f mm)", diagonal_id, target, delta)
            self.context.write_dimension(
                diagonal_id,
                dim_now.evolve(conflict=Conflict(delta_mm=delta, reason="autosolve_infeasible")),
            )
            return None

        magnitude = math.sqrt(max(0.0, required_sq))
        sign = math.copysign(1.0, current_total) if abs(current_total) > eps else pick.sign
        seg_start = path.nodes[pick.index]
        seg_end = path.nodes[pick.index + 1]
        if seg_start not in metric or seg_end not in metric:
            return None
        old_pick = float(metric[seg_end][slot] - metric[seg_start][slot])
        new_pick = magnitude * sign - (current_total - old_pick)
        if abs(new_pick) <= eps:
            dim_now = graph.get_edge(diagonal_id).dim or Dimension()  # type: ignore[union-attr]
            logger.warning(
                "Diagonal %s would collapse leg %s to zero length; leaving it unchanged", diagonal_id, pick.edge_id
            )
            self.context.write_dimension(
                diagonal_id,
                dim_now.evolve(
                    conflict=Conflict(
                        delta_mm=abs(new_pick),
                        reason="autosolve_infeasible",
                        details={"leg": pick.edge_id, "degenerate": True},
                    )
                ),
            )
            return None

        previous = graph.get_edge(pick.edge_id).dim or Dimension()  # type: ignore[union-attr]
        self.context.write_dimension(
            pick.edge_id,
            Dimension(
                value_mm=abs(new_pick),
                source="derived",
                mode=previous.mode,
                label=previous.label,
                derived_from={"kind": "lockTwo_adjustOldest", "diagonal": diagonal_id},
            ),
        )
        logger.info("Autosolve adjusted %s to %.3f mm for diagonal %s", pick.edge_id, abs(new_pick), diagonal_id)
        self.recompute_component(diagonal_id)
        return pick.edge_id


apply_debug_logging(
    globals(),
    logger=logger,
    skip={"ReactiveSolver._on_dimension_changed", "edit_stamp", "recency_key", "_finite_value"},
)


__all__ = ["LockMember", "ReactiveSolver", "edit_stamp", "recency_key"]
