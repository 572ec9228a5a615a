"""Pythagorean consistency across right triangles of construction legs.

A right triangle is a vertex ``A`` with two construction legs ``A-P`` and
``A-Q`` along different dominant axes, closed by a centre diagonal ``P-Q``
whose schematic delta spans exactly those two axes.  At most two of the three
members stay user-owned; the third is derived.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set, Tuple

from ..graph import Conflict, Dimension, Edge, EdgeId, Graph, NodeId
from ..trace import TraceSink
from .context import SolveContext
from .math_utils import dominant_axis, nonzero_axes
from .model import SolverConfig
from .recipe import edge_hint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RightTriangle:
    vertex: NodeId
    p: NodeId
    q: NodeId
    leg_p: EdgeId
    leg_q: EdgeId
    diagonal: EdgeId
    axes: Tuple[str, str]


@dataclass
class _Member:
    edge_id: EdgeId
    role: str
    value: Optional[float]
    source: Optional[str]
    stamp: Optional[float]
    dim: Optional[Dimension]


def _leg_axis(graph: Graph, edge: Edge, eps: float) -> Optional[str]:
    return dominant_axis(edge_hint(graph, edge), eps)


def _diagonal_matches(graph: Graph, edge: Edge, axes: Tuple[str, str], tol: float) -> bool:
    present = nonzero_axes(edge_hint(graph, edge), tol)
    return len(present) == 2 and set(present) == set(axes)


def find_triangles_touching_edge(
    graph: Graph, edge_id: EdgeId, *, tol: float = 1e-6, eps: float = 1e-9
) -> List[RightTriangle]:
    edge = graph.get_edge(edge_id)
    if edge is None:
        return []
    found: List[RightTriangle] = []
    seen: Set[Tuple[NodeId, ...]] = set()

    def consider(vertex: NodeId, p: NodeId, q: NodeId, leg_p: Edge, leg_q: Edge, diagonal: Edge) -> None:
        key = tuple(sorted((vertex, p, q)))
        if key in seen:
            return
        axis_p = _leg_axis(graph, leg_p, eps)
        axis_q = _leg_axis(graph, leg_q, eps)
        if axis_p is None or axis_q is None or axis_p == axis_q:
            logger.debug("Rejecting triangle %s: legs %s/%s not orthogonal", key, leg_p.id, leg_q.id)
            return
        if not _diagonal_matches(graph, diagonal, (axis_p, axis_q), tol):
            logger.debug("Rejecting triangle %s: diagonal %s outside the leg plane", key, diagonal.id)
            return
        seen.add(key)
        found.append(RightTriangle(vertex, p, q, leg_p.id, leg_q.id, diagonal.id, (axis_p, axis_q)))

    if edge.kind == "construction":
        for vertex in (edge.a, edge.b):
            p = edge.other(vertex)
            for other_leg in graph.incident_edges(vertex, "construction"):
                if other_leg.id == edge_id:
                    continue
                q = other_leg.other(vertex)
                diagonal = graph.edge_between(p, q, "center")
                if diagonal is not None:
                    consider(vertex, p, q, edge, other_leg, diagonal)
    elif edge.kind == "center":
        p, q = edge.a, edge.b
        for leg_p in graph.incident_edges(p, "construction"):
            for leg_q in graph.incident_edges(q, "construction"):
                vertex = leg_p.other(p)
                if vertex != leg_q.other(q):
                    continue
                consider(vertex, p, q, leg_p, leg_q, edge)
    return found


class TriangleEngine:
    """Keeps leg/leg/diagonal lengths consistent after user edits."""

    def __init__(
        self,
        graph: Graph,
        config: Optional[SolverConfig] = None,
        sink: Optional[TraceSink] = None,
        clock: Callable[[], float] = lambda: time.time() * 1000.0,
    ) -> None:
        self.context = SolveContext.create(graph, config, sink)
        self.clock = clock
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def graph(self) -> Graph:
        return self.context.graph

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.graph.on_edge_dimension_changed(self._on_dimension_changed)
            logger.info("Triangle engine attached")

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
            logger.info("Triangle engine detached")

    def _on_dimension_changed(self, edge_id: EdgeId) -> None:
        if self.context.guard.active:
            return
        self.handle_edge_dimension_changed(edge_id)

    def handle_edge_dimension_changed(self, edge_id: EdgeId) -> None:
        edge = self.graph.get_edge(edge_id)
        if edge is None or edge.dim is None or not edge.dim.is_user:
            return
        config = self.context.config
        triangles = find_triangles_touching_edge(
            self.graph, edge_id, tol=config.geometric_tol, eps=config.structural_eps
        )
        self.context.trace("triangles.found", edge=edge_id, count=len(triangles))
        for triangle in triangles:
            self.apply_policy(triangle, edge_id)

    def _member(self, edge_id: EdgeId, role: str) -> _Member:
        edge = self.graph.get_edge(edge_id)
        dim = edge.dim if edge is not None else None
        value = dim.value_mm if dim is not None else None
        if not (isinstance(value, (int, float)) and math.isfinite(value)):
            value = None
        return _Member(
            edge_id=edge_id,
            role=role,
            value=value,
            source=dim.source if dim is not None else None,
            stamp=dim.user_edited_at if dim is not None else None,
            dim=dim,
        )

    def _lock_as_user(self, member: _Member) -> None:
        if member.value is None:
            return
        if member.source == "user" and member.stamp:
            return
        previous = member.dim or Dimension()
        stamp = member.stamp if member.stamp else self.clock()
        self.context.write_dimension(
            member.edge_id,
            Dimension(
                value_mm=member.value,
                source="user",
                mode=previous.mode,
                label=previous.label,
                user_edited_at=stamp,
                conflict=previous.conflict,
            ),
            silent=True,
        )

    def apply_policy(self, triangle: RightTriangle, edited_id: EdgeId) -> Optional[EdgeId]:
        """Lock the edited member plus one more and derive the third.

        Returns the id of the derived (or conflicted) member, ``None`` when the
        triangle does not carry enough values.
        """

        members = [
            self._member(triangle.leg_p, "leg1"),
            self._member(triangle.leg_q, "leg2"),
            self._member(triangle.diagonal, "diag"),
        ]
        by_id: Dict[EdgeId, _Member] = {m.edge_id: m for m in members}
        if sum(1 for m in members if m.value is not None) < 2:
            logger.debug("Triangle %s has fewer than two known values", triangle)
            return None
        if edited_id not in by_id:
            return None

        remaining = [m for m in members if m.edge_id != edited_id]
        users = sorted((m for m in remaining if m.source == "user"), key=lambda m: -(m.stamp or 0))
        second = users[0] if users else next((m for m in remaining if m.value is not None), None)

        edited = by_id[edited_id]
        self._lock_as_user(edited)
        if second is not None:
            self._lock_as_user(second)

        target = next((m for m in remaining if second is None or m.edge_id != second.edge_id), None)
        if target is None or second is None or edited.value is None or second.value is None:
            logger.warning("Triangle %s: cannot derive without two known values", triangle)
            return None

        roles = "+".join(sorted((edited.role, second.role)))
        legs = {m.role: m for m in members}
        new_value: Optional[float] = None
        shortfall = 0.0
        if roles == "leg1+leg2":
            new_value = math.hypot(legs["leg1"].value or 0.0, legs["leg2"].value or 0.0)
        elif roles in ("diag+leg1", "diag+leg2"):
            diag = legs["diag"].value or 0.0
            leg = legs[roles.split("+")[1]].value or 0.0
            if diag >= leg:
                new_value = math.sqrt(max(0.0, diag * diag - leg * leg))
            shortfall = leg - diag
        else:  # pragma: no cover - roles are always two distinct members
            return None

        self.context.trace("triangles.derive", target=target.edge_id, roles=roles, value=new_value)
        floor = self.context.config.structural_eps
        if new_value is not None and math.isfinite(new_value) and new_value > floor:
            previous = target.dim or Dimension()
            self.context.write_dimension(
                target.edge_id,
                Dimension(
                    value_mm=new_value,
                    source="derived",
                    mode=previous.mode,
                    label=previous.label,
                    derived_from={"from": [edited.edge_id, second.edge_id]},
                ),
            )
            return target.edge_id

        previous = target.dim or Dimension()
        logger.warning(
            "Triangle %s infeasible (%s): leg is not shorter than the diagonal (shortfall %.3f mm)",
            triangle,
            roles,
            shortfall,
        )
        self.context.write_dimension(
            target.edge_id,
            previous.evolve(
                conflict=Conflict(
                    delta_mm=shortfall,
                    reason="infeasible",
                    details={"roles": roles, "edited": edited_id},
                )
            ),
            silent=True,
        )
        return target.edge_id


__all__ = ["RightTriangle", "TriangleEngine", "find_triangles_touching_edge"]
