"""Graded height reassignment along an axis-aligned path.

A slope request names an upstream node ``A``, a downstream node ``B`` and a
grade (fractional fall per horizontal millimetre).  The path between them is
split into *risers* (no horizontal travel) and *spans* (horizontal travel).
Spans receive the fall, risers stretch or shrink to absorb it, and anchors
(``A``, ``B`` and any caller supplied nodes) keep their original height.

Only :func:`commit` mutates the graph; :func:`preview` is a pure function of
the current node positions.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Literal, Optional, Set, Tuple

from ..graph import Edge, EdgeId, Graph, GraphError, NodeId, Vec3
from ..logging_utils import apply_debug_logging
from ..stress import evaluate_node_stress
from ..topology import classify_and_store_many
from ..trace import TraceSink
from ..traversal import kind_filter, shortest_path
from .context import SolveContext
from .math_utils import nonzero_axes
from .model import SLOPE_MODES, SlopeCommitResult, SlopePreview, SlopeWarning, SolverConfig
from .recipe import hint_delta

logger = logging.getLogger(__name__)

SectionKind = Literal["riser", "span"]


@dataclass
class Section:
    kind: SectionKind
    nodes: List[NodeId] = field(default_factory=list)

    @property
    def top(self) -> NodeId:
        return self.nodes[0]

    @property
    def bottom(self) -> NodeId:
        return self.nodes[-1]


@dataclass
class SpanDrop:
    upper: NodeId
    lower: NodeId
    drop: float


def _fail(reason: str, **details) -> SlopePreview:
    logger.info("Slope preview rejected: %s %s", reason, details)
    return SlopePreview(ok=False, reason=reason, details=details)


def manhattan_path(graph: Graph, a: NodeId, b: NodeId, tol: float = 1e-6) -> Optional[List[NodeId]]:
    """Fewest-edge path over centre/construction edges that change exactly one axis."""

    def axis_aligned(edge: Edge, start: NodeId, end: NodeId) -> bool:
        return len(nonzero_axes(hint_delta(graph, start, end), tol)) == 1

    found = shortest_path(graph, a, b, kind_filter("center", "construction"), step_filter=axis_aligned)
    return found.nodes if found is not None else None


def _has_horizontal(positions: Dict[NodeId, Vec3], u: NodeId, v: NodeId, eps: float) -> bool:
    pu, pv = positions[u], positions[v]
    return math.hypot(pv[0] - pu[0], pv[2] - pu[2]) > eps


def build_sections(
    path: List[NodeId], positions: Dict[NodeId, Vec3], anchors: Set[NodeId], eps: float = 1e-6
) -> List[Section]:
    """Split ``path`` into alternating riser/span sections.

    Consecutive sections share their boundary node.  A span is cut at every
    interior anchor, and the anchor becomes a single-node riser between the
    two halves.
    """

    sections: List[Section] = []
    i = 0
    last = len(path) - 1
    while i <= last:
        riser = [path[i]]
        while i < last and not _has_horizontal(positions, path[i], path[i + 1], eps):
            i += 1
            riser.append(path[i])
        sections.append(Section("riser", riser))
        if i >= last:
            break

        span = [path[i]]
        while i < last and _has_horizontal(positions, path[i], path[i + 1], eps):
            i += 1
            span.append(path[i])

        start = 0
        for cut in range(1, len(span) - 1):
            if span[cut] not in anchors:
                continue
            sections.append(Section("span", span[start : cut + 1]))
            sections.append(Section("riser", [span[cut]]))
            start = cut
        sections.append(Section("span", span[start:]))
    return sections


def plan_span_drops(
    span: Section,
    positions: Dict[NodeId, Vec3],
    grade: float,
    eps: float = 1e-6,
) -> Tuple[List[SpanDrop], float, List[SlopeWarning]]:
    """Per-leg fall along a span and the total required drop.

    Level legs fall ``grade * horizontal``; legs already falling keep their
    drop; rising legs are re-graded and reported with a ``diag_uphill``
    warning.
    """

    drops: List[SpanDrop] = []
    warnings: List[SlopeWarning] = []
    total = 0.0
    for upper, lower in zip(span.nodes, span.nodes[1:]):
        pu, pv = positions[upper], positions[lower]
        run = math.hypot(pv[0] - pu[0], pv[2] - pu[2])
        if run <= eps:
            continue
        fall = pu[1] - pv[1]
        if abs(fall) <= eps:
            drop = grade * run
        elif fall > 0:
            drop = fall
        else:
            drop = grade * run
            warnings.append({"type": "diag_uphill", "edge": (upper, lower)})
        drops.append(SpanDrop(upper, lower, drop))
        total += drop
    return drops, total, warnings


def map_riser_column(
    nodes: List[NodeId], y_top: float, y_bottom: float, pinned: Optional[Dict[NodeId, float]] = None
) -> Dict[NodeId, float]:
    """Linear heights along a riser by node index, bending only at pinned interior nodes."""

    if len(nodes) == 1:
        return {nodes[0]: y_top}
    knots: List[Tuple[int, float]] = [(0, y_top)]
    for index in range(1, len(nodes) - 1):
        if pinned and nodes[index] in pinned:
            knots.append((index, pinned[nodes[index]]))
    knots.append((len(nodes) - 1, y_bottom))

    result: Dict[NodeId, float] = {}
    for (i0, y0), (i1, y1) in zip(knots, knots[1:]):
        for index in range(i0, i1 + 1):
            t = (index - i0) / (i1 - i0)
            result[nodes[index]] = y0 + t * (y1 - y0)
    return result


def _span_ends(
    mode: str,
    up0: float,
    dn0: float,
    drop: float,
    anchored_up: bool,
    anchored_dn: bool,
    eps: float,
) -> Optional[Tuple[float, float]]:
    if anchored_up and anchored_dn:
        if abs((up0 - dn0) - drop) > eps:
            return None
        return up0, dn0
    if anchored_up:
        return up0, up0 - drop
    if anchored_dn:
        return dn0 + drop, dn0
    if mode == "lockTop":
        return up0, up0 - drop
    if mode == "lockBottom":
        return dn0 + drop, dn0
    correction = drop - (up0 - dn0)
    return up0 + 0.5 * correction, dn0 - 0.5 * correction


def preview(
    graph: Graph,
    a: NodeId,
    b: NodeId,
    grade: float,
    mode: str = "balanced",
    anchors: Iterable[NodeId] = (),
    config: Optional[SolverConfig] = None,
    sink: Optional[TraceSink] = None,
) -> SlopePreview:
    """Compute target heights for a slope from ``a`` down to ``b``; the graph is untouched."""

    context = SolveContext.create(graph, config, sink)
    eps = context.config.slope_eps

    if mode not in SLOPE_MODES:
        return _fail("unknown_mode", mode=mode, allowed=list(SLOPE_MODES))
    if not isinstance(grade, (int, float)) or not math.isfinite(grade) or grade < 0:
        return _fail("invalid_grade", grade=grade)

    path = manhattan_path(graph, a, b, context.config.geometric_tol)
    if path is None:
        return _fail("no_manhattan_path", a=a, b=b)

    positions: Dict[NodeId, Vec3] = {}
    for node_id in path:
        pos = graph.get_node_world_pos(node_id)
        if pos is None:
            raise GraphError(f"unknown node '{node_id}'")
        positions[node_id] = pos
    y_orig = {node_id: positions[node_id][1] for node_id in path}
    y_a, y_b = y_orig[a], y_orig[b]

    if mode == "balanced" and not y_a > y_b + eps:
        return _fail("A_not_higher_than_B", yA=y_a, yB=y_b)

    anchor_set: Set[NodeId] = set(anchors)
    anchor_set.update((a, b))
    sections = build_sections(path, positions, anchor_set, eps)
    context.trace(
        "slope.sections",
        path=list(path),
        sections=[(section.kind, list(section.nodes)) for section in sections],
    )

    if not any(section.kind == "span" for section in sections):
        logger.info("Slope %s -> %s: path has no horizontal span", a, b)
        return SlopePreview(ok=True, path=list(path), target_y_by_node=dict(y_orig))

    y_new = dict(y_orig)
    warnings: List[SlopeWarning] = []
    total_drop = 0.0
    for index, span in enumerate(sections):
        if span.kind != "span":
            continue
        riser_up = sections[index - 1]
        riser_down = sections[index + 1]

        drops, required, span_warnings = plan_span_drops(span, positions, grade, eps)
        warnings.extend(span_warnings)
        total_drop += required

        up0 = y_new[riser_up.bottom]
        dn0 = y_new[riser_down.top]
        ends = _span_ends(
            mode,
            up0,
            dn0,
            required,
            riser_up.bottom in anchor_set,
            riser_down.top in anchor_set,
            eps,
        )
        if ends is None:
            return _fail(
                "anchors_overconstrained",
                span=list(span.nodes),
                required_drop=required,
                available_drop=up0 - dn0,
            )
        up, dn = ends
        y_new[riser_up.bottom] = up
        y_new[riser_down.top] = dn

        current = up
        for leg in drops:
            current -= leg.drop
            y_new[leg.lower] = current
        y_new[span.bottom] = dn

        pinned_up = {n: y_orig[n] for n in riser_up.nodes[1:-1] if n in anchor_set}
        top_up = y_orig[riser_up.top] if riser_up.top in anchor_set else y_new[riser_up.top]
        y_new.update(map_riser_column(riser_up.nodes, top_up, y_new[riser_up.bottom], pinned_up))

        pinned_down = {n: y_orig[n] for n in riser_down.nodes[1:-1] if n in anchor_set}
        bottom_down = y_orig[riser_down.bottom] if riser_down.bottom in anchor_set else y_new[riser_down.bottom]
        y_new.update(map_riser_column(riser_down.nodes, y_new[riser_down.top], bottom_down, pinned_down))

        context.trace("slope.span", nodes=list(span.nodes), drop=required, up=up, down=dn)

    y_new[a] = y_a
    y_new[b] = y_b

    affected: List[EdgeId] = []
    for u, v in zip(path, path[1:]):
        edge = graph.edge_between(u, v, "center")
        if edge is not None and edge.id not in affected:
            affected.append(edge.id)

    logger.info(
        "Slope %s -> %s (%s, grade %.4f): %d nodes, drop %.3f mm, %d warning(s)",
        a,
        b,
        mode,
        grade,
        len(path),
        total_drop,
        len(warnings),
    )
    return SlopePreview(
        ok=True,
        path=list(path),
        target_y_by_node=y_new,
        affected_edges=affected,
        warnings=warnings,
        details={"mode": mode, "grade": grade, "total_drop_mm": total_drop},
    )


def _coincident_followers(graph: Graph, targets: Dict[NodeId, float], config: SolverConfig) -> Dict[NodeId, float]:
    """Nodes sitting on top of a moved node before the move, mapped to that node's new Y."""

    followers: Dict[NodeId, float] = {}
    others = [node for node in graph.all_nodes() if node.id not in targets]
    for node_id, y in targets.items():
        pos = graph.get_node_world_pos(node_id)
        if pos is None:
            continue
        for other in others:
            if other.id in followers:
                continue
            wx, wy, wz = other.world
            if (
                math.hypot(wx - pos[0], wz - pos[2]) <= config.coincident_xz_tol
                and abs(wy - pos[1]) <= config.coincident_y_tol
            ):
                followers[other.id] = y
    return followers


def commit(graph: Graph, result: SlopePreview, config: Optional[SolverConfig] = None) -> SlopeCommitResult:
    """Write a preview's heights into node offsets and refresh annotations around them."""

    if not result.ok:
        return SlopeCommitResult(ok=False, reason="no_preview")
    context = SolveContext.create(graph, config)
    targets = {node_id: y for node_id, y in result.target_y_by_node.items() if node_id in graph}
    targets.update(_coincident_followers(graph, targets, context.config))

    moved: List[NodeId] = []
    for node_id, y in targets.items():
        pos = graph.get_node_world_pos(node_id)
        if pos is None:
            raise GraphError(f"unknown node '{node_id}'")
        if abs(pos[1] - y) > context.config.coincident_y_tol:
            moved.append(node_id)
        graph.set_node_world_y(node_id, y)

    around: Dict[NodeId, None] = {}
    for node_id in moved:
        around.setdefault(node_id, None)
        for _, other in graph.neighbors(node_id, "center"):
            around.setdefault(other, None)

    topology = classify_and_store_many(graph, around)
    stress_changed = evaluate_node_stress(graph, around) if around else []
    logger.info("Slope committed: %d node(s) moved", len(moved))
    return SlopeCommitResult(
        ok=True,
        path=list(result.path),
        affected_edges=list(result.affected_edges),
        moved_nodes=moved,
        topology_changed=[item.node_id for item in topology if item.changed],
        stress_changed=stress_changed,
    )


apply_debug_logging(globals(), logger=logger, skip={"_has_horizontal"})


__all__ = [
    "Section",
    "SpanDrop",
    "build_sections",
    "commit",
    "manhattan_path",
    "map_riser_column",
    "plan_span_drops",
    "preview",
]
