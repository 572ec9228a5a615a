"""Orientation-independent topology classification of nodes.

Classification looks only at centre edges and at schematic (world) directions:

* degree 1: ``endpoint`` (with a riser role when the pipe leaves vertically),
* degree 2: ``straight`` when the two directions are antiparallel, else ``bend``,
* degree 3: ``tee`` when one pair is clearly the runner and the third edge is
  orthogonal to it, otherwise ``junction``,
* degree 4 and above: ``junction``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from .graph import EdgeId, Graph, GraphError, NodeId, TeeInfo, Topology

logger = logging.getLogger(__name__)

EPS = 1e-9
HORIZ_EPS = 1e-9
DOT_COLINEAR_MIN = 0.999
DOT_ORTHO_MAX = 0.05
TIE_MARGIN = 0.003
VERTICAL_DOT = 0.999


@dataclass
class EdgeDirection:
    edge_id: EdgeId
    vector: np.ndarray
    length: float
    horizontal: float


@dataclass
class TopologyInfo:
    topo: Topology
    degree_center: int
    risers: List[EdgeId] = field(default_factory=list)
    riser_role: Optional[str] = None
    runner: Optional[Tuple[EdgeId, EdgeId]] = None
    branch: Optional[EdgeId] = None
    colinearity: Optional[float] = None
    bend_angle_rad: Optional[float] = None
    notes: List[str] = field(default_factory=list)


@dataclass
class ClassifyResult:
    node_id: NodeId
    changed: bool
    previous: Optional[str]
    info: TopologyInfo


def edge_direction(graph: Graph, edge_id: EdgeId, at_node: NodeId) -> Optional[EdgeDirection]:
    """Unit world direction of ``edge_id`` pointing away from ``at_node``."""

    edge = graph.get_edge(edge_id)
    if edge is None:
        return None
    start = graph.get_node_world_pos(edge.a)
    end = graph.get_node_world_pos(edge.b)
    if start is None or end is None:
        return None
    vec = np.asarray(end, dtype=float) - np.asarray(start, dtype=float)
    if at_node == edge.b:
        vec = -vec
    length = float(np.linalg.norm(vec))
    if length <= EPS:
        return None
    return EdgeDirection(edge_id, vec / length, length, math.hypot(float(vec[0]), float(vec[2])))


def is_riser_edge(graph: Graph, edge_id: EdgeId) -> bool:
    edge = graph.get_edge(edge_id)
    if edge is None:
        return False
    start = graph.get_node_world_pos(edge.a)
    end = graph.get_node_world_pos(edge.b)
    if start is None or end is None:
        return False
    return math.hypot(end[0] - start[0], end[2] - start[2]) <= HORIZ_EPS


def _riser_role(direction: EdgeDirection) -> Optional[str]:
    y = float(direction.vector[1])
    if y > VERTICAL_DOT:
        return "bottom"
    if y < -VERTICAL_DOT:
        return "top"
    return None


def classify_node(graph: Graph, node_id: NodeId) -> TopologyInfo:
    incident = graph.incident_edges(node_id, "center")
    degree = len(incident)
    dirs: List[EdgeDirection] = []
    risers: List[EdgeId] = []
    for edge in incident:
        direction = edge_direction(graph, edge.id, node_id)
        if direction is None:
            continue
        if direction.horizontal <= HORIZ_EPS:
            risers.append(edge.id)
        dirs.append(direction)

    if degree == 0:
        return TopologyInfo("endpoint", 0, notes=["isolated"])

    if degree == 1:
        role = _riser_role(dirs[0]) if dirs else None
        return TopologyInfo("endpoint", degree, risers, riser_role=role)

    if degree == 2:
        if len(dirs) < 2:
            return TopologyInfo("junction", degree, risers, notes=["need_two_valid_dirs"])
        dot = float(np.dot(dirs[0].vector, dirs[1].vector))
        topo: Topology = "straight" if dot <= -DOT_COLINEAR_MIN else "bend"
        return TopologyInfo(
            topo, degree, risers, bend_angle_rad=math.acos(max(-1.0, min(1.0, -dot)))
        )

    if degree == 3:
        if len(dirs) != 3:
            return TopologyInfo("junction", degree, risers, notes=["need_three_valid_dirs"])
        pairs = sorted(
            ((float(np.dot(dirs[i].vector, dirs[j].vector)), i, j) for i, j in ((0, 1), (0, 2), (1, 2))),
            key=lambda item: item[0],
        )
        best, second = pairs[0], pairs[1]
        if best[0] > -DOT_COLINEAR_MIN:
            return TopologyInfo("junction", degree, risers, notes=["no_antiparallel_pair_for_runner"])
        if abs(best[0] - second[0]) < TIE_MARGIN:
            return TopologyInfo("junction", degree, risers, notes=["ambiguous_runner_pair"])

        _, r0, r1 = best
        b = ({0, 1, 2} - {r0, r1}).pop()
        if abs(float(np.dot(dirs[b].vector, dirs[r0].vector))) > DOT_ORTHO_MAX:
            return TopologyInfo("junction", degree, risers, notes=["branch_not_orthogonal_to_runner"])

        role = None
        for direction in dirs:
            if direction.horizontal <= HORIZ_EPS:
                role = _riser_role(direction) or role
        runner = tuple(sorted((dirs[r0].edge_id, dirs[r1].edge_id)))
        return TopologyInfo(
            "tee",
            degree,
            risers,
            riser_role=role,
            runner=runner,  # type: ignore[arg-type]
            branch=dirs[b].edge_id,
            colinearity=-best[0],
        )

    return TopologyInfo("junction", degree, risers, notes=["degree_ge_4"])


def classify_and_store(graph: Graph, node_id: NodeId) -> ClassifyResult:
    node = graph.get_node(node_id)
    if node is None:
        raise GraphError(f"unknown node '{node_id}'")
    previous = node.meta.topo
    info = classify_node(graph, node_id)
    meta = node.meta
    meta.topo = info.topo
    meta.degree_center = info.degree_center
    meta.risers = list(info.risers)
    meta.riser_role = info.riser_role
    if info.topo == "tee" and info.runner is not None and info.branch is not None:
        meta.tee = TeeInfo(runner=info.runner, branch=info.branch, colinearity=info.colinearity or 0.0)
    else:
        meta.tee = None
    meta.bend_angle_rad = info.bend_angle_rad if info.topo == "bend" else None
    changed = previous != info.topo
    if changed:
        logger.debug("Node %s topology %s -> %s", node_id, previous, info.topo)
    return ClassifyResult(node_id=node_id, changed=changed, previous=previous, info=info)


def classify_and_store_many(graph: Graph, node_ids: Iterable[NodeId]) -> List[ClassifyResult]:
    return [classify_and_store(graph, node_id) for node_id in node_ids if graph.get_node(node_id) is not None]


def invalidate_around_edge(graph: Graph, edge_id: EdgeId) -> List[ClassifyResult]:
    """Re-classify both endpoints of ``edge_id`` and their centre neighbours."""

    edge = graph.get_edge(edge_id)
    if edge is None:
        return []
    near: Dict[NodeId, None] = {edge.a: None, edge.b: None}
    for node_id in (edge.a, edge.b):
        for _, other in graph.neighbors(node_id, "center"):
            near.setdefault(other, None)
    return classify_and_store_many(graph, near)


def classify_all(graph: Graph) -> List[ClassifyResult]:
    results = classify_and_store_many(graph, graph.node_ids())
    logger.info(
        "Classified %d nodes (%d changed)", len(results), sum(1 for result in results if result.changed)
    )
    return results


__all__ = [
    "ClassifyResult",
    "DOT_COLINEAR_MIN",
    "DOT_ORTHO_MAX",
    "EdgeDirection",
    "TIE_MARGIN",
    "TopologyInfo",
    "classify_all",
    "classify_and_store",
    "classify_and_store_many",
    "classify_node",
    "edge_direction",
    "invalidate_around_edge",
    "is_riser_edge",
]
