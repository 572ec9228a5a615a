"""Recipe graph: nodes, edges, adjacency and dimension change events."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterable, List, Literal, Optional, Sequence, Tuple

from .constraints import Constraint, DirectionalConstraint, PlaneRef, coplanar_plane, directional

logger = logging.getLogger(__name__)

Vec3 = Tuple[float, float, float]
NodeId = str
EdgeId = str
EdgeKind = Literal["center", "construction"]
DimSource = Literal["user", "derived"]
Topology = Literal["endpoint", "straight", "bend", "tee", "junction"]

EDGE_KINDS: Tuple[str, ...] = ("center", "construction")
ORIGIN: Vec3 = (0.0, 0.0, 0.0)

DimensionListener = Callable[[EdgeId], None]


class GraphError(ValueError):
    """Raised when an editing operation references unknown or invalid graph items."""


@dataclass
class Conflict:
    """Measurement/geometry disagreement recorded on an edge."""

    delta_mm: Optional[float] = None
    reason: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Dimension:
    value_mm: Optional[float] = None
    source: DimSource = "derived"
    mode: str = "aligned"
    conflict: Optional[Conflict] = None
    user_edited_at: Optional[float] = None
    label: Optional[str] = None
    derived_from: Optional[Dict[str, Any]] = None

    @property
    def has_value(self) -> bool:
        """``True`` when ``value_mm`` is a finite, strictly positive length."""

        value = self.value_mm
        return isinstance(value, (int, float)) and math.isfinite(value) and value > 0

    @property
    def is_user(self) -> bool:
        return self.source == "user"

    def evolve(self, **changes: Any) -> "Dimension":
        return replace(self, **changes)


@dataclass
class TeeInfo:
    runner: Tuple[EdgeId, EdgeId]
    branch: EdgeId
    colinearity: float


@dataclass
class NodeMeta:
    is_anchor: bool = False
    topo: Optional[Topology] = None
    on_segment: Optional[Tuple[NodeId, NodeId]] = None
    plane_ref: Optional[PlaneRef] = None
    degree_center: Optional[int] = None
    risers: List[EdgeId] = field(default_factory=list)
    riser_role: Optional[str] = None
    tee: Optional[TeeInfo] = None
    bend_angle_rad: Optional[float] = None
    stress: Optional[Dict[str, Any]] = None
    special: Optional[Dict[str, Any]] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class EdgeMeta:
    constraints: Tuple[Constraint, ...] = ()
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def direction(self) -> Optional[DirectionalConstraint]:
        return directional(self.constraints)

    @property
    def plane(self) -> Optional[PlaneRef]:
        return coplanar_plane(self.constraints)


@dataclass
class Node:
    id: NodeId
    base: Vec3 = ORIGIN
    offset: Vec3 = ORIGIN
    meta: NodeMeta = field(default_factory=NodeMeta)

    @property
    def world(self) -> Vec3:
        return (
            self.base[0] + self.offset[0],
            self.base[1] + self.offset[1],
            self.base[2] + self.offset[2],
        )


@dataclass
class Edge:
    id: EdgeId
    a: NodeId
    b: NodeId
    kind: EdgeKind = "center"
    dim: Optional[Dimension] = None
    meta: EdgeMeta = field(default_factory=EdgeMeta)

    def other(self, node_id: NodeId) -> NodeId:
        return self.b if self.a == node_id else self.a

    def touches(self, node_id: NodeId) -> bool:
        return self.a == node_id or self.b == node_id

    def joins(self, first: NodeId, second: NodeId) -> bool:
        return (self.a == first and self.b == second) or (self.a == second and self.b == first)


def has_dim(edge: Optional[Edge]) -> bool:
    """Return ``True`` when ``edge`` carries a usable length of any source."""

    return edge is not None and edge.dim is not None and edge.dim.has_value


def has_user_dim(edge: Optional[Edge]) -> bool:
    return has_dim(edge) and edge.dim.is_user  # type: ignore[union-attr]


class Graph:
    """Mutable recipe graph with insertion-ordered adjacency."""

    def __init__(self) -> None:
        self._nodes: Dict[NodeId, Node] = {}
        self._edges: Dict[EdgeId, Edge] = {}
        self._adj: Dict[NodeId, List[EdgeId]] = {}
        self._listeners: List[DimensionListener] = []
        self._node_seq = 1
        self._edge_seq = 1

    # ------------------------------------------------------------------ nodes
    def _next_node_id(self) -> NodeId:
        while f"n{self._node_seq}" in self._nodes:
            self._node_seq += 1
        node_id = f"n{self._node_seq}"
        self._node_seq += 1
        return node_id

    def _next_edge_id(self) -> EdgeId:
        while f"e{self._edge_seq}" in self._edges:
            self._edge_seq += 1
        edge_id = f"e{self._edge_seq}"
        self._edge_seq += 1
        return edge_id

    def add_node(
        self,
        pos: Sequence[float] = ORIGIN,
        *,
        node_id: Optional[NodeId] = None,
        meta: Optional[NodeMeta] = None,
        offset: Sequence[float] = ORIGIN,
    ) -> Node:
        if node_id is None:
            node_id = self._next_node_id()
        elif node_id in self._nodes:
            raise GraphError(f"node '{node_id}' already exists")
        node = Node(
            id=node_id,
            base=_as_vec3(pos),
            offset=_as_vec3(offset),
            meta=meta if meta is not None else NodeMeta(),
        )
        self._nodes[node_id] = node
        self._adj.setdefault(node_id, [])
        return node

    def remove_node(self, node_id: NodeId) -> None:
        if node_id not in self._nodes:
            raise GraphError(f"unknown node '{node_id}'")
        for edge_id in list(self._adj.get(node_id, [])):
            self.remove_edge(edge_id)
        del self._nodes[node_id]
        self._adj.pop(node_id, None)

    def get_node(self, node_id: NodeId) -> Optional[Node]:
        return self._nodes.get(node_id)

    def all_nodes(self) -> List[Node]:
        return list(self._nodes.values())

    def node_ids(self) -> List[NodeId]:
        return list(self._nodes)

    def anchors(self) -> List[Node]:
        return [node for node in self._nodes.values() if node.meta.is_anchor]

    def get_node_world_pos(self, node_id: NodeId) -> Optional[Vec3]:
        node = self._nodes.get(node_id)
        return node.world if node is not None else None

    def set_node_world_y(self, node_id: NodeId, y: float) -> None:
        """Move a node vertically by changing only its offset."""

        node = self._nodes.get(node_id)
        if node is None:
            raise GraphError(f"unknown node '{node_id}'")
        current = node.base[1] + node.offset[1]
        node.offset = (node.offset[0], node.offset[1] + (y - current), node.offset[2])

    def find_node_near(self, pos: Sequence[float], tol: float = 1e-4) -> Optional[Node]:
        target = _as_vec3(pos)
        best: Optional[Node] = None
        best_d2 = tol * tol
        for node in self._nodes.values():
            wx, wy, wz = node.world
            d2 = (wx - target[0]) ** 2 + (wy - target[1]) ** 2 + (wz - target[2]) ** 2
            if d2 <= best_d2:
                best_d2 = d2
                best = node
        return best

    # ------------------------------------------------------------------ edges
    def add_edge(
        self,
        a: NodeId,
        b: NodeId,
        kind: EdgeKind = "center",
        *,
        edge_id: Optional[EdgeId] = None,
        dim: Optional[Dimension] = None,
        meta: Optional[EdgeMeta] = None,
    ) -> Edge:
        if a == b:
            raise GraphError(f"edge endpoints must differ (got '{a}' twice)")
        for endpoint in (a, b):
            if endpoint not in self._nodes:
                raise GraphError(f"unknown node '{endpoint}'")
        if kind not in EDGE_KINDS:
            raise GraphError(f"edge kind must be one of {EDGE_KINDS}, got '{kind}'")
        if dim is not None and dim.value_mm is not None and not dim.has_value:
            raise GraphError(f"edge length must be finite and > 0, got {dim.value_mm!r}")
        if edge_id is None:
            edge_id = self._next_edge_id()
        elif edge_id in self._edges:
            raise GraphError(f"edge '{edge_id}' already exists")
        edge = Edge(id=edge_id, a=a, b=b, kind=kind, dim=dim, meta=meta if meta is not None else EdgeMeta())
        self._edges[edge_id] = edge
        self._adj[a].append(edge_id)
        self._adj[b].append(edge_id)
        return edge

    def remove_edge(self, edge_id: EdgeId) -> None:
        edge = self._edges.pop(edge_id, None)
        if edge is None:
            raise GraphError(f"unknown edge '{edge_id}'")
        for endpoint in (edge.a, edge.b):
            bag = self._adj.get(endpoint)
            if bag is not None and edge_id in bag:
                bag.remove(edge_id)

    def get_edge(self, edge_id: EdgeId) -> Optional[Edge]:
        return self._edges.get(edge_id)

    def all_edges(self) -> List[Edge]:
        return list(self._edges.values())

    def incident_edges(self, node_id: NodeId, kind: Optional[str] = None) -> List[Edge]:
        out: List[Edge] = []
        for edge_id in self._adj.get(node_id, ()):
            edge = self._edges.get(edge_id)
            if edge is None:
                continue
            if kind is not None and edge.kind != kind:
                continue
            out.append(edge)
        return out

    def neighbors(self, node_id: NodeId, kind: Optional[str] = None) -> List[Tuple[Edge, NodeId]]:
        return [(edge, edge.other(node_id)) for edge in self.incident_edges(node_id, kind)]

    def edge_between(self, a: NodeId, b: NodeId, kind: Optional[str] = None) -> Optional[Edge]:
        for edge in self.incident_edges(a, kind):
            if edge.joins(a, b):
                return edge
        return None

    def collect_affected_edges(
        self, node_ids: Iterable[NodeId], kinds: Sequence[str] = ("center",)
    ) -> List[EdgeId]:
        seen: Dict[EdgeId, None] = {}
        for node_id in node_ids:
            for edge in self.incident_edges(node_id):
                if kinds and edge.kind not in kinds:
                    continue
                seen.setdefault(edge.id, None)
        return list(seen)

    # ------------------------------------------------------------- dimensions
    def set_edge_dimension(
        self, edge_id: EdgeId, dim: Optional[Dimension], *, silent: bool = False
    ) -> None:
        """Store ``dim`` on the edge and notify listeners unless ``silent``."""

        edge = self._edges.get(edge_id)
        if edge is None:
            raise GraphError(f"unknown edge '{edge_id}'")
        edge.dim = dim
        logger.debug(
            "set_edge_dimension %s value=%s source=%s silent=%s",
            edge_id,
            dim.value_mm if dim is not None else None,
            dim.source if dim is not None else None,
            silent,
        )
        if silent:
            return
        for listener in list(self._listeners):
            listener(edge_id)

    def on_edge_dimension_changed(self, callback: DimensionListener) -> Callable[[], None]:
        """Register ``callback``; the returned callable unsubscribes it."""

        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes


def _as_vec3(value: Sequence[float]) -> Vec3:
    if len(value) != 3:
        raise GraphError(f"expected a 3D position, got {value!r}")
    return (float(value[0]), float(value[1]), float(value[2]))


__all__ = [
    "Conflict",
    "DimSource",
    "Dimension",
    "DimensionListener",
    "EDGE_KINDS",
    "Edge",
    "EdgeId",
    "EdgeKind",
    "EdgeMeta",
    "Graph",
    "GraphError",
    "Node",
    "NodeId",
    "NodeMeta",
    "ORIGIN",
    "TeeInfo",
    "Topology",
    "Vec3",
    "has_dim",
    "has_user_dim",
]
