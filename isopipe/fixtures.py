"""JSON node/edge fixtures.

A fixture is ``{"nodes": [...], "edges": [...]}`` using the camelCase keys of
the sketching front end::

    {"id": "n2", "base": {"x": 0, "y": 100, "z": 0},
     "meta": {"isAnchor": false, "onSegment": {"a": "n1", "b": "n3"}}}
    {"id": "e1", "a": "n1", "b": "n2", "kind": "center",
     "dim": {"valueMm": 100, "source": "user", "userEditedAt": 1},
     "meta": {"axisLock": "Y"}}

Unknown meta keys are kept in ``meta.extra`` and written back by
:func:`dump_graph`.
"""

from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .constraints import (
    AngleTo,
    AxisLock,
    ByEdges,
    ByEdgeUp,
    ByNormal,
    Constraint,
    Coplanar,
    ParallelTo,
    PerpTo,
    PlaneRef,
    is_axis,
)
from .graph import Conflict, Dimension, Edge, EdgeMeta, Graph, GraphError, Node, NodeMeta, Vec3

logger = logging.getLogger(__name__)

_NODE_META_KEYS = {"isAnchor", "onSegment", "topo", "tee", "planeRef"}
_EDGE_META_KEYS = {"axisLock", "parallelTo", "perpTo", "angleTo", "coplanarWith"}
_TOPOLOGIES = {"endpoint", "straight", "bend", "tee", "junction"}


class FixtureError(ValueError):
    """Raised for fixtures that cannot be turned into a graph."""


def _vec3(value: Any, *, what: str) -> Vec3:
    if value is None:
        return (0.0, 0.0, 0.0)
    if isinstance(value, Mapping):
        value = [value.get("x", 0.0), value.get("y", 0.0), value.get("z", 0.0)]
    if not isinstance(value, (list, tuple)) or len(value) != 3:
        raise FixtureError(f"invalid {what} {value!r}")
    try:
        coords = tuple(float(c) for c in value)
    except (TypeError, ValueError) as exc:
        raise FixtureError(f"invalid {what} {value!r}") from exc
    if not all(math.isfinite(c) for c in coords):
        raise FixtureError(f"non-finite {what} {value!r}")
    return coords  # type: ignore[return-value]


def _ref(payload: Any, *, what: str) -> Optional[str]:
    if isinstance(payload, str) or payload is None:
        return payload
    if isinstance(payload, Mapping):
        ref = payload.get("ref")
        if ref is None or isinstance(ref, str):
            return ref
    raise FixtureError(f"invalid {what} payload {payload!r}")


def parse_plane_ref(payload: Any) -> PlaneRef:
    if not isinstance(payload, Mapping):
        raise FixtureError(f"invalid plane reference {payload!r}")
    kind = payload.get("type")
    if kind == "byEdges":
        refs = payload.get("refs") or []
        if not isinstance(refs, (list, tuple)):
            raise FixtureError(f"invalid byEdges refs {refs!r}")
        first = refs[0] if len(refs) > 0 else None
        second = refs[1] if len(refs) > 1 else None
        return ByEdges(first, second)
    if kind == "byEdgeUp":
        return ByEdgeUp(payload.get("ref"))
    if kind == "byNormal":
        return ByNormal(_vec3(payload.get("n", payload.get("normal")), what="plane normal"))
    raise FixtureError(f"unknown plane reference type {kind!r}")


def dump_plane_ref(plane: PlaneRef) -> Dict[str, Any]:
    if isinstance(plane, ByEdges):
        return {"type": "byEdges", "refs": [plane.first, plane.second]}
    if isinstance(plane, ByEdgeUp):
        return {"type": "byEdgeUp", "ref": plane.ref}
    return {"type": "byNormal", "n": list(plane.normal)}


def _parse_constraints(meta: Mapping[str, Any]) -> Tuple[Constraint, ...]:
    items: List[Constraint] = []
    axis = meta.get("axisLock")
    if axis is not None:
        axis = str(axis).upper()
        if not is_axis(axis):
            raise FixtureError(f"invalid axisLock {meta.get('axisLock')!r}")
        items.append(AxisLock(axis))  # type: ignore[arg-type]
    if "angleTo" in meta:
        payload = meta["angleTo"]
        deg = payload.get("deg", 0.0) if isinstance(payload, Mapping) else 0.0
        try:
            items.append(AngleTo(_ref(payload, what="angleTo"), float(deg)))
        except (TypeError, ValueError) as exc:
            raise FixtureError(f"invalid angleTo degrees {deg!r}") from exc
    if "perpTo" in meta:
        items.append(PerpTo(_ref(meta["perpTo"], what="perpTo")))
    if "parallelTo" in meta:
        items.append(ParallelTo(_ref(meta["parallelTo"], what="parallelTo")))
    if meta.get("coplanarWith") is not None:
        items.append(Coplanar(parse_plane_ref(meta["coplanarWith"])))
    return tuple(items)


def _parse_dim(payload: Any, edge_id: str) -> Optional[Dimension]:
    if payload is None:
        return None
    if not isinstance(payload, Mapping):
        raise FixtureError(f"invalid dim for edge '{edge_id}': {payload!r}")
    value = payload.get("valueMm")
    if value is not None:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise FixtureError(f"invalid valueMm for edge '{edge_id}': {value!r}")
        if not math.isfinite(value) or value <= 0:
            raise FixtureError(f"valueMm must be finite and > 0 for edge '{edge_id}', got {value!r}")
    source = payload.get("source") or ("user" if value is not None else "derived")
    if source not in ("user", "derived"):
        raise FixtureError(f"invalid dim source for edge '{edge_id}': {source!r}")
    stamp = payload.get("userEditedAt")
    valid_stamp = isinstance(stamp, (int, float)) and not isinstance(stamp, bool) and math.isfinite(stamp)
    if stamp is not None and not valid_stamp:
        raise FixtureError(f"invalid userEditedAt for edge '{edge_id}': {stamp!r}")
    conflict = None
    raw_conflict = payload.get("conflict")
    if isinstance(raw_conflict, Mapping):
        conflict = Conflict(delta_mm=raw_conflict.get("deltaMm"), reason=raw_conflict.get("reason"))
    return Dimension(
        value_mm=float(value) if value is not None else None,
        source=source,
        mode=payload.get("mode") or "aligned",
        conflict=conflict,
        user_edited_at=stamp,
        label=payload.get("label"),
    )


def _parse_node_meta(payload: Any, node_id: str) -> NodeMeta:
    if payload is None:
        return NodeMeta()
    if not isinstance(payload, Mapping):
        raise FixtureError(f"invalid meta for node '{node_id}': {payload!r}")
    meta = NodeMeta(is_anchor=bool(payload.get("isAnchor", False)))
    segment = payload.get("onSegment")
    if segment is not None:
        if not isinstance(segment, Mapping) or not segment.get("a") or not segment.get("b"):
            raise FixtureError(f"invalid onSegment for node '{node_id}': {segment!r}")
        meta.on_segment = (str(segment["a"]), str(segment["b"]))
    topo = payload.get("topo")
    if topo is not None:
        if topo not in _TOPOLOGIES:
            raise FixtureError(f"invalid topo for node '{node_id}': {topo!r}")
        meta.topo = topo
    tee = payload.get("tee")
    plane = tee.get("planeRef") if isinstance(tee, Mapping) else None
    plane = plane if plane is not None else payload.get("planeRef")
    if plane is not None:
        meta.plane_ref = parse_plane_ref(plane)
    meta.extra = {key: value for key, value in payload.items() if key not in _NODE_META_KEYS}
    return meta


def load_graph_from_json(payload: Union[str, Mapping[str, Any]]) -> Graph:
    """Build a :class:`Graph` from a fixture dict or its JSON text."""

    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise FixtureError(f"fixture is not valid JSON: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise FixtureError(f"fixture must be an object, got {type(payload).__name__}")

    nodes = payload.get("nodes") or []
    edges = payload.get("edges") or []
    if not isinstance(nodes, list) or not isinstance(edges, list):
        raise FixtureError("fixture 'nodes' and 'edges' must be lists")

    graph = Graph()
    try:
        for raw in nodes:
            if not isinstance(raw, Mapping) or not isinstance(raw.get("id"), str):
                raise FixtureError(f"invalid node entry {raw!r}")
            node_id = raw["id"]
            graph.add_node(
                _vec3(raw.get("base"), what=f"base of node '{node_id}'"),
                node_id=node_id,
                offset=_vec3(raw.get("offset"), what=f"offset of node '{node_id}'"),
                meta=_parse_node_meta(raw.get("meta"), node_id),
            )
        for raw in edges:
            if not isinstance(raw, Mapping) or not isinstance(raw.get("id"), str):
                raise FixtureError(f"invalid edge entry {raw!r}")
            edge_id = raw["id"]
            meta = raw.get("meta") or {}
            if not isinstance(meta, Mapping):
                raise FixtureError(f"invalid meta for edge '{edge_id}': {meta!r}")
            graph.add_edge(
                raw.get("a"),
                raw.get("b"),
                raw.get("kind") or "center",
                edge_id=edge_id,
                dim=_parse_dim(raw.get("dim"), edge_id),
                meta=EdgeMeta(
                    constraints=_parse_constraints(meta),
                    extra={key: value for key, value in meta.items() if key not in _EDGE_META_KEYS},
                ),
            )
    except GraphError as exc:
        raise FixtureError(str(exc)) from exc

    logger.info("Loaded fixture with %d nodes and %d edges", len(graph.all_nodes()), len(graph.all_edges()))
    return graph


def load_graph_from_path(path: Union[str, Path]) -> Graph:
    path = Path(path)
    logger.debug("Reading fixture %s", path)
    return load_graph_from_json(path.read_text(encoding="utf-8"))


def _dump_node(node: Node) -> Dict[str, Any]:
    meta: Dict[str, Any] = dict(node.meta.extra)
    if node.meta.is_anchor:
        meta["isAnchor"] = True
    if node.meta.on_segment is not None:
        meta["onSegment"] = {"a": node.meta.on_segment[0], "b": node.meta.on_segment[1]}
    if node.meta.topo is not None:
        meta["topo"] = node.meta.topo
    if node.meta.plane_ref is not None:
        meta["tee"] = {"planeRef": dump_plane_ref(node.meta.plane_ref)}
    entry: Dict[str, Any] = {"id": node.id, "base": list(node.base), "meta": meta}
    if any(node.offset):
        entry["offset"] = list(node.offset)
    return entry


def _dump_dim(dim: Optional[Dimension]) -> Optional[Dict[str, Any]]:
    if dim is None:
        return None
    out: Dict[str, Any] = {"valueMm": dim.value_mm, "source": dim.source, "mode": dim.mode}
    if dim.user_edited_at is not None:
        out["userEditedAt"] = dim.user_edited_at
    if dim.label is not None:
        out["label"] = dim.label
    if dim.conflict is not None:
        out["conflict"] = {"deltaMm": dim.conflict.delta_mm, "reason": dim.conflict.reason}
    return out


def _dump_edge(edge: Edge) -> Dict[str, Any]:
    meta: Dict[str, Any] = dict(edge.meta.extra)
    for item in edge.meta.constraints:
        if isinstance(item, AxisLock):
            meta["axisLock"] = item.axis
        elif isinstance(item, AngleTo):
            meta["angleTo"] = {"ref": item.ref, "deg": item.deg}
        elif isinstance(item, PerpTo):
            meta["perpTo"] = {"ref": item.ref}
        elif isinstance(item, ParallelTo):
            meta["parallelTo"] = {"ref": item.ref}
        elif isinstance(item, Coplanar):
            meta["coplanarWith"] = dump_plane_ref(item.plane)
    return {
        "id": edge.id,
        "a": edge.a,
        "b": edge.b,
        "kind": edge.kind,
        "dim": _dump_dim(edge.dim),
        "meta": meta,
    }


def dump_graph(graph: Graph) -> Dict[str, Any]:
    """Inverse of :func:`load_graph_from_json` (classifier side data is not written)."""

    return {
        "nodes": [_dump_node(node) for node in graph.all_nodes()],
        "edges": [_dump_edge(edge) for edge in graph.all_edges()],
    }


__all__ = [
    "FixtureError",
    "dump_graph",
    "dump_plane_ref",
    "load_graph_from_json",
    "load_graph_from_path",
    "parse_plane_ref",
]
