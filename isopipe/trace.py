"""Structured trace records emitted by the solvers.

Solvers never print.  They hand :class:`TraceRecord` objects to a sink; the
default sink forwards them to :mod:`logging`, tests use
:class:`CollectingTraceSink` to assert on them.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from .graph import EdgeId, Graph, NodeId, Vec3
from .logging_utils import safe_repr

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TraceRecord:
    event: str
    data: Dict[str, Any] = field(default_factory=dict)


class TraceSink(Protocol):
    def emit(self, record: TraceRecord) -> None:
        ...


class LoggingTraceSink:
    """Forward trace records to a logger (DEBUG by default)."""

    def __init__(self, target: Optional[logging.Logger] = None, level: int = logging.DEBUG) -> None:
        self.logger = target or logger
        self.level = level

    def emit(self, record: TraceRecord) -> None:
        if not self.logger.isEnabledFor(self.level):
            return
        self.logger.log(self.level, "[trace] %s %s", record.event, safe_repr(record.data, max_items=12))
        for table_name in ("nodes", "edges"):
            rows = record.data.get(table_name)
            if isinstance(rows, list):
                for row in rows:
                    self.logger.log(self.level, "[trace]   %s %s", table_name[:-1], safe_repr(row, max_items=12))


class CollectingTraceSink:
    def __init__(self) -> None:
        self.records: List[TraceRecord] = []

    def emit(self, record: TraceRecord) -> None:
        self.records.append(record)

    def events(self, name: Optional[str] = None) -> List[TraceRecord]:
        if name is None:
            return list(self.records)
        return [record for record in self.records if record.event == name]

    def clear(self) -> None:
        self.records.clear()


class NullTraceSink:
    def emit(self, record: TraceRecord) -> None:
        return None


def emit(sink: Optional[TraceSink], event: str, **data: Any) -> None:
    if sink is None:
        return
    sink.emit(TraceRecord(event=event, data=data))


def _round(value: Optional[float], digits: int = 3) -> Optional[float]:
    if value is None or not math.isfinite(value):
        return None
    return round(value, digits)


def component_snapshot(
    graph: Graph,
    node_ids: Sequence[NodeId],
    edge_ids: Iterable[EdgeId],
    metric: Optional[Mapping[NodeId, Vec3]] = None,
) -> Dict[str, List[Dict[str, Any]]]:
    """Tabular view of a component: working metric next to the schematic hint."""

    metric = metric or {}
    nodes: List[Dict[str, Any]] = []
    for node_id in node_ids:
        world = graph.get_node_world_pos(node_id)
        solved = metric.get(node_id)
        nodes.append(
            {
                "id": node_id,
                "known": solved is not None,
                "metric": tuple(_round(c) for c in solved) if solved is not None else None,
                "world": tuple(_round(c) for c in world) if world is not None else None,
            }
        )

    edges: List[Dict[str, Any]] = []
    for edge_id in edge_ids:
        edge = graph.get_edge(edge_id)
        if edge is None:
            continue
        start = metric.get(edge.a)
        end = metric.get(edge.b)
        length = math.dist(start, end) if start is not None and end is not None else None
        dim = edge.dim
        edges.append(
            {
                "id": edge_id,
                "kind": edge.kind,
                "a": edge.a,
                "b": edge.b,
                "metric_len": _round(length),
                "value_mm": _round(dim.value_mm) if dim is not None else None,
                "source": dim.source if dim is not None else None,
                "user_edited_at": dim.user_edited_at if dim is not None else None,
                "conflict": bool(dim is not None and dim.conflict is not None),
            }
        )
    return {"nodes": nodes, "edges": edges}


__all__ = [
    "CollectingTraceSink",
    "LoggingTraceSink",
    "NullTraceSink",
    "TraceRecord",
    "TraceSink",
    "component_snapshot",
    "emit",
]
