from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional

from ..graph import Dimension, EdgeId, Graph, NodeId, Vec3
from ..trace import LoggingTraceSink, TraceSink, emit
from .config import resolve_config
from .model import SolverConfig

logger = logging.getLogger(__name__)


class ReentrancyGuard:
    """Flag marking that the owning engine is writing to the graph itself."""

    def __init__(self) -> None:
        self._depth = 0

    @property
    def active(self) -> bool:
        return self._depth > 0

    @contextmanager
    def suppressed(self) -> Iterator[None]:
        self._depth += 1
        try:
            yield
        finally:
            self._depth -= 1


@dataclass
class SolveContext:
    """Everything one engine needs for a solve pass: graph, settings, scratch state."""

    graph: Graph
    config: SolverConfig
    sink: TraceSink
    guard: ReentrancyGuard = field(default_factory=ReentrancyGuard)
    metric: Dict[NodeId, Vec3] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        graph: Graph,
        config: Optional[SolverConfig] = None,
        sink: Optional[TraceSink] = None,
    ) -> "SolveContext":
        return cls(graph=graph, config=resolve_config(config), sink=sink or LoggingTraceSink())

    def trace(self, event: str, **data: Any) -> None:
        emit(self.sink, event, **data)

    def write_dimension(self, edge_id: EdgeId, dim: Optional[Dimension], *, silent: bool = False) -> None:
        """Write through the graph while this context's listeners are muted."""

        with self.guard.suppressed():
            self.graph.set_edge_dimension(edge_id, dim, silent=silent)
