"""Solver façade: solvability, metric placement, reactive engines and slope."""

from __future__ import annotations

import logging
from typing import Optional, Tuple

from ..graph import Graph
from ..trace import TraceSink
from . import slope
from .calculator import MetricPlacement, solve
from .config import get_solver_config, set_solver_config
from .context import ReentrancyGuard, SolveContext
from .model import (
    SLOPE_MODES,
    SOLVABILITY_REASONS,
    CoordinateMap,
    SlopeCommitResult,
    SlopeMode,
    SlopePreview,
    SlopeWarning,
    SolvabilityReason,
    SolvabilityResult,
    SolverConfig,
)
from .reactive import ReactiveSolver
from .solvability import check_solvable, is_solvable
from .triangles import RightTriangle, TriangleEngine, find_triangles_touching_edge

logger = logging.getLogger(__name__)


def attach_solvers(
    graph: Graph,
    config: Optional[SolverConfig] = None,
    sink: Optional[TraceSink] = None,
) -> Tuple[ReactiveSolver, TriangleEngine]:
    """Create and attach both change-driven engines to ``graph``.

    The reactive solver subscribes first, so it sees each edit before the
    triangle engine does.
    """

    reactive = ReactiveSolver(graph, config, sink)
    triangles = TriangleEngine(graph, config, sink)
    reactive.attach()
    triangles.attach()
    logger.info("Attached reactive solver and triangle engine to graph with %d nodes", len(graph))
    return reactive, triangles


def preview_slope(graph: Graph, a: str, b: str, grade: float, **kwargs) -> SlopePreview:
    return slope.preview(graph, a, b, grade, **kwargs)


def commit_slope(graph: Graph, preview: SlopePreview, config: Optional[SolverConfig] = None) -> SlopeCommitResult:
    return slope.commit(graph, preview, config)


__all__ = [
    "CoordinateMap",
    "MetricPlacement",
    "ReactiveSolver",
    "ReentrancyGuard",
    "RightTriangle",
    "SLOPE_MODES",
    "SOLVABILITY_REASONS",
    "SlopeCommitResult",
    "SlopeMode",
    "SlopePreview",
    "SlopeWarning",
    "SolvabilityReason",
    "SolvabilityResult",
    "SolveContext",
    "SolverConfig",
    "TriangleEngine",
    "attach_solvers",
    "check_solvable",
    "commit_slope",
    "find_triangles_touching_edge",
    "get_solver_config",
    "is_solvable",
    "preview_slope",
    "set_solver_config",
    "slope",
    "solve",
]
