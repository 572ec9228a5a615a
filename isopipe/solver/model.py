"""Core data structures shared by the solver components."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Literal, Mapping, Optional, Tuple, TypedDict

from ..graph import EdgeId, NodeId, Vec3

SolvabilityReason = Literal[
    "anchor_count",
    "no_absolute_reference",
    "disconnected_subgraph",
    "dimension_missing",
    "ambiguous_location",
    "insufficient_constraints_at_node",
    "dimension_conflict",
]

SOLVABILITY_REASONS: Tuple[str, ...] = (
    "anchor_count",
    "no_absolute_reference",
    "disconnected_subgraph",
    "dimension_missing",
    "ambiguous_location",
    "insufficient_constraints_at_node",
    "dimension_conflict",
)

SlopeMode = Literal["balanced", "lockTop", "lockBottom"]
SLOPE_MODES: Tuple[str, ...] = ("balanced", "lockTop", "lockBottom")


@dataclass
class SolverConfig:
    """Tolerances and loop bounds used across the solvers.

    The relative ordering matters more than the exact values: structural
    checks (``structural_eps``) are tighter than geometric comparisons
    (``geometric_tol``), which are tighter than the user-facing conflict
    threshold (``user_conflict_tol_mm``).
    """

    structural_eps: float = 1e-9
    geometric_tol: float = 1e-6
    user_conflict_tol_mm: float = 0.1
    slope_eps: float = 1e-6
    coincident_xz_tol: float = 1e-4
    coincident_y_tol: float = 1e-6
    pass_bound_factor: int = 3
    pass_bound_constant: int = 10

    def pass_bound(self, edge_count: int) -> int:
        return self.pass_bound_factor * edge_count + self.pass_bound_constant


@dataclass
class SolvabilityResult:
    ok: bool
    reason: Optional[SolvabilityReason] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return self.ok


class CoordinateMap(Mapping[NodeId, Vec3]):
    """Solved node positions (mm) plus derived lengths for unmeasured edges."""

    def __init__(
        self,
        positions: Optional[Mapping[NodeId, Vec3]] = None,
        derived_edge_lengths: Optional[Mapping[EdgeId, float]] = None,
    ) -> None:
        self._positions: Dict[NodeId, Vec3] = dict(positions or {})
        self.derived_edge_lengths: Dict[EdgeId, float] = dict(derived_edge_lengths or {})

    def __getitem__(self, node_id: NodeId) -> Vec3:
        return self._positions[node_id]

    def __iter__(self) -> Iterator[NodeId]:
        return iter(self._positions)

    def __len__(self) -> int:
        return len(self._positions)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "positions": {node_id: list(pos) for node_id, pos in self._positions.items()},
            "derived_edge_lengths": dict(self.derived_edge_lengths),
        }

    def __repr__(self) -> str:
        return f"CoordinateMap(nodes={len(self._positions)}, derived={len(self.derived_edge_lengths)})"


class SlopeWarning(TypedDict, total=False):
    type: str
    edge: Tuple[NodeId, NodeId]


@dataclass
class SlopePreview:
    ok: bool
    path: List[NodeId] = field(default_factory=list)
    target_y_by_node: Dict[NodeId, float] = field(default_factory=dict)
    affected_edges: List[EdgeId] = field(default_factory=list)
    warnings: List[SlopeWarning] = field(default_factory=list)
    reason: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SlopeCommitResult:
    ok: bool
    reason: Optional[str] = None
    path: List[NodeId] = field(default_factory=list)
    affected_edges: List[EdgeId] = field(default_factory=list)
    moved_nodes: List[NodeId] = field(default_factory=list)
    topology_changed: List[NodeId] = field(default_factory=list)
    stress_changed: List[NodeId] = field(default_factory=list)


__all__ = [
    "CoordinateMap",
    "SLOPE_MODES",
    "SOLVABILITY_REASONS",
    "SlopeCommitResult",
    "SlopeMode",
    "SlopePreview",
    "SlopeWarning",
    "SolvabilityReason",
    "SolvabilityResult",
    "SolverConfig",
]
