"""Tagged unions describing edge constraints and plane references."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Literal, Optional, Tuple, Union

Axis = Literal["X", "Y", "Z"]
AXES: Tuple[Axis, ...] = ("X", "Y", "Z")


@dataclass(frozen=True)
class ByEdges:
    """Plane spanned by the resolved directions of two edges."""

    first: Optional[str]
    second: Optional[str]


@dataclass(frozen=True)
class ByEdgeUp:
    """Vertical-ish plane containing an edge and the global up axis."""

    ref: Optional[str]


@dataclass(frozen=True)
class ByNormal:
    normal: Tuple[float, float, float]


PlaneRef = Union[ByEdges, ByEdgeUp, ByNormal]


@dataclass(frozen=True)
class AxisLock:
    axis: Axis


@dataclass(frozen=True)
class ParallelTo:
    ref: Optional[str]


@dataclass(frozen=True)
class PerpTo:
    ref: Optional[str]


@dataclass(frozen=True)
class AngleTo:
    ref: Optional[str]
    deg: float = 0.0


@dataclass(frozen=True)
class Coplanar:
    plane: PlaneRef


Constraint = Union[AxisLock, ParallelTo, PerpTo, AngleTo, Coplanar]
DirectionalConstraint = Union[AxisLock, ParallelTo, PerpTo, AngleTo]

# Resolution order used when an edge carries more than one directional constraint.
DIRECTION_PRIORITY: Tuple[type, ...] = (AxisLock, AngleTo, PerpTo, ParallelTo)
RELATIVE_CONSTRAINTS: Tuple[type, ...] = (ParallelTo, PerpTo, AngleTo)
PLANE_CONSTRAINTS: Tuple[type, ...] = (PerpTo, AngleTo)


def is_axis(value: object) -> bool:
    return isinstance(value, str) and value in AXES


def directional(constraints: Iterable[Constraint]) -> Optional[DirectionalConstraint]:
    """Return the highest-priority directional constraint, if any."""

    items = list(constraints)
    for kind in DIRECTION_PRIORITY:
        for item in items:
            if isinstance(item, kind):
                return item  # type: ignore[return-value]
    return None


def coplanar_plane(constraints: Iterable[Constraint]) -> Optional[PlaneRef]:
    for item in constraints:
        if isinstance(item, Coplanar):
            return item.plane
    return None


def referenced_edges(constraint: Constraint) -> Tuple[Optional[str], ...]:
    """Edge ids a constraint depends on (``None`` marks a missing reference)."""

    if isinstance(constraint, (ParallelTo, PerpTo, AngleTo)):
        return (constraint.ref,)
    if isinstance(constraint, Coplanar):
        plane = constraint.plane
        if isinstance(plane, ByEdges):
            return (plane.first, plane.second)
        if isinstance(plane, ByEdgeUp):
            return (plane.ref,)
    return ()


__all__ = [
    "AXES",
    "AngleTo",
    "Axis",
    "AxisLock",
    "ByEdgeUp",
    "ByEdges",
    "ByNormal",
    "Constraint",
    "Coplanar",
    "DIRECTION_PRIORITY",
    "DirectionalConstraint",
    "PLANE_CONSTRAINTS",
    "ParallelTo",
    "PerpTo",
    "PlaneRef",
    "RELATIVE_CONSTRAINTS",
    "coplanar_plane",
    "directional",
    "is_axis",
    "referenced_edges",
]
