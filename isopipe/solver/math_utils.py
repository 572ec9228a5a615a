from __future__ import annotations

import math
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from ..constraints import Axis
from ..graph import Vec3

EPS = 1e-9
UP = np.array([0.0, 1.0, 0.0])
AXIS_INDEX: Dict[str, int] = {"X": 0, "Y": 1, "Z": 2}
AXIS_VECTORS: Dict[str, np.ndarray] = {
    "X": np.array([1.0, 0.0, 0.0]),
    "Y": np.array([0.0, 1.0, 0.0]),
    "Z": np.array([0.0, 0.0, 1.0]),
}


def as_array(value: Sequence[float]) -> np.ndarray:
    return np.asarray(value, dtype=float)


def as_tuple(value: Sequence[float]) -> Vec3:
    return (float(value[0]), float(value[1]), float(value[2]))


def delta(start: Sequence[float], end: Sequence[float]) -> np.ndarray:
    return as_array(end) - as_array(start)


def norm(value: Sequence[float]) -> float:
    return float(np.linalg.norm(as_array(value)))


def distance(a: Sequence[float], b: Sequence[float]) -> float:
    return norm(delta(a, b))


def unit(value: Sequence[float], eps: float = EPS) -> Optional[np.ndarray]:
    vec = as_array(value)
    length = float(np.linalg.norm(vec))
    if length <= eps or not math.isfinite(length):
        return None
    return vec / length


def dominant_axis(value: Sequence[float], eps: float = EPS) -> Optional[Axis]:
    """Largest-magnitude axis of ``value`` with ties resolved X, then Z, then Y."""

    ax, ay, az = (abs(float(c)) for c in value[:3])
    if max(ax, ay, az) <= eps:
        return None
    if ax >= ay and ax >= az:
        return "X"
    if az >= ax and az >= ay:
        return "Z"
    return "Y"


def signed_axis_unit(value: Sequence[float], eps: float = EPS) -> np.ndarray:
    """Unit vector along the dominant axis, signed like ``value`` (``+X`` for zero input)."""

    axis = dominant_axis(value, eps) or "X"
    component = float(value[AXIS_INDEX[axis]])
    sign = -1.0 if component < 0 else 1.0
    return AXIS_VECTORS[axis] * sign


def nonzero_axes(value: Sequence[float], tol: float) -> Tuple[Axis, ...]:
    return tuple(axis for axis, idx in AXIS_INDEX.items() if abs(float(value[idx])) > tol)  # type: ignore[misc]


def horizontal_length(value: Sequence[float]) -> float:
    return math.hypot(float(value[0]), float(value[2]))


def rotate_about_axis(vec: np.ndarray, axis_unit: np.ndarray, angle_rad: float) -> np.ndarray:
    """Rodrigues rotation of ``vec`` about the unit vector ``axis_unit``."""

    c = math.cos(angle_rad)
    s = math.sin(angle_rad)
    return vec * c + np.cross(axis_unit, vec) * s + axis_unit * float(np.dot(axis_unit, vec)) * (1.0 - c)


def project_off(vec: np.ndarray, axes: Iterable[Optional[np.ndarray]], eps: float = 1e-12) -> Optional[np.ndarray]:
    """Remove the components of ``vec`` along each of ``axes`` and normalise."""

    out = as_array(vec).copy()
    for axis in axes:
        if axis is None:
            continue
        direction = unit(axis, eps)
        if direction is None:
            continue
        out = out - direction * float(np.dot(out, direction))
    return unit(out, eps)


def match_sign(direction: np.ndarray, hint: Optional[np.ndarray]) -> np.ndarray:
    if hint is not None and float(np.dot(direction, hint)) < 0:
        return -direction
    return direction


def circle_intersections(
    c1: np.ndarray, r1: float, c2: np.ndarray, r2: float, tol: float = 1e-6
) -> List[np.ndarray]:
    """Intersections of two circles in 2D; empty when they do not meet within ``tol``."""

    offset = c2 - c1
    d = float(np.linalg.norm(offset))
    if d <= EPS:
        return []
    if d > r1 + r2 + tol or d < abs(r1 - r2) - tol:
        return []
    ex = offset / d
    a = (r1 * r1 - r2 * r2 + d * d) / (2.0 * d)
    h = math.sqrt(max(0.0, r1 * r1 - a * a))
    mid = c1 + ex * a
    if h <= EPS:
        return [mid]
    ey = np.array([-ex[1], ex[0]])
    return [mid + ey * h, mid - ey * h]


def angle_deg(u: Sequence[float], v: Sequence[float]) -> float:
    cosine = float(np.clip(np.dot(as_array(u), as_array(v)), -1.0, 1.0))
    return math.degrees(math.acos(cosine))


__all__ = [
    "AXIS_INDEX",
    "AXIS_VECTORS",
    "EPS",
    "UP",
    "angle_deg",
    "as_array",
    "as_tuple",
    "circle_intersections",
    "delta",
    "distance",
    "dominant_axis",
    "horizontal_length",
    "match_sign",
    "nonzero_axes",
    "norm",
    "project_off",
    "rotate_about_axis",
    "signed_axis_unit",
    "unit",
]
