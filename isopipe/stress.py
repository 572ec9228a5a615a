"""Angle-deviation stress and special-fitting annotations for centre nodes."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple, TypedDict

import numpy as np

from .graph import Graph, NodeId

logger = logging.getLogger(__name__)


class StressEntry(TypedDict):
    kind: str
    delta_deg: float
    note: str
    severity: str


class StressState(TypedDict):
    present: bool
    entries: List[StressEntry]
    severity: Optional[str]


class SpecialFitting(TypedDict, total=False):
    kind: str
    angle_deg: float
    delta_from_90: float
    delta_from_135: float


@dataclass
class StressThresholds:
    tol_bend_deg: float = 0.5
    wedge_max_deg: float = 4.0
    tol_inline_deg: float = 0.5
    tol_tee_run_deg: float = 0.5
    tol_tee_branch_deg: float = 0.5
    tol_equal_slope_frac: float = 0.0006


def _direction(graph: Graph, start: NodeId, end: NodeId) -> Optional[np.ndarray]:
    a = graph.get_node_world_pos(start)
    b = graph.get_node_world_pos(end)
    if a is None or b is None:
        return None
    vec = np.asarray(b, dtype=float) - np.asarray(a, dtype=float)
    length = float(np.linalg.norm(vec))
    return vec / length if length > 0 else None


def _angle(u: np.ndarray, v: np.ndarray) -> float:
    return math.degrees(math.acos(float(np.clip(np.dot(u, v), -1.0, 1.0))))


def _horizontal(v: np.ndarray) -> float:
    return math.hypot(float(v[0]), float(v[2]))


def _fall_fraction(v: np.ndarray) -> float:
    horiz = _horizontal(v)
    return abs(float(v[1])) / horiz if horiz else 0.0


def _severity(delta: float, tol: float) -> str:
    return "warn" if delta > 2 * tol else "hint"


def _entry(kind: str, delta: float, note: str, severity: str) -> StressEntry:
    return {"kind": kind, "delta_deg": round(delta, 3), "note": note, "severity": severity}


def _special_bend(angle: float, delta: float) -> SpecialFitting:
    return {"kind": "specialBend", "angle_deg": round(angle, 3), "delta_from_90": round(delta, 3)}


def _evaluate_bend(
    v0: np.ndarray, v1: np.ndarray, limits: StressThresholds
) -> Tuple[List[StressEntry], Optional[SpecialFitting]]:
    angle = _angle(v0, v1)
    nominal = min((90.0, 135.0, 180.0), key=lambda target: abs(target - angle))
    delta = abs(nominal - angle)

    if nominal == 135.0:
        return [], {"kind": "fixedElbow45", "angle_deg": round(angle, 3), "delta_from_135": round(delta, 3)}

    if nominal == 180.0:
        if delta > limits.tol_inline_deg:
            entry = _entry(
                "inlineAngleDeviation",
                delta,
                "inline component deviates from nominal 180 deg",
                _severity(delta, limits.tol_inline_deg),
            )
            return [entry], None
        return [], None

    lying = _horizontal(v0) > 1e-9 and _horizontal(v1) > 1e-9
    if lying and abs(_fall_fraction(v0) - _fall_fraction(v1)) <= limits.tol_equal_slope_frac:
        # a lying 90 with equal fall on both legs is taken up by rotating the elbow
        return [], None
    if delta > limits.wedge_max_deg:
        return [], _special_bend(angle, delta)
    if delta > limits.tol_bend_deg:
        entry = _entry("bendAngleDeviation", delta, "bend deviates from nominal 90 deg (wedge/trim)", "hint")
        return [entry], None
    return [], None


def _evaluate_tee(dirs: List[np.ndarray], limits: StressThresholds) -> List[StressEntry]:
    pairs = sorted(
        ((abs(180.0 - _angle(dirs[i], dirs[j])), i, j) for i, j in ((0, 1), (0, 2), (1, 2))),
        key=lambda item: item[0],
    )
    _, r0, r1 = pairs[0]
    b = ({0, 1, 2} - {r0, r1}).pop()
    entries: List[StressEntry] = []

    run_delta = abs(180.0 - _angle(dirs[r0], dirs[r1]))
    if run_delta > limits.tol_tee_run_deg:
        entries.append(
            _entry(
                "teeRunnerAngleDeviation",
                run_delta,
                "tee runner deviates from nominal 180 deg",
                _severity(run_delta, limits.tol_tee_run_deg),
            )
        )
    branch_delta = min(abs(90.0 - _angle(dirs[b], dirs[r0])), abs(90.0 - _angle(dirs[b], dirs[r1])))
    if branch_delta > limits.tol_tee_branch_deg:
        entries.append(
            _entry(
                "teeBranchAngleDeviation",
                branch_delta,
                "tee branch deviates from nominal 90 deg",
                _severity(branch_delta, limits.tol_tee_branch_deg),
            )
        )
    return entries


def evaluate_node_stress(
    graph: Graph,
    node_ids: Optional[Iterable[NodeId]] = None,
    thresholds: Optional[StressThresholds] = None,
) -> List[NodeId]:
    """Annotate nodes with stress/special data; return ids whose presence flags changed."""

    limits = thresholds or StressThresholds()
    ids = list(node_ids) if node_ids is not None else graph.node_ids()

    changed: List[NodeId] = []
    for node_id in ids:
        node = graph.get_node(node_id)
        if node is None:
            continue
        neighbours = [other for _, other in graph.neighbors(node_id, "center")]
        entries: List[StressEntry] = []
        special: Optional[SpecialFitting] = None

        if len(neighbours) == 2:
            v0 = _direction(graph, node_id, neighbours[0])
            v1 = _direction(graph, node_id, neighbours[1])
            if v0 is None or v1 is None:
                continue
            entries, special = _evaluate_bend(v0, v1, limits)
        elif len(neighbours) == 3:
            dirs = [d for d in (_direction(graph, node_id, other) for other in neighbours) if d is not None]
            if len(dirs) == 3:
                entries = _evaluate_tee(dirs, limits)

        had_stress = bool(node.meta.stress and node.meta.stress.get("present"))
        had_special = bool(node.meta.special and node.meta.special.get("kind"))

        present = bool(entries)
        state: StressState = {
            "present": present,
            "entries": entries,
            "severity": ("warn" if any(e["severity"] == "warn" for e in entries) else "hint") if present else None,
        }
        node.meta.stress = dict(state)
        node.meta.special = dict(special) if special is not None else None

        if present != had_stress or (special is not None) != had_special:
            changed.append(node_id)

    if changed:
        logger.info("Stress annotations changed on %d node(s)", len(changed))
    return changed


__all__ = [
    "SpecialFitting",
    "StressEntry",
    "StressState",
    "StressThresholds",
    "evaluate_node_stress",
]
