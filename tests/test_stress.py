import math

import pytest

from isopipe.graph import Graph
from isopipe.stress import StressThresholds, evaluate_node_stress


def _bend(c, a=(0, 0, 0)) -> Graph:
    graph = Graph()
    graph.add_node(a, node_id="A")
    graph.add_node((100, 0, 0), node_id="B")
    graph.add_node(c, node_id="C")
    graph.add_edge("A", "B", "center")
    graph.add_edge("B", "C", "center")
    return graph


def _riser_top(tilt_deg: float):
    return (100 + 100 * math.tan(math.radians(tilt_deg)), 100, 0)


def test_square_lying_bend_is_clean():
    graph = _bend((100, 0, 100))

    assert evaluate_node_stress(graph) == []
    assert graph.get_node("B").meta.stress == {"present": False, "entries": [], "severity": None}
    assert graph.get_node("B").meta.special is None


def test_small_bend_deviation_is_a_hint():
    graph = _bend(_riser_top(2.0))

    changed = evaluate_node_stress(graph)

    stress = graph.get_node("B").meta.stress
    assert changed == ["B"]
    assert stress["present"] is True
    assert stress["severity"] == "hint"
    assert stress["entries"][0]["kind"] == "bendAngleDeviation"
    assert stress["entries"][0]["delta_deg"] == pytest.approx(2.0, abs=1e-3)


def test_large_bend_deviation_needs_a_special_fitting():
    graph = _bend(_riser_top(10.0))

    evaluate_node_stress(graph)

    meta = graph.get_node("B").meta
    assert meta.stress["present"] is False
    assert meta.special["kind"] == "specialBend"
    assert meta.special["angle_deg"] == pytest.approx(100.0, abs=1e-3)
    assert meta.special["delta_from_90"] == pytest.approx(10.0, abs=1e-3)


def test_thresholds_are_configurable():
    graph = _bend(_riser_top(2.0))

    evaluate_node_stress(graph, thresholds=StressThresholds(wedge_max_deg=1.0))

    assert graph.get_node("B").meta.special["kind"] == "specialBend"


def test_forty_five_degree_elbow_is_a_fixed_fitting():
    graph = _bend((200, 100, 0))

    evaluate_node_stress(graph)

    special = graph.get_node("B").meta.special
    assert special["kind"] == "fixedElbow45"
    assert special["delta_from_135"] == pytest.approx(0.0, abs=1e-3)


def test_inline_deviation_is_a_warning():
    graph = _bend((200, 100 * math.tan(math.radians(2.0)), 0))

    evaluate_node_stress(graph)

    stress = graph.get_node("B").meta.stress
    assert stress["severity"] == "warn"
    assert stress["entries"][0]["kind"] == "inlineAngleDeviation"


def test_lying_bend_with_equal_fall_is_free():
    graph = _bend((100, 10, 100), a=(0, 10, 0))

    assert evaluate_node_stress(graph) == []
    assert graph.get_node("B").meta.stress["present"] is False


def test_tee_branch_deviation():
    graph = _bend((200, 0, 0))
    graph.add_node((100 + 100 * math.tan(math.radians(2.0)), 0, 100), node_id="D")
    graph.add_edge("B", "D", "center")

    evaluate_node_stress(graph, ["B"])

    entries = graph.get_node("B").meta.stress["entries"]
    assert [entry["kind"] for entry in entries] == ["teeBranchAngleDeviation"]
    assert entries[0]["delta_deg"] == pytest.approx(2.0, abs=1e-3)
    assert entries[0]["severity"] == "warn"
    assert graph.get_node("A").meta.stress is None


def test_only_presence_flips_are_reported():
    graph = _bend(_riser_top(2.0))
    assert evaluate_node_stress(graph) == ["B"]
    assert evaluate_node_stress(graph) == []

    graph.get_node("C").base = (100.0, 100.0, 0.0)

    assert evaluate_node_stress(graph) == ["B"]
    assert graph.get_node("B").meta.stress["present"] is False


def test_empty_selection_annotates_nothing():
    graph = _bend(_riser_top(2.0))

    assert evaluate_node_stress(graph, []) == []
    assert graph.get_node("B").meta.stress is None
