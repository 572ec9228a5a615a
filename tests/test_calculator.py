import math

import pytest

from isopipe.constraints import AngleTo, AxisLock, ByNormal, Coplanar, ParallelTo, PerpTo
from isopipe.graph import Dimension, EdgeMeta, Graph, NodeMeta
from isopipe.solver import get_solver_config, set_solver_config, solve
from isopipe.trace import CollectingTraceSink

FLOOR = ByNormal((0.0, 1.0, 0.0))


def _dim(value):
    return Dimension(value_mm=value, source="user")


def _meta(*constraints):
    return EdgeMeta(constraints=tuple(constraints))


def _run() -> Graph:
    graph = Graph()
    graph.add_node((0, 0, 0), node_id="O", meta=NodeMeta(is_anchor=True))
    graph.add_node((100, 0, 0), node_id="A")
    graph.add_edge("O", "A", "center", edge_id="e1", dim=_dim(100), meta=_meta(AxisLock("X")))
    return graph


def test_on_segment_node_is_interpolated_and_tail_length_derived():
    graph = Graph()
    graph.add_node((0, 0, 0), node_id="O", meta=NodeMeta(is_anchor=True))
    graph.add_node((0, 100, 0), node_id="A")
    graph.add_node((100, 100, 0), node_id="B")
    graph.add_node((100, 100, 100), node_id="C")
    graph.add_node((50, 100, 50), node_id="D", meta=NodeMeta(on_segment=("A", "C")))
    graph.add_edge("O", "A", "center", edge_id="e1", dim=_dim(100), meta=_meta(AxisLock("Y")))
    graph.add_edge("A", "B", "construction", edge_id="e2", dim=_dim(100))
    graph.add_edge("B", "C", "construction", edge_id="e3", dim=_dim(100))
    graph.add_edge("A", "D", "center", edge_id="e4", dim=_dim(50))
    graph.add_edge("D", "C", "center", edge_id="e5")

    coords = solve(graph)

    assert coords is not None
    assert coords["A"] == pytest.approx((0.0, 100.0, 0.0))
    assert coords["C"] == pytest.approx((100.0, 100.0, 100.0))
    assert coords["D"] == pytest.approx((50 / math.sqrt(2), 100.0, 50 / math.sqrt(2)))
    assert list(coords.derived_edge_lengths) == ["e5"]
    assert coords.derived_edge_lengths["e5"] == pytest.approx(100 * math.sqrt(2) - 50)


def test_axis_lock_follows_hint_when_walked_from_b():
    graph = Graph()
    graph.add_node((0, 0, 0), node_id="O", meta=NodeMeta(is_anchor=True))
    graph.add_node((100, 0, 0), node_id="A")
    graph.add_edge("A", "O", "center", dim=_dim(250), meta=_meta(AxisLock("X")))

    coords = solve(graph)

    assert coords["A"] == pytest.approx((250.0, 0.0, 0.0))


def test_schematic_offsets_do_not_leak_into_lengths():
    graph = Graph()
    graph.add_node((0, 0, 0), node_id="O", meta=NodeMeta(is_anchor=True))
    graph.add_node((10, 0, 0), node_id="A", offset=(0, 0, -3))
    graph.add_edge("O", "A", "center", dim=_dim(1200), meta=_meta(AxisLock("X")))

    coords = solve(graph)

    assert coords["A"] == pytest.approx((1200.0, 0.0, 0.0))


def test_angle_to_rotates_inside_the_plane():
    graph = _run()
    graph.add_node((130, 0, -30), node_id="B")
    graph.add_edge("A", "B", "center", dim=_dim(40), meta=_meta(AngleTo("e1", 45.0), Coplanar(FLOOR)))

    coords = solve(graph)

    leg = 40 / math.sqrt(2)
    assert coords["B"] == pytest.approx((100 + leg, 0.0, -leg))


def test_perp_to_takes_its_sign_from_the_hint():
    graph = _run()
    graph.add_node((100, 0, 30), node_id="B")
    graph.add_edge("A", "B", "center", dim=_dim(40), meta=_meta(PerpTo("e1"), Coplanar(FLOOR)))

    coords = solve(graph)

    assert coords["B"] == pytest.approx((100.0, 0.0, 40.0))


def test_triangulation_picks_the_left_hand_solution():
    graph = _run()
    graph.add_node((50, 0, -50), node_id="T", meta=NodeMeta(plane_ref=FLOOR))
    side = math.hypot(50, 50)
    graph.add_edge("O", "T", "center", dim=_dim(side))
    graph.add_edge("A", "T", "center", dim=_dim(side))
    sink = CollectingTraceSink()

    coords = solve(graph, sink=sink)

    assert coords["T"] == pytest.approx((50.0, 0.0, -50.0))
    vias = {record.data["node"]: record.data["via"] for record in sink.events("calc.placed")}
    assert vias == {"A": "edge", "T": "triangulation"}


def test_unsolvable_recipe_returns_none():
    graph = _run()
    graph.add_node((500, 0, 0), node_id="X")

    assert solve(graph) is None


def test_coordinate_map_as_dict():
    coords = solve(_run())

    assert len(coords) == 2
    assert coords.as_dict() == {
        "positions": {"O": [0.0, 0.0, 0.0], "A": [100.0, 0.0, 0.0]},
        "derived_edge_lengths": {},
    }


def test_solver_config_accessors_copy():
    original = get_solver_config()
    try:
        tuned = get_solver_config()
        tuned.pass_bound_constant = 0
        tuned.pass_bound_factor = 0
        set_solver_config(tuned)
        tuned.pass_bound_factor = 99

        assert get_solver_config().pass_bound(10) == 0
        assert solve(_run()) is None
    finally:
        set_solver_config(original)
    assert get_solver_config().pass_bound(10) == 40


def test_cyclic_references_stop_within_the_pass_bound():
    graph = _run()
    graph.add_node((100, 0, 50), node_id="B")
    graph.add_node((150, 0, 50), node_id="C")
    graph.add_edge("A", "B", "center", edge_id="e2", dim=_dim(50), meta=_meta(ParallelTo("e3")))
    graph.add_edge("B", "C", "center", edge_id="e3", dim=_dim(50), meta=_meta(ParallelTo("e4")))
    graph.add_edge("C", "A", "center", edge_id="e4", dim=_dim(60), meta=_meta(ParallelTo("e2")))
    sink = CollectingTraceSink()

    assert solve(graph, sink=sink) is None

    assert len(sink.events("calc.pass")) <= get_solver_config().pass_bound(4)
    assert sink.events("calc.incomplete")[0].data["unplaced"] == ["B", "C"]
