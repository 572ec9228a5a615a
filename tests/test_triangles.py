import math

import pytest

from isopipe.fixtures import dump_graph, load_graph_from_json
from isopipe.graph import Conflict, Dimension, Graph
from isopipe.solver import TriangleEngine, find_triangles_touching_edge


def _user(value, stamp=None):
    return Dimension(value_mm=value, source="user", user_edited_at=stamp)


def _triangle():
    graph = Graph()
    graph.add_node((0, 0, 0), node_id="A")
    graph.add_node((30, 0, 0), node_id="P")
    graph.add_node((0, 0, 40), node_id="Q")
    graph.add_edge("A", "P", "construction", edge_id="lp")
    graph.add_edge("A", "Q", "construction", edge_id="lq")
    graph.add_edge("P", "Q", "center", edge_id="d")
    engine = TriangleEngine(graph, clock=lambda: 99.0)
    engine.attach()
    return graph, engine


def test_triangle_is_found_from_any_member():
    graph, _ = _triangle()

    for edge_id in ("lp", "lq", "d"):
        found = find_triangles_touching_edge(graph, edge_id)
        assert len(found) == 1
        assert found[0].vertex == "A"
        assert found[0].diagonal == "d"
        assert set(found[0].axes) == {"X", "Z"}


def test_diagonal_outside_leg_plane_is_rejected():
    graph, _ = _triangle()
    graph.get_node("Q").base = (0.0, 10.0, 40.0)

    assert find_triangles_touching_edge(graph, "d") == []


def test_two_legs_derive_the_diagonal():
    graph, _ = _triangle()

    graph.set_edge_dimension("lp", _user(30, 1))
    graph.set_edge_dimension("lq", _user(40, 2))

    diagonal = graph.get_edge("d").dim
    assert diagonal.source == "derived"
    assert diagonal.value_mm == pytest.approx(50.0)
    assert diagonal.derived_from == {"from": ["lq", "lp"]}


def test_diagonal_edit_derives_the_older_leg():
    graph, _ = _triangle()
    graph.set_edge_dimension("lp", _user(30, 1))
    graph.set_edge_dimension("lq", _user(40, 2))

    graph.set_edge_dimension("d", _user(100, 3))

    assert graph.get_edge("lp").dim.source == "derived"
    assert graph.get_edge("lp").dim.value_mm == pytest.approx(math.sqrt(100 ** 2 - 40 ** 2))
    assert graph.get_edge("lq").dim.is_user


def test_short_diagonal_marks_conflict_on_the_leg():
    graph, _ = _triangle()
    graph.set_edge_dimension("lp", _user(30, 1))
    graph.set_edge_dimension("lq", _user(40, 2))

    graph.set_edge_dimension("d", _user(20, 3))

    leg = graph.get_edge("lp").dim
    assert leg.value_mm == 30
    assert leg.conflict.reason == "infeasible"
    assert leg.conflict.delta_mm == pytest.approx(20.0)


def test_unstamped_partner_is_locked_with_clock_time():
    graph, _ = _triangle()
    graph.set_edge_dimension("lp", _user(30))

    graph.set_edge_dimension("lq", _user(40, 2))

    assert graph.get_edge("lp").dim.user_edited_at == 99.0
    assert graph.get_edge("lq").dim.user_edited_at == 2


def test_derived_edits_are_ignored():
    graph, engine = _triangle()
    graph.set_edge_dimension("lp", _user(30, 1))

    graph.set_edge_dimension("lq", Dimension(value_mm=40.0))

    assert graph.get_edge("d").dim is None
    engine.detach()


def test_diagonal_equal_to_leg_keeps_the_leg_and_flags_it():
    graph, _ = _triangle()
    graph.set_edge_dimension("lp", _user(30, 1))
    graph.set_edge_dimension("lq", _user(40, 2))

    graph.set_edge_dimension("d", _user(40, 3))

    leg = graph.get_edge("lp").dim
    assert leg.value_mm == 30
    assert leg.conflict.reason == "infeasible"
    assert leg.conflict.delta_mm == pytest.approx(0.0)
    assert load_graph_from_json(dump_graph(graph)).get_edge("lp").dim.value_mm == 30


def test_relock_keeps_an_existing_conflict():
    graph, _ = _triangle()
    graph.set_edge_dimension("lp", Dimension(value_mm=30.0))
    flagged = Dimension(value_mm=40.0, source="user", conflict=Conflict(delta_mm=5.0, reason="measured"))
    graph.set_edge_dimension("lq", flagged, silent=True)

    graph.set_edge_dimension("d", _user(50, 3))

    lq = graph.get_edge("lq").dim
    assert lq.user_edited_at == 99.0
    assert lq.conflict.reason == "measured"
    assert graph.get_edge("lp").dim.value_mm == pytest.approx(30.0)
    assert graph.get_edge("lp").dim.derived_from == {"from": ["d", "lq"]}
