import math

import pytest

from isopipe.graph import Graph, GraphError
from isopipe.topology import (
    classify_all,
    classify_and_store,
    classify_node,
    invalidate_around_edge,
    is_riser_edge,
)

ARMS = {
    "E": (100, 0, 0),
    "W": (-100, 0, 0),
    "N": (0, 0, 100),
    "S": (0, 0, -100),
    "U": (0, 100, 0),
    "D": (70, 0, 70),
}


def _star(*arms: str) -> Graph:
    graph = Graph()
    graph.add_node((0, 0, 0), node_id="C")
    for name in arms:
        graph.add_node(ARMS[name], node_id=name)
        graph.add_edge("C", name, "center", edge_id=f"e{name}")
    return graph


def test_isolated_node_is_an_endpoint():
    info = classify_node(_star(), "C")

    assert info.topo == "endpoint"
    assert info.degree_center == 0
    assert info.notes == ["isolated"]


def test_riser_endpoints_know_their_role():
    graph = _star("U")

    assert classify_node(graph, "C").riser_role == "bottom"
    assert classify_node(graph, "U").riser_role == "top"
    assert classify_node(graph, "C").risers == ["eU"]
    assert is_riser_edge(graph, "eU")
    assert not is_riser_edge(graph, "missing")


def test_straight_and_bend():
    straight = classify_node(_star("E", "W"), "C")
    bend = classify_node(_star("E", "N"), "C")

    assert straight.topo == "straight"
    assert straight.bend_angle_rad == pytest.approx(0.0)
    assert bend.topo == "bend"
    assert bend.bend_angle_rad == pytest.approx(math.pi / 2)


def test_tee_reports_runner_and_branch():
    info = classify_node(_star("E", "W", "N"), "C")

    assert info.topo == "tee"
    assert info.runner == ("eE", "eW")
    assert info.branch == "eN"
    assert info.colinearity == pytest.approx(1.0)
    assert info.riser_role is None


def test_tee_with_vertical_branch_is_a_riser_tee():
    info = classify_node(_star("E", "W", "U"), "C")

    assert info.topo == "tee"
    assert info.branch == "eU"
    assert info.riser_role == "bottom"


def test_junctions():
    no_runner = classify_node(_star("E", "N", "D"), "C")
    crowded = classify_node(_star("E", "W", "N", "S"), "C")

    assert no_runner.topo == "junction"
    assert no_runner.notes == ["no_antiparallel_pair_for_runner"]
    assert crowded.topo == "junction"
    assert crowded.notes == ["degree_ge_4"]


def test_construction_edges_do_not_count():
    graph = _star("E")
    graph.add_node((0, 0, 50), node_id="K")
    graph.add_edge("C", "K", "construction")

    assert classify_node(graph, "C").degree_center == 1


def test_classify_and_store_writes_meta_and_reports_change():
    graph = _star("E", "W", "N")

    first = classify_and_store(graph, "C")
    second = classify_and_store(graph, "C")

    meta = graph.get_node("C").meta
    assert first.changed and first.previous is None
    assert not second.changed
    assert meta.topo == "tee"
    assert meta.degree_center == 3
    assert meta.tee.branch == "eN"
    assert meta.bend_angle_rad is None
    with pytest.raises(GraphError):
        classify_and_store(graph, "missing")


def test_invalidate_around_edge_touches_neighbours():
    graph = _star("E", "N")
    classify_all(graph)
    graph.remove_edge("eN")
    graph.add_node((-100, 0, 0), node_id="W")
    graph.add_edge("C", "W", "center", edge_id="eW")

    results = invalidate_around_edge(graph, "eW")

    assert [result.node_id for result in results] == ["C", "W", "E"]
    assert graph.get_node("C").meta.topo == "straight"
    assert results[0].previous == "bend"
