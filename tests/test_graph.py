import pytest

from isopipe.constraints import AxisLock
from isopipe.graph import Dimension, EdgeMeta, Graph, GraphError, NodeMeta, has_dim, has_user_dim


def _pair() -> Graph:
    graph = Graph()
    graph.add_node((0, 0, 0), node_id="O", meta=NodeMeta(is_anchor=True))
    graph.add_node((100, 0, 0), node_id="A")
    return graph


def test_add_edge_rejects_bad_input():
    graph = _pair()

    with pytest.raises(GraphError):
        graph.add_edge("O", "O")
    with pytest.raises(GraphError):
        graph.add_edge("O", "missing")
    with pytest.raises(GraphError):
        graph.add_edge("O", "A", "pipe")  # type: ignore[arg-type]
    with pytest.raises(GraphError):
        graph.add_edge("O", "A", dim=Dimension(value_mm=0.0, source="user"))

    graph.add_edge("O", "A", edge_id="e1")
    with pytest.raises(GraphError):
        graph.add_edge("O", "A", edge_id="e1")


def test_generated_ids_skip_taken_names():
    graph = Graph()
    graph.add_node(node_id="n1")
    node = graph.add_node()
    assert node.id == "n2"


def test_dimension_listeners_fire_only_for_loud_writes():
    graph = _pair()
    edge = graph.add_edge("O", "A", edge_id="e1")
    seen = []
    unsubscribe = graph.on_edge_dimension_changed(seen.append)

    graph.set_edge_dimension(edge.id, Dimension(value_mm=100.0, source="user"))
    graph.set_edge_dimension(edge.id, Dimension(value_mm=90.0), silent=True)
    unsubscribe()
    graph.set_edge_dimension(edge.id, Dimension(value_mm=80.0))

    assert seen == ["e1"]
    assert graph.get_edge("e1").dim.value_mm == 80.0


def test_has_dim_requires_positive_finite_value():
    graph = _pair()
    edge = graph.add_edge("O", "A")

    assert not has_dim(edge)
    edge.dim = Dimension(value_mm=float("nan"))
    assert not has_dim(edge)
    edge.dim = Dimension(value_mm=12.5, source="derived")
    assert has_dim(edge)
    assert not has_user_dim(edge)
    edge.dim = Dimension(value_mm=12.5, source="user")
    assert has_user_dim(edge)


def test_set_node_world_y_moves_only_the_offset():
    graph = Graph()
    node = graph.add_node((10, 20, 30), node_id="n", offset=(1, 2, 3))

    graph.set_node_world_y("n", 50.0)

    assert node.base == (10.0, 20.0, 30.0)
    assert node.offset == (1.0, 30.0, 3.0)
    assert graph.get_node_world_pos("n") == (11.0, 50.0, 33.0)


def test_find_node_near_uses_tolerance():
    graph = _pair()

    assert graph.find_node_near((100.00001, 0, 0)).id == "A"
    assert graph.find_node_near((100.1, 0, 0)) is None


def test_adjacency_queries():
    graph = _pair()
    graph.add_node((100, 0, 100), node_id="B")
    graph.add_edge("O", "A", "center", edge_id="e1", meta=EdgeMeta(constraints=(AxisLock("X"),)))
    graph.add_edge("A", "B", "construction", edge_id="e2")

    assert [edge.id for edge in graph.incident_edges("A")] == ["e1", "e2"]
    assert [edge.id for edge in graph.incident_edges("A", "construction")] == ["e2"]
    assert [other for _, other in graph.neighbors("A")] == ["O", "B"]
    assert graph.edge_between("B", "A").id == "e2"
    assert graph.edge_between("B", "A", "center") is None
    assert graph.collect_affected_edges(["A"]) == ["e1"]
    assert graph.get_edge("e1").meta.direction == AxisLock("X")


def test_remove_node_drops_incident_edges():
    graph = _pair()
    graph.add_edge("O", "A", edge_id="e1")

    graph.remove_node("A")

    assert graph.get_edge("e1") is None
    assert graph.incident_edges("O") == []
    assert "A" not in graph
    assert len(graph) == 1
