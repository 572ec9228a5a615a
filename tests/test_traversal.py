from isopipe.graph import Graph
from isopipe.traversal import (
    bfs_order,
    component_of_edge,
    component_of_node,
    kind_filter,
    reachable,
    shortest_path,
)


def _ladder() -> Graph:
    graph = Graph()
    for node_id in ("a", "b", "c", "d", "x"):
        graph.add_node(node_id=node_id)
    graph.add_edge("a", "b", "center", edge_id="ab")
    graph.add_edge("b", "c", "construction", edge_id="bc")
    graph.add_edge("a", "d", "construction", edge_id="ad")
    graph.add_edge("d", "c", "construction", edge_id="dc")
    return graph


def test_bfs_order_follows_insertion_order():
    graph = _ladder()

    assert bfs_order(graph, ["a"]) == ["a", "b", "d", "c"]
    assert reachable(graph, "x") == ["x"]


def test_edge_filter_restricts_the_walk():
    graph = _ladder()

    assert reachable(graph, "a", kind_filter("center")) == ["a", "b"]
    path = shortest_path(graph, "a", "c", kind_filter("construction"))
    assert path.nodes == ["a", "d", "c"]
    assert path.edges == ["ad", "dc"]
    assert path.legs() == [("a", "d", "ad"), ("d", "c", "dc")]


def test_shortest_path_prefers_first_discovered_route():
    graph = _ladder()

    path = shortest_path(graph, "a", "c")
    assert path.nodes == ["a", "b", "c"]
    assert len(path) == 2


def test_step_filter_can_veto_by_direction():
    graph = _ladder()

    path = shortest_path(graph, "a", "c", step_filter=lambda edge, src, dst: dst != "b")
    assert path.nodes == ["a", "d", "c"]


def test_shortest_path_edge_cases():
    graph = _ladder()

    assert shortest_path(graph, "a", "x") is None
    assert shortest_path(graph, "a", "missing") is None
    trivial = shortest_path(graph, "a", "a")
    assert trivial.nodes == ["a"] and trivial.edges == []


def test_components():
    graph = _ladder()

    component = component_of_edge(graph, "bc", kind_filter("construction"))
    assert component.nodes == ["b", "c", "d", "a"]
    assert set(component.edges) == {"bc", "ad", "dc"}

    lonely = component_of_node(graph, "x")
    assert lonely.nodes == ["x"]
    assert lonely.edges == []
    assert component_of_edge(graph, "nope").nodes == []
