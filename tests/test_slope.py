import pytest

from isopipe.graph import Graph
from isopipe.solver import SlopePreview, commit_slope, preview_slope, slope
from isopipe.stress import evaluate_node_stress
from isopipe.topology import classify_all
from isopipe.trace import CollectingTraceSink


def _chain(points) -> Graph:
    graph = Graph()
    names = list(points)
    for name in names:
        graph.add_node(points[name], node_id=name)
    for u, v in zip(names, names[1:]):
        graph.add_edge(u, v, "center", edge_id=f"{u}-{v}")
    return graph


def _drop_run() -> Graph:
    return _chain(
        {
            "A": (0, 1000, 0),
            "R1": (0, 0, 0),
            "S": (1000, 0, 0),
            "R2": (2000, 0, 0),
            "B": (2000, -500, 0),
        }
    )


def test_balanced_slope_splits_the_correction():
    graph = _drop_run()
    sink = CollectingTraceSink()

    result = slope.preview(graph, "A", "B", 0.01, sink=sink)

    assert result.ok
    assert result.path == ["A", "R1", "S", "R2", "B"]
    assert result.target_y_by_node == pytest.approx({"A": 1000, "R1": 10, "S": 0, "R2": -10, "B": -500})
    assert result.details["total_drop_mm"] == pytest.approx(20.0)
    assert result.warnings == []
    assert result.affected_edges == ["A-R1", "R1-S", "S-R2", "R2-B"]
    sections = sink.events("slope.sections")[0].data["sections"]
    assert sections == [("riser", ["A", "R1"]), ("span", ["R1", "S", "R2"]), ("riser", ["R2", "B"])]
    assert graph.get_node_world_pos("R1") == (0.0, 0.0, 0.0)


@pytest.mark.parametrize(
    "mode, expected",
    [
        ("lockTop", {"R1": 0.0, "S": -10.0, "R2": -20.0}),
        ("lockBottom", {"R1": 20.0, "S": 10.0, "R2": 0.0}),
    ],
)
def test_locked_modes_keep_one_end(mode, expected):
    result = preview_slope(_drop_run(), "A", "B", 0.01, mode=mode)

    assert result.ok
    for node_id, y in expected.items():
        assert result.target_y_by_node[node_id] == pytest.approx(y)
    assert result.target_y_by_node["A"] == 1000
    assert result.target_y_by_node["B"] == -500


def test_interior_anchor_splits_the_span():
    graph = _chain(
        {
            "A": (0, 500, 0),
            "R1": (0, 0, 0),
            "S1": (1000, 0, 0),
            "S2": (2000, 0, 0),
            "B": (2000, -500, 0),
        }
    )

    result = slope.preview(graph, "A", "B", 0.01, anchors=["S1"])

    assert result.ok
    heights = result.target_y_by_node
    assert heights["R1"] == pytest.approx(10.0)
    assert heights["S1"] == pytest.approx(0.0)
    assert heights["S2"] == pytest.approx(-10.0)
    assert heights["A"] == 500


def test_flat_run_between_anchors():
    graph = _chain({"A": (0, 0, 0), "B": (1000, 0, 0)})

    blocked = slope.preview(graph, "A", "B", 0.01, mode="lockTop")
    level = slope.preview(graph, "A", "B", 0.0, mode="lockTop")

    assert not blocked.ok
    assert blocked.reason == "anchors_overconstrained"
    assert blocked.details["required_drop"] == pytest.approx(10.0)
    assert level.ok


def test_rejected_requests():
    graph = _drop_run()
    graph.add_node((100, 1000, 100), node_id="K")
    graph.add_edge("A", "K", "center")

    assert slope.preview(graph, "A", "B", 0.01, mode="x").reason == "unknown_mode"
    assert slope.preview(graph, "A", "B", -1).reason == "invalid_grade"
    assert slope.preview(graph, "A", "B", float("nan")).reason == "invalid_grade"
    assert slope.preview(graph, "A", "K", 0.01).reason == "no_manhattan_path"
    assert slope.preview(graph, "B", "A", 0.01).reason == "A_not_higher_than_B"


def test_riser_only_path_keeps_heights():
    graph = _chain({"A": (0, 100, 0), "B": (0, 0, 0)})

    result = slope.preview(graph, "A", "B", 0.01)

    assert result.ok
    assert result.target_y_by_node == {"A": 100.0, "B": 0.0}
    assert result.affected_edges == []


def test_uphill_leg_is_regraded_with_warning():
    positions = {"u": (0, 0, 0), "v": (100, 5, 0), "w": (200, 0, 0)}
    span = slope.Section("span", ["u", "v", "w"])

    drops, total, warnings = slope.plan_span_drops(span, positions, 0.01)

    assert [leg.drop for leg in drops] == [pytest.approx(1.0), pytest.approx(5.0)]
    assert total == pytest.approx(6.0)
    assert warnings == [{"type": "diag_uphill", "edge": ("u", "v")}]


def test_riser_column_bends_at_pinned_nodes():
    heights = slope.map_riser_column(["a", "b", "c", "d", "e"], 100.0, 0.0, {"c": 80.0})

    assert heights == {"a": 100.0, "b": 90.0, "c": 80.0, "d": 40.0, "e": 0.0}
    assert slope.map_riser_column(["solo"], 7.0, 3.0) == {"solo": 7.0}


def test_commit_moves_nodes_and_coincident_followers():
    graph = _drop_run()
    graph.add_node((0, 0, 0), node_id="X")
    classify_all(graph)
    evaluate_node_stress(graph)
    result = slope.preview(graph, "A", "B", 0.01)

    committed = commit_slope(graph, result)

    assert committed.ok
    assert committed.moved_nodes == ["R1", "R2", "X"]
    assert graph.get_node_world_pos("X") == pytest.approx((0.0, 10.0, 0.0))
    assert graph.get_node_world_pos("R1") == pytest.approx((0.0, 10.0, 0.0))
    assert graph.get_node("R1").meta.topo == "bend"
    assert committed.topology_changed == []
    assert committed.stress_changed == ["R1", "R2"]
    assert graph.get_node("R1").meta.stress["entries"][0]["kind"] == "bendAngleDeviation"


def test_commit_refuses_failed_preview():
    result = slope.commit(Graph(), SlopePreview(ok=False, reason="unknown_mode"))

    assert not result.ok
    assert result.reason == "no_preview"
