import json

import pytest

import isopipe.__main__ as cli
from isopipe import load_graph_from_path


def _write(tmp_path, payload, name="scene.json"):
    path = tmp_path / name
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def _tail_fixture():
    return {
        "nodes": [
            {"id": "O", "base": [0, 0, 0], "meta": {"isAnchor": True}},
            {"id": "A", "base": [0, 100, 0]},
            {"id": "B", "base": [100, 100, 0]},
            {"id": "C", "base": [100, 100, 100]},
            {"id": "D", "base": [50, 100, 50], "meta": {"onSegment": {"a": "A", "b": "C"}}},
        ],
        "edges": [
            {"id": "e1", "a": "O", "b": "A", "dim": {"valueMm": 100}, "meta": {"axisLock": "Y"}},
            {"id": "e2", "a": "A", "b": "B", "kind": "construction", "dim": {"valueMm": 100}},
            {"id": "e3", "a": "B", "b": "C", "kind": "construction", "dim": {"valueMm": 100}},
            {"id": "e4", "a": "A", "b": "D", "dim": {"valueMm": 50}},
            {"id": "e5", "a": "D", "b": "C"},
        ],
    }


def _drop_fixture():
    points = {"A": [0, 1000, 0], "R1": [0, 0, 0], "S": [1000, 0, 0], "R2": [2000, 0, 0], "B": [2000, -500, 0]}
    names = list(points)
    return {
        "nodes": [{"id": name, "base": pos} for name, pos in points.items()],
        "edges": [{"id": f"{u}-{v}", "a": u, "b": v} for u, v in zip(names, names[1:])],
    }


def test_main_prints_coordinates_and_derived_lengths(tmp_path, capsys):
    path = _write(tmp_path, _tail_fixture())

    cli.main([str(path)])

    out = capsys.readouterr().out
    assert "Solvable: True" in out
    assert "  D: (35.355, 100.000, 35.355)" in out
    assert "Derived lengths:" in out
    assert "  e5: 91.421" in out


def test_check_exit_code_reports_reason(tmp_path, capsys):
    fixture = _tail_fixture()
    fixture["nodes"][0]["meta"]["isAnchor"] = False
    path = _write(tmp_path, fixture)

    with pytest.raises(SystemExit) as excinfo:
        cli.main([str(path), "--check"])

    assert excinfo.value.code == 1
    out = capsys.readouterr().out
    assert "Solvable: False" in out
    assert "reason: anchor_count" in out


def test_unreadable_fixture_exits_with_usage_code(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{", encoding="utf-8")

    with pytest.raises(SystemExit) as excinfo:
        cli.main([str(path)])

    assert excinfo.value.code == 2


def test_slope_commit_writes_updated_fixture(tmp_path, capsys):
    path = _write(tmp_path, _drop_fixture())
    output = tmp_path / "out" / "sloped.json"

    cli.main([str(path), "--slope", "A", "B", "--grade", "0.01", "--commit", "--output", str(output)])

    out = capsys.readouterr().out
    assert "Slope A -> B: ok=True" in out
    assert "  path: A -> R1 -> S -> R2 -> B" in out
    assert "  R1: y=10.000" in out
    assert "  committed: moved 2 node(s)" in out
    assert f"Fixture written to {output}" in out
    graph = load_graph_from_path(output)
    assert graph.get_node_world_pos("R1") == pytest.approx((0.0, 10.0, 0.0))
    assert graph.get_node_world_pos("R2") == pytest.approx((2000.0, -10.0, 0.0))


def test_failed_slope_exits_non_zero(tmp_path, capsys):
    path = _write(tmp_path, _drop_fixture())

    with pytest.raises(SystemExit) as excinfo:
        cli.main([str(path), "--slope", "B", "A"])

    assert excinfo.value.code == 1
    assert "reason: A_not_higher_than_B" in capsys.readouterr().out
