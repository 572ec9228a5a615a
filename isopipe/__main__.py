import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from isopipe import (
    FixtureError,
    check_solvable,
    classify_all,
    dump_graph,
    evaluate_node_stress,
    load_graph_from_path,
    slope,
    solve,
)
from isopipe.solver import SLOPE_MODES

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(levelname)s:%(name)s:%(message)s",
    )


def _fmt(value: float) -> str:
    return f"{value:.3f}"


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Solve pipe isometric recipe graphs")
    parser.add_argument("path", help="Path to a JSON node/edge fixture")
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Only run the solvability check",
    )
    parser.add_argument(
        "--slope",
        nargs=2,
        metavar=("A", "B"),
        help="Preview a slope from node A down to node B",
    )
    parser.add_argument(
        "--grade",
        type=float,
        default=0.01,
        help="Slope grade as fall per horizontal length (default: 0.01)",
    )
    parser.add_argument(
        "--mode",
        choices=SLOPE_MODES,
        default="balanced",
        help="How the fall is distributed between span ends (default: balanced)",
    )
    parser.add_argument(
        "--anchor",
        action="append",
        default=[],
        help="Extra node that keeps its height during --slope (repeatable)",
    )
    parser.add_argument(
        "--commit",
        action="store_true",
        help="Apply the slope preview to the graph",
    )
    parser.add_argument(
        "--output",
        help="Write the (possibly modified) graph back as a JSON fixture",
    )
    args = parser.parse_args(argv)

    _configure_logging(args.log_level)

    logger.info("Loading fixture from %s", args.path)
    try:
        graph = load_graph_from_path(args.path)
    except (OSError, FixtureError) as exc:
        logger.error("Cannot load fixture: %s", exc)
        raise SystemExit(2)

    classify_all(graph)
    evaluate_node_stress(graph)

    state = check_solvable(graph)
    print(f"Solvable: {state.ok}")
    if not state.ok:
        print(f"  reason: {state.reason}")
        print(f"  details: {json.dumps(state.details, sort_keys=True, default=str)}")
    if args.check:
        raise SystemExit(0 if state.ok else 1)

    if state.ok:
        coords = solve(graph)
        if coords is None:
            logger.error("Solvability check passed but placement was incomplete")
            raise SystemExit(1)
        print("Coordinates:")
        for node_id, (x, y, z) in coords.items():
            print(f"  {node_id}: ({_fmt(x)}, {_fmt(y)}, {_fmt(z)})")
        if coords.derived_edge_lengths:
            print("Derived lengths:")
            for edge_id, length in coords.derived_edge_lengths.items():
                print(f"  {edge_id}: {_fmt(length)}")

    stressed = [node for node in graph.all_nodes() if node.meta.stress and node.meta.stress.get("present")]
    special = [node for node in graph.all_nodes() if node.meta.special]
    if stressed or special:
        print("Annotations:")
        for node in stressed:
            kinds = ", ".join(entry["kind"] for entry in node.meta.stress["entries"])
            print(f"  {node.id}: stress {node.meta.stress['severity']} ({kinds})")
        for node in special:
            print(f"  {node.id}: special {node.meta.special['kind']}")

    if args.slope:
        a, b = args.slope
        result = slope.preview(graph, a, b, args.grade, mode=args.mode, anchors=args.anchor)
        print(f"Slope {a} -> {b}: ok={result.ok}")
        if not result.ok:
            print(f"  reason: {result.reason}")
            print(f"  details: {json.dumps(result.details, sort_keys=True, default=str)}")
            raise SystemExit(1)
        print(f"  path: {' -> '.join(result.path)}")
        for node_id in result.path:
            print(f"  {node_id}: y={_fmt(result.target_y_by_node[node_id])}")
        for warning in result.warnings:
            print(f"  warning: {warning['type']} {warning.get('edge')}")
        if args.commit:
            committed = slope.commit(graph, result)
            print(f"  committed: moved {len(committed.moved_nodes)} node(s)")
            if committed.topology_changed:
                print(f"  topology changed: {', '.join(committed.topology_changed)}")
            if committed.stress_changed:
                print(f"  stress changed: {', '.join(committed.stress_changed)}")

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Writing fixture to %s", output_path)
        output_path.write_text(json.dumps(dump_graph(graph), indent=2), encoding="utf-8")
        print(f"Fixture written to {output_path}")


if __name__ == "__main__":
    main(sys.argv[1:])
