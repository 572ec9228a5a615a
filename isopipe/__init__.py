from .constraints import AngleTo, AxisLock, ByEdges, ByEdgeUp, ByNormal, Coplanar, ParallelTo, PerpTo
from .graph import Conflict, Dimension, Edge, EdgeMeta, Graph, GraphError, Node, NodeMeta
from .fixtures import FixtureError, dump_graph, load_graph_from_json, load_graph_from_path
from .topology import classify_all, classify_and_store, classify_node, TopologyInfo
from .stress import evaluate_node_stress, StressThresholds
from .trace import CollectingTraceSink, LoggingTraceSink, NullTraceSink, TraceRecord
from .solver import (
    attach_solvers,
    check_solvable,
    is_solvable,
    solve,
    slope,
    CoordinateMap,
    ReactiveSolver,
    SlopeCommitResult,
    SlopePreview,
    SolvabilityResult,
    SolverConfig,
    TriangleEngine,
    get_solver_config,
    set_solver_config,
)

__all__ = [
    'AngleTo',
    'AxisLock',
    'ByEdges',
    'ByEdgeUp',
    'ByNormal',
    'Coplanar',
    'ParallelTo',
    'PerpTo',
    'Conflict',
    'Dimension',
    'Edge',
    'EdgeMeta',
    'Graph',
    'GraphError',
    'Node',
    'NodeMeta',
    'FixtureError',
    'dump_graph',
    'load_graph_from_json',
    'load_graph_from_path',
    'classify_all',
    'classify_and_store',
    'classify_node',
    'TopologyInfo',
    'evaluate_node_stress',
    'StressThresholds',
    'CollectingTraceSink',
    'LoggingTraceSink',
    'NullTraceSink',
    'TraceRecord',
    'attach_solvers',
    'check_solvable',
    'is_solvable',
    'solve',
    'slope',
    'CoordinateMap',
    'ReactiveSolver',
    'SlopeCommitResult',
    'SlopePreview',
    'SolvabilityResult',
    'SolverConfig',
    'TriangleEngine',
    'get_solver_config',
    'set_solver_config',
]
