from .graph import build_orchestration_graph
from .nodes import (
    make_cascade_node,
    make_experiment_node,
    make_finalize_node,
    make_route_node,
    preprocess_node,
)
from .state import OrchestrationState, create_initial_state
from .telemetry import build_graph_invoke_config, emit_orchestration_telemetry

__all__ = [
    "OrchestrationState",
    "build_graph_invoke_config",
    "build_orchestration_graph",
    "create_initial_state",
    "emit_orchestration_telemetry",
    "make_cascade_node",
    "make_experiment_node",
    "make_finalize_node",
    "make_route_node",
    "preprocess_node",
]
