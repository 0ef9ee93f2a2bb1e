from __future__ import annotations

import logging

from langgraph.graph import END, START, StateGraph

from quarry.corpus_stats import CorpusStatsSource
from quarry.retrievers.backend import ContentSearchBackend

from .nodes import (
    make_cascade_node,
    make_experiment_node,
    make_finalize_node,
    make_route_node,
    preprocess_node,
)
from .state import OrchestrationState


def build_orchestration_graph(
    backend: ContentSearchBackend,
    stats_source: CorpusStatsSource,
    has_reranker: bool,
    enable_agentic: bool,
    enable_reranking: bool,
    enable_experiments: bool,
    enabled_variants: tuple[str, ...],
    rung_timeout_seconds: float,
    alert_logger: logging.Logger | None = None,
):
    graph_builder = StateGraph(OrchestrationState)

    graph_builder.add_node("preprocess", preprocess_node)
    graph_builder.add_node(
        "route",
        make_route_node(
            stats_source=stats_source,
            has_reranker=has_reranker,
            enable_agentic=enable_agentic,
            enable_reranking=enable_reranking,
        ),
    )
    graph_builder.add_node(
        "experiment",
        make_experiment_node(
            enabled=enable_experiments,
            enabled_variants=enabled_variants,
        ),
    )
    graph_builder.add_node(
        "cascade",
        make_cascade_node(backend, rung_timeout_seconds=rung_timeout_seconds),
    )
    graph_builder.add_node("finalize", make_finalize_node(alert_logger))

    graph_builder.add_edge(START, "preprocess")
    graph_builder.add_edge("preprocess", "route")
    graph_builder.add_conditional_edges("route", _route_after_router)
    graph_builder.add_edge("experiment", "cascade")
    graph_builder.add_edge("cascade", "finalize")
    graph_builder.add_edge("finalize", END)

    return graph_builder.compile()


def _route_after_router(state: OrchestrationState) -> str:
    route = state.get("route")
    if route is None or route.strategy.skips_retrieval:
        return "finalize"
    return "experiment"
