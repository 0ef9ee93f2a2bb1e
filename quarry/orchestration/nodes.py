from __future__ import annotations

import logging
from time import perf_counter

from quarry.corpus_stats import CorpusStatsSource, load_corpus_stats
from quarry.experiments import (
    apply_variant,
    assign_variant,
    get_experiment_variant,
    is_variant_enabled,
)
from quarry.models import RouteDecision
from quarry.monitoring import (
    emit_search_failure_alert,
    guard_monitor,
    should_alert_search_failure,
)
from quarry.query_preprocessor import preprocess_query
from quarry.retrievers.backend import ContentSearchBackend
from quarry.retrievers.cascade import run_cascade
from quarry.router_agent import (
    apply_rewrite_override,
    get_retrieval_config,
    route_query,
    validate_route,
)

from .state import OrchestrationState

LOGGER = logging.getLogger(__name__)

CONTROL_VARIANT = "control"


def preprocess_node(state: OrchestrationState) -> OrchestrationState:
    query = preprocess_query(state.get("raw_query", ""))
    event = {
        "event": "query_preprocessed",
        "was_rewritten": query.was_rewritten,
        "rewrite_kind": query.rewrite_kind.value,
    }
    if query.was_rewritten:
        LOGGER.info(
            "Meta-question rewritten for content search",
            extra={"topic": query.topic},
        )
    return {"query": query, "telemetry_events": [event]}


def make_route_node(
    stats_source: CorpusStatsSource,
    has_reranker: bool,
    enable_agentic: bool,
    enable_reranking: bool,
):
    async def _node(state: OrchestrationState) -> OrchestrationState:
        query = state.get("query") or preprocess_query(state.get("raw_query", ""))
        org_id = state.get("org_id", "")
        started = perf_counter()
        stats = await load_corpus_stats(stats_source, org_id, has_reranker)

        routed = route_query(query, stats)
        decision = apply_rewrite_override(routed, query)
        validate_route(decision)
        decision = _with_global_switches(decision, enable_agentic, enable_reranking)

        trace = state.get("trace")
        if trace is not None:
            guard_monitor(
                trace.update_config,
                strategy=decision.strategy.value,
                used_tool_fallback=decision.strategy.skips_retrieval,
            )
        return {
            "query": query,
            "corpus_stats": stats,
            "route": decision,
            "retrieval_config": decision.config,
            "telemetry_events": [
                {
                    "event": "route_selected",
                    "strategy": decision.strategy.value,
                    "intent": decision.intent,
                    "overridden": decision.overridden,
                    "item_count": stats.item_count,
                    "duration_ms": _duration_ms(started),
                }
            ],
        }

    return _node


def make_experiment_node(enabled: bool, enabled_variants: tuple[str, ...]):
    def _node(state: OrchestrationState) -> OrchestrationState:
        config = state.get("retrieval_config")
        if not enabled or config is None:
            return {}

        variant = assign_variant(state.get("user_id", ""), state.get("org_id", ""))
        if not is_variant_enabled(variant.variant_id, enabled_variants):
            variant = get_experiment_variant(CONTROL_VARIANT)
        adjusted = apply_variant(config, variant)

        trace = state.get("trace")
        if trace is not None:
            guard_monitor(
                trace.update_config,
                variant_id=variant.variant_id,
                use_hybrid=adjusted.use_hybrid,
                use_agentic=adjusted.use_agentic,
            )
        return {
            "variant": variant,
            "retrieval_config": adjusted,
            "telemetry_events": [
                {
                    "event": "experiment_assigned",
                    "variant": variant.variant_id,
                    "threshold": adjusted.threshold,
                    "max_chunks": adjusted.max_chunks,
                }
            ],
        }

    return _node


def make_cascade_node(backend: ContentSearchBackend, rung_timeout_seconds: float):
    async def _node(state: OrchestrationState) -> OrchestrationState:
        route = state.get("route")
        config = state.get("retrieval_config")
        if config is None and route is not None:
            config = get_retrieval_config(route)
        query = state.get("query")
        effective_query = (
            query.rewritten if query is not None else state.get("raw_query", "")
        )

        started = perf_counter()
        result = await run_cascade(
            effective_query,
            state.get("org_id", ""),
            config,
            backend,
            recording_ids=state.get("recording_ids"),
            trace=state.get("trace"),
            rung_timeout_seconds=rung_timeout_seconds,
            deadline=state.get("deadline"),
        )
        errors = [
            f"{attempt.method.value}: {attempt.error}"
            for attempt in result.attempts
            if attempt.error
        ]
        return {
            "cascade": result,
            "errors": errors,
            "telemetry_events": [
                {
                    "event": "cascade_completed",
                    "attempts": result.attempt_count,
                    "methods": [attempt.method.value for attempt in result.attempts],
                    "final_threshold": result.final_threshold,
                    "sources_found": result.sources_found,
                    "duration_ms": _duration_ms(started),
                }
            ],
        }

    return _node


def make_finalize_node(logger: logging.Logger | None = None):
    def _node(state: OrchestrationState) -> OrchestrationState:
        cascade = state.get("cascade")
        stats = state.get("corpus_stats")
        item_count = stats.item_count if stats is not None else 0
        sources_found = cascade.sources_found if cascade is not None else 0

        alert = None
        if cascade is not None and should_alert_search_failure(sources_found, item_count):
            query = state.get("query")
            alert = emit_search_failure_alert(
                query=query.raw if query is not None else state.get("raw_query", ""),
                org_id=state.get("org_id", ""),
                corpus_item_count=item_count,
                retrieval_attempts=cascade.attempt_count,
                logger=logger,
            )

        trace = state.get("trace")
        if trace is not None:
            if alert is not None:
                guard_monitor(trace.update_config, search_failure_alerted=True)
            guard_monitor(
                trace.end_search,
                success=True,
                sources_found=sources_found,
                similarities=(
                    [chunk.similarity for chunk in cascade.context.sources]
                    if cascade is not None
                    else []
                ),
            )

        route = state.get("route")
        return {
            "search_failure_alert": alert,
            "telemetry_events": [
                {
                    "event": "orchestration_completed",
                    "strategy": route.strategy.value if route is not None else None,
                    "sources_found": sources_found,
                    "search_failure_alert": alert is not None,
                }
            ],
        }

    return _node


def _with_global_switches(
    decision: RouteDecision,
    enable_agentic: bool,
    enable_reranking: bool,
) -> RouteDecision:
    config = decision.config
    if config is None:
        return decision
    adjusted = config.model_copy(
        update={
            "use_agentic": config.use_agentic and enable_agentic,
            "use_reranking": config.use_reranking and enable_reranking,
        }
    )
    return decision.model_copy(update={"config": adjusted})


def _duration_ms(started: float) -> int:
    return int((perf_counter() - started) * 1000)
