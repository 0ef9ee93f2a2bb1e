from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Any
from uuid import uuid4

from quarry.config import AppConfig, reranking_available, select_supabase_retrieval_key
from quarry.corpus_stats import (
    CorpusStatsSource,
    SeedCorpusStatsSource,
    SupabaseCorpusStatsSource,
)
from quarry.experiments import log_experiment_result
from quarry.models import (
    ExperimentVariant,
    Query,
    RetrievalDiagnostics,
    RetrievalResponse,
    RetrievalStrategy,
    RouteDecision,
)
from quarry.monitoring import SearchMonitor, SearchTrace, guard_monitor, start_search
from quarry.orchestration import (
    build_graph_invoke_config,
    build_orchestration_graph,
    create_initial_state,
    emit_orchestration_telemetry,
)
from quarry.retrievers.backend import ContentSearchBackend, FallbackSearchBackend
from quarry.retrievers.cascade import CascadeResult
from quarry.retrievers.context import empty_context, similarity_stats
from quarry.retrievers.seed_backend import SeedSearchBackend
from quarry.retrievers.supabase_backend import SupabaseSearchBackend

LOGGER = logging.getLogger(__name__)


class RetrievalService:
    def __init__(
        self,
        config: AppConfig,
        backend: ContentSearchBackend | None = None,
        stats_source: CorpusStatsSource | None = None,
        monitor: SearchMonitor | None = None,
    ) -> None:
        self._config = config
        self._seed_backend = SeedSearchBackend(config.seed_corpus_path)
        self._backend = backend or _build_search_backend(config, self._seed_backend)
        self._stats_source = stats_source or _build_stats_source(config, self._seed_backend)
        if monitor is None and config.enable_search_monitoring:
            monitor = SearchMonitor(buffer_size=config.search_metrics_buffer_size)
        self._monitor = monitor
        self._orchestration_graph = build_orchestration_graph(
            backend=self._backend,
            stats_source=self._stats_source,
            has_reranker=reranking_available(config),
            enable_agentic=config.enable_agentic_rag,
            enable_reranking=config.enable_reranking,
            enable_experiments=config.enable_search_ab_testing,
            enabled_variants=config.enabled_search_variants,
            rung_timeout_seconds=config.rung_timeout_seconds,
        )

    @property
    def monitor(self) -> SearchMonitor | None:
        return self._monitor

    async def run_query(
        self,
        query: str,
        org_id: str,
        user_id: str,
        recording_ids: list[str] | tuple[str, ...] | None = None,
    ) -> RetrievalResponse:
        request_id = uuid4().hex
        started = perf_counter()
        deadline = (
            asyncio.get_running_loop().time() + self._config.request_timeout_seconds
        )
        trace: SearchTrace | None = None
        if self._monitor is not None:
            trace = guard_monitor(start_search, request_id, query, org_id, user_id)

        state = create_initial_state(
            query,
            org_id=org_id,
            user_id=user_id,
            request_id=request_id,
            recording_ids=tuple(recording_ids) if recording_ids else None,
            deadline=deadline,
            trace=trace,
        )
        try:
            result_state = await self._orchestration_graph.ainvoke(
                state,
                config=build_graph_invoke_config(request_id),
            )
        except Exception:
            LOGGER.exception(
                "Retrieval orchestration failed",
                extra={"request_id": request_id, "org_id": org_id},
            )
            if trace is not None:
                guard_monitor(trace.end_search, success=False)
            raise
        finally:
            self._submit(trace)

        emit_orchestration_telemetry(result_state)
        response = _response_from_state(query, result_state)
        variant = result_state.get("variant")
        if isinstance(variant, ExperimentVariant):
            log_experiment_result(
                variant,
                query,
                org_id,
                user_id,
                sources_found=response.diagnostics.sources_found,
                retrieval_attempts=response.diagnostics.attempt_count,
                avg_similarity=response.diagnostics.avg_similarity,
                time_ms=int((perf_counter() - started) * 1000),
            )
        return response

    def _submit(self, trace: SearchTrace | None) -> None:
        if trace is None or self._monitor is None:
            return
        record = guard_monitor(trace.end_search, success=False)
        if record is not None:
            guard_monitor(self._monitor.submit, record)


def _response_from_state(raw_query: str, state: dict[str, Any]) -> RetrievalResponse:
    query = state.get("query")
    effective_query = query.rewritten if isinstance(query, Query) else raw_query
    route = _route_from_state(state)
    cascade = state.get("cascade")

    if isinstance(cascade, CascadeResult):
        context = cascade.context
        attempts = list(cascade.attempts)
        final_threshold: float | None = cascade.final_threshold
    else:
        context = empty_context(effective_query)
        attempts = []
        final_threshold = None

    avg_similarity, _, _ = similarity_stats(context.sources)
    variant = state.get("variant")
    return RetrievalResponse(
        query=raw_query,
        effective_query=effective_query,
        strategy=route.strategy,
        route_reason=route.reasoning,
        context=context,
        attempts=attempts,
        diagnostics=RetrievalDiagnostics(
            strategy_used=route.strategy,
            attempt_count=len(attempts),
            final_threshold=final_threshold,
            avg_similarity=round(avg_similarity, 4),
            sources_found=context.total_chunks,
            variant_id=(
                variant.variant_id if isinstance(variant, ExperimentVariant) else None
            ),
            query_rewritten=isinstance(query, Query) and query.was_rewritten,
        ),
    )


def _route_from_state(state: dict[str, Any]) -> RouteDecision:
    route = state.get("route")
    if isinstance(route, RouteDecision):
        return route
    return RouteDecision(
        strategy=RetrievalStrategy.STANDARD_SEARCH,
        config=None,
        intent="search",
        reasoning="Routing fallback: no route decision recorded.",
    )


def _supabase_credentials(config: AppConfig) -> tuple[str, str] | None:
    if not config.use_real_supabase:
        return None
    supabase_key, _ = select_supabase_retrieval_key(config)
    if not config.supabase_url or not supabase_key:
        LOGGER.warning(
            "Supabase retrieval requested but not configured; using seeded corpus",
            extra={"allow_seeded_fallback": config.allow_seeded_fallback},
        )
        return None
    return config.supabase_url, supabase_key


def _build_search_backend(
    config: AppConfig,
    seed_backend: SeedSearchBackend,
) -> ContentSearchBackend:
    credentials = _supabase_credentials(config)
    if credentials is None:
        return seed_backend
    supabase_url, supabase_key = credentials
    return FallbackSearchBackend(
        primary=SupabaseSearchBackend(
            supabase_url=supabase_url,
            supabase_key=supabase_key,
        ),
        fallback=seed_backend,
        allow_fallback=config.allow_seeded_fallback,
    )


def _build_stats_source(
    config: AppConfig,
    seed_backend: SeedSearchBackend,
) -> CorpusStatsSource:
    has_reranker = reranking_available(config)
    credentials = _supabase_credentials(config)
    if credentials is None:
        return SeedCorpusStatsSource(
            counter=seed_backend.count_items,
            has_reranker=has_reranker,
            item_count_override=config.seed_corpus_item_count,
        )
    supabase_url, supabase_key = credentials
    return SupabaseCorpusStatsSource(
        supabase_url=supabase_url,
        supabase_key=supabase_key,
        has_reranker=has_reranker,
    )
