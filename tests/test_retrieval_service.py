import logging
from dataclasses import replace
from pathlib import Path

import pytest

from quarry.config import DEFAULT_SEARCH_VARIANTS, AppConfig
from quarry.experiments import assign_variant
from quarry.models import RetrievalStrategy, SearchMethod
from quarry.monitoring import SearchMonitor
from quarry.service import RetrievalService

SEED_PATH = str(Path(__file__).resolve().parents[1] / "data" / "seed" / "content_chunks.json")


def _config(**overrides: object) -> AppConfig:
    config = AppConfig(
        supabase_url=None,
        supabase_key=None,
        supabase_service_role_key=None,
        use_real_supabase=False,
        allow_seeded_fallback=True,
        allow_service_role_for_retrieval=False,
        enable_agentic_rag=True,
        enable_reranking=True,
        reranker_configured=False,
        enable_search_monitoring=True,
        enable_search_ab_testing=False,
        enabled_search_variants=DEFAULT_SEARCH_VARIANTS,
        request_timeout_seconds=30.0,
        rung_timeout_seconds=8.0,
        search_metrics_buffer_size=100,
        seed_corpus_path=SEED_PATH,
        seed_corpus_item_count=None,
    )
    return replace(config, **overrides)


@pytest.mark.asyncio
async def test_service_answers_from_seed_corpus() -> None:
    monitor = SearchMonitor()
    service = RetrievalService(_config(), monitor=monitor)

    response = await service.run_query("What is the login process?", "org-1", "user-1")

    assert response.strategy == RetrievalStrategy.STANDARD_SEARCH
    assert response.effective_query == "What is the login process?"
    assert [chunk.chunk_id for chunk in response.context.sources] == ["rec-onboarding-01#0"]
    assert response.context.rendered_text.startswith("[1] Customer Portal Onboarding")
    assert response.diagnostics.attempt_count == 1
    assert response.diagnostics.final_threshold == 0.5
    assert response.diagnostics.sources_found == 1

    records = monitor.recent()
    assert len(records) == 1
    assert records[0].success is True
    assert records[0].strategy == "standard_search"
    assert records[0].threshold_final == 0.5
    assert records[0].attempts == 1


@pytest.mark.asyncio
async def test_listing_question_skips_retrieval() -> None:
    monitor = SearchMonitor()
    service = RetrievalService(_config(), monitor=monitor)

    response = await service.run_query("List my recordings", "org-1", "user-1")

    assert response.strategy == RetrievalStrategy.DIRECT_LISTING
    assert response.attempts == []
    assert response.context.sources == ()
    assert response.context.total_chunks == 0
    assert response.diagnostics.final_threshold is None
    assert monitor.recent()[0].used_tool_fallback is True


@pytest.mark.asyncio
async def test_unanswerable_question_exhausts_cascade_and_alerts(caplog) -> None:
    monitor = SearchMonitor()
    service = RetrievalService(_config(), monitor=monitor)

    with caplog.at_level(logging.WARNING, logger="quarry.monitoring"):
        response = await service.run_query(
            "How should we configure the quantum flux capacitor?", "org-1", "user-1"
        )

    assert [attempt.method for attempt in response.attempts] == [
        SearchMethod.SEMANTIC_DEFAULT,
        SearchMethod.HYBRID_FORCED,
        SearchMethod.KEYWORD_FALLBACK,
    ]
    assert response.diagnostics.final_threshold == 0.3
    assert response.diagnostics.sources_found == 0
    record = monitor.recent()[0]
    assert record.success is False
    assert record.search_failure_alerted is True
    assert record.retried_with_hybrid is True
    assert record.retried_with_keyword is True
    assert any("SEARCH FAILURE ALERT" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_empty_library_does_not_alert(caplog) -> None:
    monitor = SearchMonitor()
    service = RetrievalService(_config(seed_corpus_item_count=0), monitor=monitor)

    with caplog.at_level(logging.WARNING, logger="quarry.monitoring"):
        response = await service.run_query(
            "How should we configure the quantum flux capacitor?", "org-1", "user-1"
        )

    assert response.diagnostics.sources_found == 0
    assert monitor.recent()[0].search_failure_alerted is False
    assert not any("SEARCH FAILURE ALERT" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_recording_ids_scope_the_search() -> None:
    service = RetrievalService(_config(), monitor=SearchMonitor())

    response = await service.run_query(
        "kubernetes readiness probes",
        "org-1",
        "user-1",
        recording_ids=["rec-kubernetes-03"],
    )

    assert response.context.sources
    assert {chunk.content_id for chunk in response.context.sources} == {
        "rec-kubernetes-03"
    }


@pytest.mark.asyncio
async def test_experiment_results_are_logged(caplog) -> None:
    service = RetrievalService(
        _config(enable_search_ab_testing=True), monitor=SearchMonitor()
    )

    with caplog.at_level(logging.INFO, logger="quarry.experiments"):
        response = await service.run_query(
            "What is the login process?", "org-1", "user-1"
        )

    expected = assign_variant("user-1", "org-1")
    assert response.diagnostics.variant_id == expected.variant_id
    lines = [m for m in caplog.messages if m.startswith("experiment_result")]
    assert len(lines) == 1
    assert f'"variant": "{expected.variant_id}"' in lines[0]


@pytest.mark.asyncio
async def test_monitoring_can_be_disabled() -> None:
    service = RetrievalService(_config(enable_search_monitoring=False))

    response = await service.run_query("What is the login process?", "org-1", "user-1")

    assert service.monitor is None
    assert response.diagnostics.sources_found == 1


@pytest.mark.asyncio
async def test_orchestration_failure_still_submits_one_record() -> None:
    class _ExplodingGraph:
        async def ainvoke(self, state, config=None):
            raise RuntimeError("graph failure")

    monitor = SearchMonitor()
    service = RetrievalService(_config(), monitor=monitor)
    service._orchestration_graph = _ExplodingGraph()

    with pytest.raises(RuntimeError, match="graph failure"):
        await service.run_query("What is the login process?", "org-1", "user-1")

    records = monitor.recent()
    assert len(records) == 1
    assert records[0].success is False


@pytest.mark.asyncio
async def test_monitor_failure_does_not_break_the_query(caplog) -> None:
    class _BrokenMonitor(SearchMonitor):
        def submit(self, record):
            raise RuntimeError("metrics store unavailable")

    service = RetrievalService(_config(), monitor=_BrokenMonitor())

    with caplog.at_level(logging.WARNING, logger="quarry.monitoring"):
        response = await service.run_query(
            "What is the login process?", "org-1", "user-1"
        )

    assert response.diagnostics.sources_found == 1
    assert any("Search monitor call failed" in r.getMessage() for r in caplog.records)
