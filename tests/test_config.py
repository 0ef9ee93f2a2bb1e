from dataclasses import replace

import pytest

from quarry.config import (
    DEFAULT_SEARCH_VARIANTS,
    AppConfig,
    load_config,
    normalize_header_id,
    reranking_available,
    select_supabase_retrieval_key,
)

_ENV_NAMES = (
    "SUPABASE_URL",
    "SUPABASE_KEY",
    "SUPABASE_SERVICE_ROLE_KEY",
    "USE_REAL_SUPABASE",
    "ALLOW_SEEDED_FALLBACK",
    "ALLOW_SERVICE_ROLE_FOR_RETRIEVAL",
    "ENABLE_AGENTIC_RAG",
    "ENABLE_RERANKING",
    "RERANKER_CONFIGURED",
    "ENABLE_SEARCH_MONITORING",
    "ENABLE_SEARCH_AB_TESTING",
    "ENABLED_SEARCH_VARIANTS",
    "REQUEST_TIMEOUT_SECONDS",
    "RUNG_TIMEOUT_SECONDS",
    "SEARCH_METRICS_BUFFER_SIZE",
    "SEED_CORPUS_PATH",
    "SEED_CORPUS_ITEM_COUNT",
)


def _base_config() -> AppConfig:
    return AppConfig(
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
        seed_corpus_path="data/seed/content_chunks.json",
        seed_corpus_item_count=None,
    )


@pytest.fixture
def clean_env(monkeypatch):
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_load_config_defaults(clean_env) -> None:
    assert load_config() == _base_config()


def test_load_config_reads_environment(clean_env) -> None:
    clean_env.setenv("USE_REAL_SUPABASE", "yes")
    clean_env.setenv("SUPABASE_URL", " https://example.supabase.co ")
    clean_env.setenv("ENABLE_SEARCH_AB_TESTING", "1")
    clean_env.setenv("ENABLED_SEARCH_VARIANTS", "control, hybrid_first,,")
    clean_env.setenv("RUNG_TIMEOUT_SECONDS", "2.5")
    clean_env.setenv("SEARCH_METRICS_BUFFER_SIZE", "25")
    clean_env.setenv("SEED_CORPUS_ITEM_COUNT", "0")

    config = load_config()

    assert config.use_real_supabase is True
    assert config.supabase_url == "https://example.supabase.co"
    assert config.enable_search_ab_testing is True
    assert config.enabled_search_variants == ("control", "hybrid_first")
    assert config.rung_timeout_seconds == 2.5
    assert config.search_metrics_buffer_size == 25
    assert config.seed_corpus_item_count == 0


def test_invalid_values_fall_back_to_defaults(clean_env) -> None:
    clean_env.setenv("ENABLE_RERANKING", "maybe")
    clean_env.setenv("REQUEST_TIMEOUT_SECONDS", "-3")
    clean_env.setenv("SEARCH_METRICS_BUFFER_SIZE", "lots")
    clean_env.setenv("SEED_CORPUS_ITEM_COUNT", "-1")
    clean_env.setenv("ENABLED_SEARCH_VARIANTS", " , ")

    config = load_config()

    assert config.enable_reranking is True
    assert config.request_timeout_seconds == 30.0
    assert config.search_metrics_buffer_size == 100
    assert config.seed_corpus_item_count is None
    assert config.enabled_search_variants == DEFAULT_SEARCH_VARIANTS


def test_retrieval_key_prefers_anon_key() -> None:
    config = replace(
        _base_config(),
        supabase_key="anon",
        supabase_service_role_key="service",
        allow_service_role_for_retrieval=True,
    )

    assert select_supabase_retrieval_key(config) == ("anon", "SUPABASE_KEY")


def test_service_role_key_requires_explicit_opt_in() -> None:
    config = replace(_base_config(), supabase_service_role_key="service")

    assert select_supabase_retrieval_key(config) == (None, None)
    assert select_supabase_retrieval_key(
        replace(config, allow_service_role_for_retrieval=True)
    ) == ("service", "SUPABASE_SERVICE_ROLE_KEY")


def test_reranking_requires_flag_and_configured_reranker() -> None:
    assert reranking_available(_base_config()) is False
    assert reranking_available(replace(_base_config(), reranker_configured=True)) is True
    assert (
        reranking_available(
            replace(_base_config(), reranker_configured=True, enable_reranking=False)
        )
        is False
    )


@pytest.mark.parametrize(
    ("value", "expected"),
    [(" org-1 ", "org-1"), ("", None), ("   ", None), (None, None), (42, None)],
)
def test_normalize_header_id(value: object, expected: str | None) -> None:
    assert normalize_header_id(value) == expected
