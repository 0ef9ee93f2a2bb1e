from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_SEARCH_VARIANTS = (
    "control",
    "lower_threshold",
    "hybrid_first",
    "aggressive_recall",
)


@dataclass(frozen=True)
class AppConfig:
    supabase_url: str | None
    supabase_key: str | None
    supabase_service_role_key: str | None
    use_real_supabase: bool
    allow_seeded_fallback: bool
    allow_service_role_for_retrieval: bool
    enable_agentic_rag: bool
    enable_reranking: bool
    reranker_configured: bool
    enable_search_monitoring: bool
    enable_search_ab_testing: bool
    enabled_search_variants: tuple[str, ...]
    request_timeout_seconds: float
    rung_timeout_seconds: float
    search_metrics_buffer_size: int
    seed_corpus_path: str
    seed_corpus_item_count: int | None


def _read_optional_env(name: str) -> str | None:
    value = os.getenv(name)
    if not value:
        return None
    stripped = value.strip()
    return stripped if stripped else None


def _read_bool_env(name: str, default: bool) -> bool:
    value = _read_optional_env(name)
    if value is None:
        return default
    normalized = value.lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _read_int_env(name: str, default: int) -> int:
    value = _read_optional_env(name)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_optional_count_env(name: str) -> int | None:
    value = _read_optional_env(name)
    if value is None:
        return None
    try:
        parsed = int(value)
    except ValueError:
        return None
    return parsed if parsed >= 0 else None


def _read_seconds_env(name: str, default: float) -> float:
    value = _read_optional_env(name)
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_list_env(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = _read_optional_env(name)
    if value is None:
        return default
    items = tuple(item.strip() for item in value.split(",") if item.strip())
    return items if items else default


def load_config() -> AppConfig:
    return AppConfig(
        supabase_url=_read_optional_env("SUPABASE_URL"),
        supabase_key=_read_optional_env("SUPABASE_KEY"),
        supabase_service_role_key=_read_optional_env("SUPABASE_SERVICE_ROLE_KEY"),
        use_real_supabase=_read_bool_env("USE_REAL_SUPABASE", default=False),
        allow_seeded_fallback=_read_bool_env("ALLOW_SEEDED_FALLBACK", default=True),
        allow_service_role_for_retrieval=_read_bool_env(
            "ALLOW_SERVICE_ROLE_FOR_RETRIEVAL", default=False
        ),
        enable_agentic_rag=_read_bool_env("ENABLE_AGENTIC_RAG", default=True),
        enable_reranking=_read_bool_env("ENABLE_RERANKING", default=True),
        reranker_configured=_read_bool_env("RERANKER_CONFIGURED", default=False),
        enable_search_monitoring=_read_bool_env(
            "ENABLE_SEARCH_MONITORING", default=True
        ),
        enable_search_ab_testing=_read_bool_env(
            "ENABLE_SEARCH_AB_TESTING", default=False
        ),
        enabled_search_variants=_read_list_env(
            "ENABLED_SEARCH_VARIANTS", DEFAULT_SEARCH_VARIANTS
        ),
        request_timeout_seconds=_read_seconds_env(
            "REQUEST_TIMEOUT_SECONDS", default=30.0
        ),
        rung_timeout_seconds=_read_seconds_env("RUNG_TIMEOUT_SECONDS", default=8.0),
        search_metrics_buffer_size=_read_int_env(
            "SEARCH_METRICS_BUFFER_SIZE", default=100
        ),
        seed_corpus_path=os.getenv(
            "SEED_CORPUS_PATH", "data/seed/content_chunks.json"
        ),
        seed_corpus_item_count=_read_optional_count_env("SEED_CORPUS_ITEM_COUNT"),
    )


def select_supabase_retrieval_key(config: AppConfig) -> tuple[str | None, str | None]:
    if config.supabase_key:
        return config.supabase_key, "SUPABASE_KEY"
    if config.allow_service_role_for_retrieval and config.supabase_service_role_key:
        return config.supabase_service_role_key, "SUPABASE_SERVICE_ROLE_KEY"
    return None, None


def reranking_available(config: AppConfig) -> bool:
    return config.enable_reranking and config.reranker_configured


def normalize_header_id(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    return normalized if normalized else None
