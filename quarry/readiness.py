from __future__ import annotations

from typing import Any

from quarry.config import AppConfig, reranking_available, select_supabase_retrieval_key
from quarry.retrievers.seed_backend import load_seed_chunks


def build_readiness_report(config: AppConfig) -> dict[str, Any]:
    search_backend = _search_backend_readiness(config)
    return {
        "ready": bool(search_backend["ready"]),
        "connectors": {"supabase": search_backend},
        "seed_corpus": _seed_corpus_readiness(config),
        "features": {
            "agentic_rag": config.enable_agentic_rag,
            "reranking": reranking_available(config),
            "search_monitoring": config.enable_search_monitoring,
            "search_ab_testing": config.enable_search_ab_testing,
            "enabled_search_variants": list(config.enabled_search_variants),
        },
        "retriever_mode": {
            "use_real_supabase": config.use_real_supabase,
            "allow_seeded_fallback": config.allow_seeded_fallback,
        },
    }


def _search_backend_readiness(config: AppConfig) -> dict[str, Any]:
    retrieval_key, key_source = select_supabase_retrieval_key(config)
    missing_reason = "missing_SUPABASE_URL_or_retrieval_key"
    if not config.use_real_supabase:
        return {
            "ready": True,
            "mode": "seeded_only",
            "reason": "supabase_real_mode_disabled",
        }
    if config.supabase_url and retrieval_key:
        return {
            "ready": True,
            "mode": "real",
            "reason": f"configured_with_{key_source}",
        }
    if config.allow_seeded_fallback:
        return {
            "ready": True,
            "mode": "seeded_fallback",
            "reason": missing_reason,
        }
    return {
        "ready": False,
        "mode": "misconfigured",
        "reason": missing_reason,
    }


def _seed_corpus_readiness(config: AppConfig) -> dict[str, Any]:
    chunks = load_seed_chunks(config.seed_corpus_path)
    return {
        "path": config.seed_corpus_path,
        "chunk_count": len(chunks),
        "item_count": len({chunk["content_id"] for chunk in chunks}),
    }
