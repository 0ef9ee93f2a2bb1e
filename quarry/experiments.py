"""Deterministic A/B assignment for retrieval experiments.

Variants are bucketed per organization so a whole team shares one search
behavior for the lifetime of an experiment epoch. Assignment is a pure hash
of the identifiers; nothing is stored.
"""

from __future__ import annotations

import json
import logging
import math
from statistics import NormalDist

from quarry.config import DEFAULT_SEARCH_VARIANTS
from quarry.models import ExperimentVariant, RetrievalConfig

LOGGER = logging.getLogger(__name__)

DEFAULT_EXPERIMENT = "search_experiment_v1"
BUCKET_COUNT = 100

VARIANTS: dict[str, ExperimentVariant] = {
    "control": ExperimentVariant(
        variant_id="control",
        threshold_override=0.7,
        max_chunks_override=10,
        use_hybrid_override=False,
        use_agentic_override=False,
        description="Control group: fixed 0.7 threshold, vector search first",
    ),
    "lower_threshold": ExperimentVariant(
        variant_id="lower_threshold",
        threshold_override=0.5,
        max_chunks_override=12,
        use_hybrid_override=False,
        use_agentic_override=False,
        description="Lower threshold: fixed 0.5 threshold for improved recall",
    ),
    "hybrid_first": ExperimentVariant(
        variant_id="hybrid_first",
        threshold_override=0.5,
        max_chunks_override=12,
        use_hybrid_override=True,
        use_agentic_override=False,
        description="Hybrid first: vector and keyword search from the start",
    ),
    "aggressive_recall": ExperimentVariant(
        variant_id="aggressive_recall",
        threshold_override=0.4,
        max_chunks_override=15,
        use_hybrid_override=True,
        use_agentic_override=False,
        description="Aggressive recall: 0.4 threshold, hybrid search, more results",
    ),
}
# Upper bucket bound (exclusive) per variant, in assignment order.
BUCKET_BOUNDS = (
    ("control", 25),
    ("lower_threshold", 50),
    ("hybrid_first", 75),
    ("aggressive_recall", 100),
)


def assign_variant(
    user_id: str,
    org_id: str,
    *,
    experiment: str = DEFAULT_EXPERIMENT,
) -> ExperimentVariant:
    _ = user_id
    bucket = djb2_hash(f"{org_id}:{experiment}") % BUCKET_COUNT
    for variant_id, upper_bound in BUCKET_BOUNDS:
        if bucket < upper_bound:
            return VARIANTS[variant_id]
    return VARIANTS["control"]


def get_experiment_variant(variant_id: str) -> ExperimentVariant:
    try:
        return VARIANTS[variant_id]
    except KeyError as exc:
        raise ValueError(f"Unknown search variant: {variant_id}") from exc


def apply_variant(
    config: RetrievalConfig,
    variant: ExperimentVariant,
) -> RetrievalConfig:
    overrides: dict[str, object] = {}
    if variant.threshold_override is not None:
        overrides["threshold"] = variant.threshold_override
    if variant.max_chunks_override is not None:
        overrides["max_chunks"] = variant.max_chunks_override
    if variant.use_hybrid_override is not None:
        overrides["use_hybrid"] = variant.use_hybrid_override
    if variant.use_agentic_override is not None:
        overrides["use_agentic"] = variant.use_agentic_override
    if not overrides:
        return config
    return config.model_copy(update=overrides)


def all_variants() -> list[str]:
    return [variant_id for variant_id, _ in BUCKET_BOUNDS]


def variant_distribution() -> dict[str, float]:
    distribution: dict[str, float] = {}
    lower_bound = 0
    for variant_id, upper_bound in BUCKET_BOUNDS:
        distribution[variant_id] = (upper_bound - lower_bound) / BUCKET_COUNT
        lower_bound = upper_bound
    return distribution


def is_variant_enabled(
    variant_id: str,
    enabled_variants: tuple[str, ...] = DEFAULT_SEARCH_VARIANTS,
) -> bool:
    return variant_id in enabled_variants


def calculate_sample_size(
    baseline: float,
    mde: float,
    alpha: float = 0.05,
    power: float = 0.8,
) -> int:
    """Per-variant sample size for a two-proportion test.

    Uses the normal approximation; ``alpha`` and ``power`` map to z-scores
    of roughly 1.96 and 0.84 at their defaults.
    """
    if mde <= 0:
        raise ValueError("mde must be positive")
    normal = NormalDist()
    z_alpha = normal.inv_cdf(1 - alpha / 2)
    z_beta = normal.inv_cdf(power)
    p1 = baseline
    p2 = baseline + mde
    p_avg = (p1 + p2) / 2
    numerator = ((z_alpha + z_beta) ** 2) * 2 * p_avg * (1 - p_avg)
    denominator = (p2 - p1) ** 2
    return math.ceil(numerator / denominator)


def log_experiment_result(
    variant: ExperimentVariant,
    query: str,
    org_id: str,
    user_id: str,
    *,
    sources_found: int,
    retrieval_attempts: int,
    avg_similarity: float,
    time_ms: int,
    logger: logging.Logger | None = None,
) -> None:
    active_logger = logger or LOGGER
    payload = {
        "variant": variant.variant_id,
        "query": query[:50],
        "org_id": org_id[:8],
        "user_id": user_id[:8],
        "sources_found": sources_found,
        "retrieval_attempts": retrieval_attempts,
        "avg_similarity": round(avg_similarity, 3),
        "time_ms": time_ms,
    }
    active_logger.info("experiment_result %s", json.dumps(payload, sort_keys=True))


def djb2_hash(value: str) -> int:
    hashed = 5381
    for char in value:
        hashed = ((hashed << 5) + hashed + ord(char)) & 0xFFFFFFFF
    if hashed >= 0x80000000:
        hashed -= 0x100000000
    return abs(hashed)

