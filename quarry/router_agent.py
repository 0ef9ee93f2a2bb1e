from __future__ import annotations

import re

from quarry.models import (
    CorpusStats,
    Query,
    RetrievalConfig,
    RetrievalStrategy,
    RouteDecision,
)

LISTING_PATTERNS = [
    r"^(?:list|show|display)(?: me)?(?: all)?(?: of)?(?: my| our| the)? "
    r"(?:recordings|videos|documents|notes|content|files|items)\b",
    r"^what (?:recordings|videos|documents|notes|files) (?:do|did) (?:i|we) have\b",
    r"^(?:which|what) (?:recordings|videos|documents|notes|files) are (?:there|available)\b",
    r"\b(?:my|our) (?:latest|recent|newest) (?:recordings|videos|documents|uploads)\b",
]
OVERVIEW_PATTERNS = [
    r"^what can you (?:help|tell|do)\b",
    r"^what (?:topics|subjects|themes|areas)\b",
    r"^what (?:do|did) you (?:know|have)\s*\??$",
    r"^what (?:kind|kinds|sort|type|types) of (?:content|recordings|things|topics)\b",
    r"^(?:give me |show me )?(?:an |a )?(?:overview|summary) of (?:everything|my library|all)\b",
    r"^(?:summarize|summarise) (?:everything|my library|all (?:my|of my) (?:recordings|content))\b",
    r"\bwhat(?:'s| is) in my library\b",
    r"^show me everything\b",
]
COMPARISON_HINTS = {"compare", "comparison", "versus", "vs", "difference", "differences"}
SHORT_QUERY_MAX_WORDS = 3
SHORT_QUERY_THRESHOLD = 0.5
RERANKER_THRESHOLD_BONUS = 0.05
RERANKER_THRESHOLD_CAP = 0.75
HIERARCHICAL_MIN_ITEMS = 20
NEUTRAL_DEFAULT_CONFIG = RetrievalConfig(threshold=0.7, max_chunks=10)


class RouteContractError(ValueError):
    pass


def route_query(query: Query, stats: CorpusStats) -> RouteDecision:
    normalized = query.raw.strip().lower()
    search_text = query.rewritten.strip().lower()

    if stats.item_count > 0 and _matches_any(normalized, OVERVIEW_PATTERNS):
        return RouteDecision(
            strategy=RetrievalStrategy.TOPIC_OVERVIEW,
            config=None,
            intent="overview",
            reasoning=(
                "Exploratory topic question over a populated library; "
                "defer to tool-based browsing"
            ),
        )
    if stats.item_count > 0 and _matches_any(normalized, LISTING_PATTERNS):
        return RouteDecision(
            strategy=RetrievalStrategy.DIRECT_LISTING,
            config=None,
            intent="listing",
            reasoning="Listing request over a populated library; defer to listing tools",
        )

    tokens = re.findall(r"[a-z0-9_']+", search_text)
    is_comparison = bool(
        set(re.findall(r"[a-z0-9_']+", normalized)).intersection(COMPARISON_HINTS)
    )
    is_multi_part = normalized.count("?") > 1
    config = _standard_config(
        stats=stats,
        word_count=len(tokens),
        use_agentic=is_comparison or is_multi_part,
    )
    return RouteDecision(
        strategy=RetrievalStrategy.STANDARD_SEARCH,
        config=config,
        intent="comparison" if is_comparison else "search",
        reasoning=_standard_reasoning(stats, len(tokens), config),
    )


def apply_rewrite_override(decision: RouteDecision, query: Query) -> RouteDecision:
    if not query.was_rewritten or not decision.strategy.skips_retrieval:
        return decision
    return RouteDecision(
        strategy=RetrievalStrategy.STANDARD_SEARCH,
        config=NEUTRAL_DEFAULT_CONFIG,
        intent="search",
        reasoning=(
            f"Meta-question rewritten to a content search; overrode "
            f"{decision.strategy.value} to standard_search"
        ),
        overridden=True,
    )


def get_retrieval_config(decision: RouteDecision) -> RetrievalConfig:
    validate_route(decision)
    if decision.config is None:
        raise RouteContractError(
            f"Strategy {decision.strategy.value} does not carry a retrieval config"
        )
    return decision.config


def validate_route(decision: RouteDecision) -> None:
    if decision.strategy == RetrievalStrategy.STANDARD_SEARCH:
        if decision.config is None:
            raise RouteContractError("standard_search route is missing its config")
        if not isinstance(decision.config, RetrievalConfig):
            raise RouteContractError("standard_search route has a malformed config")


def explain_route(decision: RouteDecision) -> str:
    lines = [
        f"Strategy: {decision.strategy.value}",
        f"Intent: {decision.intent}",
        f"Reasoning: {decision.reasoning}",
    ]
    if decision.overridden:
        lines.append("Override: rewritten meta-question forced standard_search")
    config = decision.config
    if config is None:
        lines.append("Retrieval: skipped (tool-based discovery)")
        return "\n".join(lines)
    lines.extend(
        [
            f"Threshold: {config.threshold:.2f}",
            f"Max chunks: {config.max_chunks}",
            f"Agentic: {config.use_agentic}",
            f"Hierarchical: {config.use_hierarchical}",
            f"Reranking: {config.use_reranking}",
        ]
    )
    return "\n".join(lines)


def _standard_config(
    stats: CorpusStats,
    word_count: int,
    use_agentic: bool,
) -> RetrievalConfig:
    threshold, max_chunks = _corpus_budget(stats.item_count)
    if stats.has_reranker:
        threshold = min(threshold + RERANKER_THRESHOLD_BONUS, RERANKER_THRESHOLD_CAP)
    if word_count <= SHORT_QUERY_MAX_WORDS:
        threshold = SHORT_QUERY_THRESHOLD
    return RetrievalConfig(
        threshold=round(threshold, 2),
        max_chunks=max_chunks,
        use_agentic=use_agentic,
        use_hierarchical=(
            stats.has_summaries and stats.item_count > HIERARCHICAL_MIN_ITEMS
        ),
        use_reranking=stats.has_reranker,
    )


def _corpus_budget(item_count: int) -> tuple[float, int]:
    if item_count < 10:
        return 0.5, 5
    if item_count < 50:
        return 0.6, 8
    return 0.7, 10


def _standard_reasoning(
    stats: CorpusStats,
    word_count: int,
    config: RetrievalConfig,
) -> str:
    parts = [f"Content search over {stats.item_count} items"]
    if word_count <= SHORT_QUERY_MAX_WORDS:
        parts.append("short query uses relaxed threshold")
    if stats.has_reranker:
        parts.append("reranker available")
    parts.append(f"threshold={config.threshold:.2f}")
    return ", ".join(parts)


def _matches_any(normalized: str, patterns: list[str]) -> bool:
    return any(re.search(pattern, normalized) for pattern in patterns)
