from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RewriteKind(str, Enum):
    NONE = "none"
    META_QUESTION_EXPANSION = "meta_question_expansion"


class RetrievalStrategy(str, Enum):
    STANDARD_SEARCH = "standard_search"
    DIRECT_LISTING = "direct_listing"
    TOPIC_OVERVIEW = "topic_overview"

    @property
    def skips_retrieval(self) -> bool:
        return self in {
            RetrievalStrategy.DIRECT_LISTING,
            RetrievalStrategy.TOPIC_OVERVIEW,
        }


class SearchMethod(str, Enum):
    SEMANTIC_DEFAULT = "semantic_default"
    THRESHOLD_LOWERED = "threshold_lowered"
    HYBRID_FORCED = "hybrid_forced"
    KEYWORD_FALLBACK = "keyword_fallback"


class SourceKind(str, Enum):
    SEMANTIC = "semantic"
    HYBRID = "hybrid"


class Query(BaseModel):
    model_config = ConfigDict(frozen=True)

    raw: str
    rewritten: str
    was_rewritten: bool = False
    rewrite_kind: RewriteKind = RewriteKind.NONE
    topic: str | None = None


class CorpusStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    item_count: int = Field(default=0, ge=0)
    has_summaries: bool = False
    has_reranker: bool = False


class RetrievalConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    threshold: float = Field(ge=0.0, le=1.0)
    max_chunks: int = Field(ge=1)
    use_agentic: bool = False
    use_hierarchical: bool = False
    use_reranking: bool = False
    use_hybrid: bool = False


class RouteDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    strategy: RetrievalStrategy
    config: RetrievalConfig | None
    intent: str
    reasoning: str
    overridden: bool = False


class ChunkResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    content_id: str
    content_title: str
    chunk_id: str
    text: str
    similarity: float
    time_range: str | None = None
    timestamp_seconds: float | None = None
    has_visual_context: bool = False
    visual_description: str | None = None
    source_kind: SourceKind = SourceKind.SEMANTIC


class RetrievalContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    query: str
    rendered_text: str
    sources: tuple[ChunkResult, ...] = ()
    total_chunks: int = 0

    @model_validator(mode="after")
    def _check_total_chunks(self) -> RetrievalContext:
        if len(self.sources) != self.total_chunks:
            raise ValueError("total_chunks must equal the number of sources")
        return self


class RetrievalAttempt(BaseModel):
    model_config = ConfigDict(frozen=True)

    attempt_number: int = Field(ge=1, le=4)
    method: SearchMethod
    threshold_used: float
    result_count: int = Field(ge=0)
    used_hybrid: bool = False
    error: str | None = None
    timed_out: bool = False


class ExperimentVariant(BaseModel):
    model_config = ConfigDict(frozen=True)

    variant_id: str
    threshold_override: float | None = None
    max_chunks_override: int | None = None
    use_hybrid_override: bool | None = None
    use_agentic_override: bool | None = None
    description: str = ""


class RetrievalDiagnostics(BaseModel):
    strategy_used: RetrievalStrategy
    attempt_count: int
    final_threshold: float | None
    avg_similarity: float
    sources_found: int
    variant_id: str | None = None
    query_rewritten: bool = False


class QueryRequest(BaseModel):
    query: str = Field(min_length=1)
    recording_ids: list[str] | None = None


class RetrievalResponse(BaseModel):
    query: str
    effective_query: str
    strategy: RetrievalStrategy
    route_reason: str
    context: RetrievalContext
    attempts: list[RetrievalAttempt]
    diagnostics: RetrievalDiagnostics
