from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from quarry.models import ChunkResult

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SemanticSearchOptions:
    threshold: float
    max_chunks: int
    recording_ids: tuple[str, ...] | None = None
    use_agentic: bool = False
    use_reranking: bool = False
    use_hierarchical: bool = False


@dataclass(frozen=True)
class HybridSearchOptions:
    org_id: str
    limit: int
    threshold: float
    recording_ids: tuple[str, ...] | None = None


@dataclass(frozen=True)
class SemanticSearchResult:
    context: str
    sources: tuple[ChunkResult, ...]
    total_chunks: int


class ContentSearchBackend(Protocol):
    async def semantic_search(
        self,
        query: str,
        org_id: str,
        options: SemanticSearchOptions,
    ) -> SemanticSearchResult: ...

    async def hybrid_search(
        self,
        query: str,
        options: HybridSearchOptions,
    ) -> list[ChunkResult]: ...


class FallbackSearchBackend:
    """Routes calls to ``primary`` and retries on ``fallback`` when it raises.

    With ``allow_fallback`` off the primary error propagates, so the cascade
    records the rung as failed.
    """

    def __init__(
        self,
        primary: ContentSearchBackend,
        fallback: ContentSearchBackend,
        allow_fallback: bool,
    ) -> None:
        self._primary = primary
        self._fallback = fallback
        self._allow_fallback = allow_fallback

    async def semantic_search(
        self,
        query: str,
        org_id: str,
        options: SemanticSearchOptions,
    ) -> SemanticSearchResult:
        try:
            return await self._primary.semantic_search(query, org_id, options)
        except Exception as exc:
            if not self._allow_fallback:
                raise
            LOGGER.warning(
                "Primary search backend failed; using seeded corpus",
                extra={"operation": "semantic_search", "org_id": org_id},
                exc_info=exc,
            )
            return await self._fallback.semantic_search(query, org_id, options)

    async def hybrid_search(
        self,
        query: str,
        options: HybridSearchOptions,
    ) -> list[ChunkResult]:
        try:
            return await self._primary.hybrid_search(query, options)
        except Exception as exc:
            if not self._allow_fallback:
                raise
            LOGGER.warning(
                "Primary search backend failed; using seeded corpus",
                extra={"operation": "hybrid_search", "org_id": options.org_id},
                exc_info=exc,
            )
            return await self._fallback.hybrid_search(query, options)
