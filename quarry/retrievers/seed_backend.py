from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from quarry.models import ChunkResult, SourceKind
from quarry.retrievers.backend import (
    HybridSearchOptions,
    SemanticSearchOptions,
    SemanticSearchResult,
)
from quarry.retrievers.context import assemble_context
from quarry.retrievers.scoring import keyword_hit, overlap_score

REQUIRED_SEED_KEYS = {"content_id", "content_title", "chunk_id", "text"}
HYBRID_SEMANTIC_WEIGHT = 0.6
HYBRID_KEYWORD_WEIGHT = 0.4


class SeedSearchBackend:
    """Token-overlap search over a JSON seed corpus.

    Stands in for the vector store in development and tests; similarity is
    the share of significant query tokens found in a chunk.
    """

    def __init__(self, corpus_path: str) -> None:
        self._corpus_path = corpus_path

    async def semantic_search(
        self,
        query: str,
        org_id: str,
        options: SemanticSearchOptions,
    ) -> SemanticSearchResult:
        scored = [
            (overlap_score(query, row["text"]), row)
            for row in self._rows(org_id, options.recording_ids)
        ]
        chunks = _top_chunks(
            scored,
            threshold=options.threshold,
            limit=options.max_chunks,
            source_kind=SourceKind.SEMANTIC,
        )
        context = assemble_context(query, chunks)
        return SemanticSearchResult(
            context=context.rendered_text,
            sources=context.sources,
            total_chunks=context.total_chunks,
        )

    async def hybrid_search(
        self,
        query: str,
        options: HybridSearchOptions,
    ) -> list[ChunkResult]:
        scored = [
            (_hybrid_score(query, row["text"]), row)
            for row in self._rows(options.org_id, options.recording_ids)
        ]
        return _top_chunks(
            scored,
            threshold=options.threshold,
            limit=options.limit,
            source_kind=SourceKind.HYBRID,
        )

    def count_items(self, org_id: str) -> int:
        return len({row["content_id"] for row in self._rows(org_id, None)})

    def _rows(
        self,
        org_id: str,
        recording_ids: tuple[str, ...] | None,
    ) -> list[dict[str, Any]]:
        rows = load_seed_chunks(self._corpus_path)
        scoped = [row for row in rows if row.get("org_id") in (None, org_id)]
        if recording_ids:
            allowed = set(recording_ids)
            scoped = [row for row in scoped if row["content_id"] in allowed]
        return scoped


def load_seed_chunks(path: str) -> list[dict[str, Any]]:
    seed_file = Path(path)
    if not seed_file.exists():
        return []
    raw = json.loads(seed_file.read_text(encoding="utf-8"))
    if not isinstance(raw, list):
        return []
    return [
        item
        for item in raw
        if isinstance(item, dict) and REQUIRED_SEED_KEYS.issubset(item)
    ]


def _hybrid_score(query: str, text: str) -> float:
    keyword = 1.0 if keyword_hit(query, text) else 0.0
    blended = (HYBRID_SEMANTIC_WEIGHT * overlap_score(query, text)) + (
        HYBRID_KEYWORD_WEIGHT * keyword
    )
    return round(blended, 6)


def _top_chunks(
    scored: list[tuple[float, dict[str, Any]]],
    threshold: float,
    limit: int,
    source_kind: SourceKind,
) -> list[ChunkResult]:
    ranked = sorted(
        (item for item in scored if item[0] > 0 and item[0] >= threshold),
        key=lambda item: item[0],
        reverse=True,
    )
    return [_seed_chunk(row, score, source_kind) for score, row in ranked[:limit]]


def _seed_chunk(
    row: dict[str, Any],
    score: float,
    source_kind: SourceKind,
) -> ChunkResult:
    return ChunkResult(
        content_id=str(row["content_id"]),
        content_title=str(row["content_title"]),
        chunk_id=str(row["chunk_id"]),
        text=str(row["text"]),
        similarity=round(score, 6),
        time_range=row.get("time_range"),
        timestamp_seconds=row.get("timestamp_seconds"),
        has_visual_context=bool(row.get("has_visual_context", False)),
        visual_description=row.get("visual_description"),
        source_kind=source_kind,
    )
