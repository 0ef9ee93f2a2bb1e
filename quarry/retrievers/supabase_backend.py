from __future__ import annotations

import asyncio
from typing import Any

from supabase import Client, create_client

from quarry.models import ChunkResult, SourceKind
from quarry.retrievers.backend import (
    HybridSearchOptions,
    SemanticSearchOptions,
    SemanticSearchResult,
)
from quarry.retrievers.context import assemble_context, chunks_from_rows

SEMANTIC_SEARCH_RPC = "match_content_chunks"
HYBRID_SEARCH_RPC = "hybrid_search_chunks"


class SupabaseSearchBackend:
    """Search primitives backed by Supabase RPC functions.

    Both functions embed the query text server-side; this client only passes
    the text, scoping filters, threshold and limit.
    """

    def __init__(
        self,
        supabase_url: str,
        supabase_key: str,
        client: Client | None = None,
    ) -> None:
        self._client: Client = client or create_client(supabase_url, supabase_key)

    async def semantic_search(
        self,
        query: str,
        org_id: str,
        options: SemanticSearchOptions,
    ) -> SemanticSearchResult:
        rows = await asyncio.to_thread(
            self._call_rpc,
            SEMANTIC_SEARCH_RPC,
            {
                "query_text": query,
                "filter_org_id": org_id,
                "match_threshold": options.threshold,
                "match_count": options.max_chunks,
                "filter_recording_ids": _id_list(options.recording_ids),
                "search_mode": (
                    "hierarchical" if options.use_hierarchical else "standard"
                ),
                "rerank": options.use_reranking,
            },
        )
        chunks = chunks_from_rows(rows, SourceKind.SEMANTIC)[: options.max_chunks]
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
        rows = await asyncio.to_thread(
            self._call_rpc,
            HYBRID_SEARCH_RPC,
            {
                "query_text": query,
                "filter_org_id": options.org_id,
                "match_threshold": options.threshold,
                "match_count": options.limit,
                "filter_recording_ids": _id_list(options.recording_ids),
            },
        )
        return chunks_from_rows(rows, SourceKind.HYBRID)[: options.limit]

    def _call_rpc(self, name: str, params: dict[str, Any]) -> Any:
        response = self._client.rpc(name, params).execute()
        return response.data


def _id_list(recording_ids: tuple[str, ...] | None) -> list[str] | None:
    if not recording_ids:
        return None
    return list(recording_ids)
