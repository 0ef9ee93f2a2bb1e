from __future__ import annotations

import asyncio
import logging
from typing import Callable, Protocol

from supabase import Client, create_client

from quarry.models import CorpusStats

LOGGER = logging.getLogger(__name__)

RECORDINGS_TABLE = "recordings"
SUMMARIES_TABLE = "recording_summaries"
COMPLETED_STATUS = "completed"


class CorpusStatsSource(Protocol):
    async def load(self, org_id: str) -> CorpusStats: ...


class SupabaseCorpusStatsSource:
    def __init__(
        self,
        supabase_url: str,
        supabase_key: str,
        has_reranker: bool,
        client: Client | None = None,
    ) -> None:
        self._client: Client = client or create_client(supabase_url, supabase_key)
        self._has_reranker = has_reranker

    async def load(self, org_id: str) -> CorpusStats:
        item_count, summary_count = await asyncio.gather(
            asyncio.to_thread(self._count_completed_items, org_id),
            asyncio.to_thread(self._count_summaries, org_id),
        )
        return CorpusStats(
            item_count=item_count,
            has_summaries=summary_count > 0,
            has_reranker=self._has_reranker,
        )

    def _count_completed_items(self, org_id: str) -> int:
        response = (
            self._client.table(RECORDINGS_TABLE)
            .select("id", count="exact", head=True)
            .eq("org_id", org_id)
            .eq("status", COMPLETED_STATUS)
            .execute()
        )
        return _response_count(response)

    def _count_summaries(self, org_id: str) -> int:
        response = (
            self._client.table(SUMMARIES_TABLE)
            .select("id", count="exact", head=True)
            .eq("org_id", org_id)
            .execute()
        )
        return _response_count(response)


class StaticCorpusStatsSource:
    def __init__(self, stats: CorpusStats) -> None:
        self._stats = stats

    async def load(self, org_id: str) -> CorpusStats:
        _ = org_id
        return self._stats


class SeedCorpusStatsSource:
    def __init__(
        self,
        counter: Callable[[str], int],
        has_reranker: bool,
        item_count_override: int | None = None,
    ) -> None:
        self._counter = counter
        self._has_reranker = has_reranker
        self._item_count_override = item_count_override

    async def load(self, org_id: str) -> CorpusStats:
        if self._item_count_override is not None:
            item_count = self._item_count_override
        else:
            item_count = self._counter(org_id)
        return CorpusStats(
            item_count=item_count,
            has_summaries=False,
            has_reranker=self._has_reranker,
        )


async def load_corpus_stats(
    source: CorpusStatsSource,
    org_id: str,
    has_reranker: bool,
) -> CorpusStats:
    try:
        return await source.load(org_id)
    except Exception as exc:  # noqa: BLE001
        LOGGER.warning(
            "Corpus stats lookup failed; routing with empty-corpus defaults",
            extra={"org_id": org_id},
            exc_info=exc,
        )
        return default_corpus_stats(has_reranker)


def default_corpus_stats(has_reranker: bool) -> CorpusStats:
    return CorpusStats(item_count=0, has_summaries=False, has_reranker=has_reranker)


def _response_count(response: object) -> int:
    count = getattr(response, "count", None)
    if isinstance(count, int) and count >= 0:
        return count
    return 0
