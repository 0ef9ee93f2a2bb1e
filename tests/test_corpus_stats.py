import logging
from types import SimpleNamespace

import pytest

from quarry.corpus_stats import (
    SeedCorpusStatsSource,
    StaticCorpusStatsSource,
    SupabaseCorpusStatsSource,
    default_corpus_stats,
    load_corpus_stats,
)
from quarry.models import CorpusStats


class _FakeQuery:
    def __init__(self, client: "_FakeClient", table: str) -> None:
        self._client = client
        self._table = table
        self._filters: dict[str, object] = {}

    def select(self, *columns: str, count: str | None = None, head: bool = False):
        self._client.selects.append((self._table, columns, count, head))
        return self

    def eq(self, column: str, value: object):
        self._filters[column] = value
        return self

    def execute(self):
        self._client.filters[self._table] = dict(self._filters)
        return SimpleNamespace(count=self._client.counts.get(self._table), data=[])


class _FakeClient:
    def __init__(self, counts: dict[str, int | None]) -> None:
        self.counts = counts
        self.selects: list[tuple[object, ...]] = []
        self.filters: dict[str, dict[str, object]] = {}

    def table(self, name: str) -> _FakeQuery:
        return _FakeQuery(self, name)


@pytest.mark.asyncio
async def test_supabase_source_counts_completed_items_and_summaries() -> None:
    client = _FakeClient({"recordings": 12, "recording_summaries": 3})
    source = SupabaseCorpusStatsSource("https://x", "key", has_reranker=True, client=client)

    stats = await source.load("org-1")

    assert stats == CorpusStats(item_count=12, has_summaries=True, has_reranker=True)
    assert client.filters["recordings"] == {"org_id": "org-1", "status": "completed"}
    assert client.filters["recording_summaries"] == {"org_id": "org-1"}
    assert all(select[2] == "exact" and select[3] is True for select in client.selects)


@pytest.mark.asyncio
async def test_supabase_source_treats_missing_counts_as_zero() -> None:
    client = _FakeClient({"recordings": None, "recording_summaries": None})
    source = SupabaseCorpusStatsSource("https://x", "key", has_reranker=False, client=client)

    stats = await source.load("org-1")

    assert stats.item_count == 0
    assert stats.has_summaries is False


@pytest.mark.asyncio
async def test_lookup_failure_falls_back_to_empty_corpus(caplog) -> None:
    class _BrokenSource:
        async def load(self, org_id: str) -> CorpusStats:
            raise ConnectionError(f"cannot reach store for {org_id}")

    with caplog.at_level(logging.WARNING, logger="quarry.corpus_stats"):
        stats = await load_corpus_stats(_BrokenSource(), "org-1", has_reranker=True)

    assert stats == default_corpus_stats(True)
    assert stats.item_count == 0
    assert "Corpus stats lookup failed" in caplog.records[0].getMessage()


@pytest.mark.asyncio
async def test_seed_source_counts_items_or_uses_override() -> None:
    counted = SeedCorpusStatsSource(counter=lambda org_id: 4, has_reranker=False)
    overridden = SeedCorpusStatsSource(
        counter=lambda org_id: 4, has_reranker=True, item_count_override=0
    )

    assert (await counted.load("org-1")).item_count == 4
    assert (await overridden.load("org-1")).item_count == 0
    assert (await overridden.load("org-1")).has_reranker is True


@pytest.mark.asyncio
async def test_static_source_returns_given_stats() -> None:
    stats = CorpusStats(item_count=7, has_summaries=True)

    assert await load_corpus_stats(StaticCorpusStatsSource(stats), "org", False) is stats
