"""Unit tests for HybridSearchService."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from skillgraph.config import SearchConfig
from skillgraph.core.context import AccessContext
from skillgraph.services.hybrid_search_service import (
    HybridSearchError,
    HybridSearchService,
    SearchMode,
    normalize_query,
)
from skillgraph.store.base import StoreError
from tests.factories import OTHER_TENANT, TENANT, add_embedded, make_artifact, unit_vector


@pytest.fixture
def metrics():
    """Metrics manager double."""
    return MagicMock()


@pytest.fixture
def service(store, metrics):
    """Search service over the in-memory store."""
    return HybridSearchService(store, SearchConfig(), metrics=metrics)


async def _seed_catalog(store):
    await add_embedded(
        store,
        make_artifact("review", name="Code Review", description="Review pull requests", total_uses=3),
        unit_vector(0),
    )
    await add_embedded(
        store,
        make_artifact("deploy", name="Deploy", description="Ship code to production", total_uses=9),
        unit_vector(1),
    )
    await add_embedded(
        store,
        make_artifact("writing", name="Writing", description="Essays and prose"),
        unit_vector(2),
    )
    await add_embedded(
        store,
        make_artifact("secret", name="Secret review", visibility="private", author_id="u-1"),
        unit_vector(0),
    )
    await add_embedded(
        store,
        make_artifact(
            "shared", OTHER_TENANT, name="Shared review", visibility="global_approved"
        ),
        unit_vector(3),
    )
    await add_embedded(
        store,
        make_artifact("foreign", OTHER_TENANT, name="Foreign review"),
        unit_vector(0),
    )


@pytest.mark.unit
class TestHybridSearch:
    """Tests for HybridSearchService.search."""

    @pytest.mark.asyncio
    async def test_semantic_only_matches(self, store, service, ctx):
        for i in range(5):
            await add_embedded(store, make_artifact(f"s{i}"), [1.0, 0.1 * i])

        hits = await service.search(ctx, "zzzqqq", query_embedding=[1.0, 0.0])

        assert len(hits) == 5
        assert all(hit.ft_rank is None for hit in hits)
        assert [hit.sm_rank for hit in hits] == [1, 2, 3, 4, 5]
        assert [hit.id for hit in hits] == ["s0", "s1", "s2", "s3", "s4"]

    @pytest.mark.asyncio
    async def test_fused_ranking(self, store, service, ctx):
        await _seed_catalog(store)

        hits = await service.search(ctx, "review", query_embedding=unit_vector(0))

        assert hits[0].id == "review"
        assert hits[0].ft_rank is not None and hits[0].sm_rank == 1
        assert hits[0].rrf_score > hits[1].rrf_score

    @pytest.mark.asyncio
    async def test_visibility_isolation(self, store, service, ctx):
        await _seed_catalog(store)

        hits = await service.search(ctx, "review", query_embedding=unit_vector(0))
        ids = {hit.id for hit in hits}

        assert "secret" not in ids
        assert "foreign" not in ids
        assert "shared" in ids

    @pytest.mark.asyncio
    async def test_author_sees_private(self, store, service):
        await _seed_catalog(store)
        ctx = AccessContext(tenant_id=TENANT, principal_id="u-1")

        hits = await service.search(ctx, "review")

        assert "secret" in {hit.id for hit in hits}

    @pytest.mark.asyncio
    async def test_lexical_only_without_embedding(self, store, service, ctx, metrics):
        await _seed_catalog(store)

        hits = await service.search(ctx, "review")

        assert hits
        assert all(hit.sm_rank is None for hit in hits)
        metrics.record_search.assert_called_once()
        assert metrics.record_search.call_args[0][0] == SearchMode.LEXICAL.value

    @pytest.mark.asyncio
    async def test_invalid_embedding_degrades(self, store, ctx, metrics):
        await _seed_catalog(store)
        service = HybridSearchService(store, SearchConfig(), dimensions=8, metrics=metrics)

        hits = await service.search(ctx, "review", query_embedding=[1.0, 0.0])

        assert hits
        assert all(hit.sm_rank is None for hit in hits)

    @pytest.mark.asyncio
    async def test_substring_fallback(self, store, service, ctx, metrics):
        await _seed_catalog(store)

        # Stopword only, no indexable terms
        hits = await service.search(ctx, "to")

        assert metrics.record_search.call_args[0][0] == SearchMode.SUBSTRING.value
        assert [hit.id for hit in hits] == ["deploy"]
        assert hits[0].ft_rank == 1

    @pytest.mark.asyncio
    async def test_blank_query(self, service, ctx):
        assert await service.search(ctx, "   ") == []

    @pytest.mark.asyncio
    async def test_without_store(self, ctx):
        assert await HybridSearchService(None).search(ctx, "review") == []

    @pytest.mark.asyncio
    async def test_limit_clamped(self, store, ctx, metrics):
        for i in range(5):
            await add_embedded(store, make_artifact(f"s{i}"), [1.0, 0.1 * i])
        service = HybridSearchService(store, SearchConfig(max_limit=3), metrics=metrics)

        hits = await service.search(ctx, "skill", query_embedding=[1.0, 0.0], limit=50)

        assert len(hits) == 3

    @pytest.mark.asyncio
    async def test_ties_broken_by_total_uses(self, store, service, ctx):
        store.add_artifact(make_artifact("a", name="Review one", total_uses=1))
        store.add_artifact(make_artifact("b", name="Review two", total_uses=7))

        hits = await service.search(ctx, "review")

        # Same BM25 score, popularity decides the lexical order
        assert [hit.id for hit in hits] == ["b", "a"]

    @pytest.mark.asyncio
    async def test_store_failure_wrapped(self, ctx, metrics):
        store = AsyncMock()
        store.lexical_search.side_effect = StoreError("db down")
        service = HybridSearchService(store, SearchConfig(), metrics=metrics)

        with pytest.raises(HybridSearchError, match="db down"):
            await service.search(ctx, "review")


@pytest.mark.unit
class TestSearchAnalytics:
    """Tests for the fire-and-forget search log."""

    @pytest.mark.asyncio
    async def test_query_recorded(self, store, service, ctx):
        await _seed_catalog(store)

        hits = await service.search(ctx, "  Code   REVIEW ", query_embedding=unit_vector(0))
        await service.drain()

        assert len(store.search_log) == 1
        entry = store.search_log[0]
        assert entry.normalized_query == "code review"
        assert entry.result_count == len(hits)
        assert entry.search_type == "hybrid"
        assert entry.tenant_id == TENANT

    @pytest.mark.asyncio
    async def test_lexical_recorded_as_keyword(self, store, service, ctx):
        await _seed_catalog(store)

        await service.search(ctx, "review")
        await service.drain()

        assert store.search_log[0].search_type == "keyword"

    @pytest.mark.asyncio
    async def test_record_failure_swallowed(self, store, service, ctx, monkeypatch):
        await _seed_catalog(store)
        monkeypatch.setattr(store, "record_search_query", AsyncMock(side_effect=StoreError("full")))

        hits = await service.search(ctx, "review")
        await service.drain()

        assert hits

    @pytest.mark.asyncio
    async def test_recording_disabled(self, store, ctx, metrics):
        await _seed_catalog(store)
        service = HybridSearchService(store, SearchConfig(record_queries=False), metrics=metrics)

        await service.search(ctx, "review")
        await service.drain()

        assert store.search_log == []

    def test_normalize_query(self):
        assert normalize_query("  Hello \t World ") == "hello world"


@pytest.mark.unit
class TestFindSimilar:
    """Tests for find_similar."""

    @pytest.mark.asyncio
    async def test_neighbours(self, store, service, ctx):
        await add_embedded(store, make_artifact("a"), [1.0, 0.0])
        await add_embedded(store, make_artifact("b"), [1.0, 0.1])
        await add_embedded(store, make_artifact("c"), [0.0, 1.0])

        similar = await service.find_similar(ctx, "a", limit=2)

        assert [s.id for s in similar] == ["b", "c"]
        assert similar[0].similarity > similar[1].similarity

    @pytest.mark.asyncio
    async def test_private_neighbours_hidden(self, store, service, ctx):
        await add_embedded(store, make_artifact("a"), [1.0, 0.0])
        await add_embedded(
            store, make_artifact("mine", visibility="private", author_id="u-1"), [1.0, 0.0]
        )

        assert await service.find_similar(ctx, "a") == []

    @pytest.mark.asyncio
    async def test_invisible_source(self, store, service, ctx):
        await add_embedded(
            store, make_artifact("mine", visibility="private", author_id="u-1"), [1.0, 0.0]
        )

        assert await service.find_similar(ctx, "mine") == []

    @pytest.mark.asyncio
    async def test_source_without_embedding(self, store, service, ctx):
        store.add_artifact(make_artifact("bare"))

        assert await service.find_similar(ctx, "bare") == []
