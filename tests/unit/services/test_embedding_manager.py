"""
Unit tests for the embedding LRU cache and Embedding Manager Service.
"""

from datetime import timedelta

import pytest
from sqlalchemy import update

from callscribe.errors import EmbeddingFailure
from callscribe.server.sql_models import EmbeddingModel
from callscribe.services.embedding_manager.cache import EmbeddingCacheEntry, EmbeddingLRUCache
from callscribe.services.embedding_manager.manager import (
    MAX_EMBEDDING_CHARS,
    calculate_embedding_cost,
    prepare_text_for_embedding,
)
from callscribe.utils import calculate_text_sha256, get_current_timestamp_est, to_naive


def _entry(content_hash: str, dims: int = 4) -> EmbeddingCacheEntry:
    return EmbeddingCacheEntry(content_hash=content_hash, embedding=[0.1] * dims, model="m")


@pytest.mark.unit
class TestEmbeddingLRUCache:
    @pytest.mark.asyncio
    async def test_get_returns_entry_and_counts_hits(self):
        cache = EmbeddingLRUCache(capacity=2)
        await cache.set(_entry("a"))

        assert (await cache.get("a")).content_hash == "a"
        assert await cache.get("missing") is None

        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5

    @pytest.mark.asyncio
    async def test_least_recently_used_entry_is_evicted(self):
        cache = EmbeddingLRUCache(capacity=2)
        await cache.set(_entry("a"))
        await cache.set(_entry("b"))
        await cache.get("a")  # "b" is now least recently used
        await cache.set(_entry("c"))

        assert cache.contains("a")
        assert not cache.contains("b")
        assert cache.contains("c")
        assert cache.get_stats()["evictions"] == 1
        assert len(cache) == 2

    @pytest.mark.asyncio
    async def test_stale_entry_is_a_miss(self):
        cache = EmbeddingLRUCache(capacity=2, ttl=timedelta(days=30))
        entry = _entry("old")
        entry.created_at = get_current_timestamp_est() - timedelta(days=31)
        await cache.set(entry)

        assert await cache.get("old") is None
        assert not cache.contains("old")

    @pytest.mark.asyncio
    async def test_size_estimate(self):
        cache = EmbeddingLRUCache(capacity=2)
        entry = _entry("h" * 64, dims=10)
        await cache.set(entry)

        assert cache.size_bytes() == 10 * 8 + 64 * 2 + 1 * 2 + 100

    @pytest.mark.asyncio
    async def test_clear_resets_statistics(self):
        cache = EmbeddingLRUCache(capacity=2)
        await cache.set(_entry("a"))
        await cache.get("a")
        await cache.clear()

        stats = cache.get_stats()
        assert stats["entries"] == 0
        assert stats["hits"] == 0

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            EmbeddingLRUCache(capacity=0)


@pytest.mark.unit
class TestEmbeddingHelpers:
    def test_prepare_text_normalizes_whitespace(self):
        assert prepare_text_for_embedding("  hello \n\t world  ") == "hello world"

    def test_prepare_text_truncates_long_text(self):
        prepared = prepare_text_for_embedding("a" * (MAX_EMBEDDING_CHARS + 10))

        assert len(prepared) == MAX_EMBEDDING_CHARS + 3
        assert prepared.endswith("...")

    def test_cost_per_thousand_tokens(self):
        assert calculate_embedding_cost(1000) == pytest.approx(0.00002)
        assert calculate_embedding_cost(0) == 0.0


@pytest.mark.unit
class TestEmbeddingManagerService:
    @pytest.fixture
    def language_model(self, test_server_manager):
        return test_server_manager.language_model_client

    @pytest.mark.asyncio
    async def test_identical_text_is_generated_once(self, services_manager, language_model, seed_call):
        call = await seed_call()
        manager = services_manager.embedding_manager

        first = await manager.get_or_compute(call["id"], call["user_id"], "hello   world")
        second = await manager.get_or_compute(call["id"], call["user_id"], "hello world")

        assert first.success and not first.cached
        assert second.success and second.cached
        assert first.embedding == second.embedding
        assert language_model.embed_calls == ["hello world"]

    @pytest.mark.asyncio
    async def test_embedding_is_persisted_with_content_hash(
        self, services_manager, seed_call
    ):
        call = await seed_call()

        result = await services_manager.embedding_manager.get_or_compute(
            call["id"], call["user_id"], "stored text"
        )

        row = await services_manager.transcript_sql_manager.get_embedding(call["id"], "transcript")
        assert row is not None
        assert row["content_hash"] == calculate_text_sha256("stored text")
        assert row["content_hash"] == result.content_hash
        assert row["embedding_model"] == "mock-embedding-model"
        assert len(row["embedding"]) == 8

    @pytest.mark.asyncio
    async def test_durable_store_is_used_after_cache_is_cleared(
        self, services_manager, language_model, seed_call
    ):
        call = await seed_call()
        manager = services_manager.embedding_manager

        await manager.get_or_compute(call["id"], call["user_id"], "durable text")
        await manager.cache.clear()
        result = await manager.get_or_compute(call["id"], call["user_id"], "durable text")

        assert result.cached
        assert len(language_model.embed_calls) == 1

    @pytest.mark.asyncio
    async def test_recovered_entry_keeps_generation_time(
        self, services_manager, test_server_manager, language_model, seed_call
    ):
        call = await seed_call()
        manager = services_manager.embedding_manager
        content_hash = calculate_text_sha256("old text")

        await manager.get_or_compute(call["id"], call["user_id"], "old text")
        generated_at = to_naive(get_current_timestamp_est() - timedelta(days=40))
        await test_server_manager.sql_client.execute(
            update(EmbeddingModel)
            .where(EmbeddingModel.content_hash == content_hash)
            .values(generated_at=generated_at)
        )
        await manager.cache.clear()

        result = await manager.get_or_compute(call["id"], call["user_id"], "old text")

        assert result.cached
        assert len(language_model.embed_calls) == 1
        # past the cache TTL already, so the recovered entry is not served from memory
        assert await manager.cache.get(content_hash) is None

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(
        self, services_manager, language_model, seed_call
    ):
        call = await seed_call()
        language_model.embed_failures_remaining = 2

        result = await services_manager.embedding_manager.get_or_compute(
            call["id"], call["user_id"], "flaky"
        )

        assert result.success
        assert len(language_model.embed_calls) == 3

    @pytest.mark.asyncio
    async def test_failure_is_reported_not_raised(
        self, services_manager, language_model, seed_call
    ):
        call = await seed_call()
        language_model.embed_failures_remaining = 10

        result = await services_manager.embedding_manager.get_or_compute(
            call["id"], call["user_id"], "always failing"
        )

        assert not result.success
        assert "Failed after 3 attempts" in result.error
        assert await services_manager.transcript_sql_manager.get_embedding(
            call["id"], "transcript"
        ) is None

    @pytest.mark.asyncio
    async def test_missing_api_key_is_not_retried(self, services_manager, language_model):
        language_model.api_key = None

        with pytest.raises(EmbeddingFailure):
            await services_manager.embedding_manager.generate_with_retry("text")

        assert len(language_model.embed_calls) == 1

    @pytest.mark.asyncio
    async def test_empty_text_is_rejected(self, services_manager, language_model):
        result = await services_manager.embedding_manager.get_or_compute("c", "u", "   ")

        assert not result.success
        assert language_model.embed_calls == []

    @pytest.mark.asyncio
    async def test_scheduled_embedding_is_tracked(self, services_manager, seed_call):
        call = await seed_call()
        manager = services_manager.embedding_manager

        task = manager.schedule_embedding(call["id"], call["user_id"], "background text")
        await manager.wait_for_pending()

        assert task.done()
        assert task.result().success
        assert manager.pending_task_count == 0
