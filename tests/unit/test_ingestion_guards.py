"""
Unit tests for delivery deduplication and per-installation rate limiting.
"""

from unittest.mock import AsyncMock

import pytest

from reviewbot.services.deduplicator import Deduplicator
from reviewbot.services.rate_limiter import RateLimiter
from reviewbot.services.redis_client import RedisClient, RedisConnectionError


class TestDeduplicator:
    """Test delivery deduplication."""

    @pytest.mark.asyncio
    async def test_unseen_event_is_not_duplicate(self, redis_client: RedisClient):
        dedup = Deduplicator(redis_client)

        assert await dedup.is_duplicate("octo/widgets", 42, "d-1") is False

    @pytest.mark.asyncio
    async def test_marked_event_is_duplicate(self, redis_client: RedisClient):
        dedup = Deduplicator(redis_client)

        await dedup.mark_processed("octo/widgets", 42, "d-1")

        assert await dedup.is_duplicate("octo/widgets", 42, "d-1") is True
        assert await dedup.is_duplicate("octo/widgets", 42, "d-2") is False
        assert await dedup.is_duplicate("octo/widgets", 43, "d-1") is False

    @pytest.mark.asyncio
    async def test_marker_expires_after_ttl(self, redis_client: RedisClient):
        dedup = Deduplicator(redis_client, ttl_seconds=86400)

        await dedup.mark_processed("octo/widgets", 42, "d-1")

        ttl = await redis_client._client.ttl("dedup:octo/widgets:42:d-1")
        assert 86000 < ttl <= 86400

    @pytest.mark.asyncio
    async def test_storage_failure_fails_open(self):
        redis_client = AsyncMock()
        redis_client.get.side_effect = RedisConnectionError("down")
        redis_client.put.side_effect = RedisConnectionError("down")
        dedup = Deduplicator(redis_client)

        assert await dedup.is_duplicate("octo/widgets", 42, "d-1") is False
        await dedup.mark_processed("octo/widgets", 42, "d-1")


class TestRateLimiter:
    """Test fixed-window rate limiting."""

    @pytest.mark.asyncio
    async def test_allows_up_to_limit_then_rejects(self, redis_client: RedisClient):
        limiter = RateLimiter(redis_client, limit=3, window_ms=60_000, clock=lambda: 120_000)

        decisions = [await limiter.try_acquire(7) for _ in range(4)]

        assert [d.allowed for d in decisions] == [True, True, True, False]
        assert [d.remaining for d in decisions] == [2, 1, 0, 0]
        assert decisions[-1].reset_at == 180_000

    @pytest.mark.asyncio
    async def test_installations_are_counted_separately(self, redis_client: RedisClient):
        limiter = RateLimiter(redis_client, limit=1, clock=lambda: 0)

        assert (await limiter.try_acquire(1)).allowed is True
        assert (await limiter.try_acquire(2)).allowed is True
        assert (await limiter.try_acquire(1)).allowed is False

    @pytest.mark.asyncio
    async def test_new_window_resets_counter(self, redis_client: RedisClient):
        now = {"ms": 0}
        limiter = RateLimiter(redis_client, limit=1, window_ms=60_000, clock=lambda: now["ms"])

        assert (await limiter.try_acquire(7)).allowed is True
        assert (await limiter.try_acquire(7)).allowed is False

        now["ms"] = 60_000
        assert (await limiter.try_acquire(7)).allowed is True

    @pytest.mark.asyncio
    async def test_rejected_request_does_not_increment(self, redis_client: RedisClient):
        limiter = RateLimiter(redis_client, limit=1, clock=lambda: 0)

        await limiter.try_acquire(7)
        await limiter.try_acquire(7)

        window = await limiter.get_window(7)
        assert window.count == 1
        assert window.reset_at == 60_000

    @pytest.mark.asyncio
    async def test_storage_failure_allows_request(self):
        redis_client = AsyncMock()
        redis_client.get_json.side_effect = RedisConnectionError("down")
        limiter = RateLimiter(redis_client, limit=5)

        decision = await limiter.try_acquire(7)

        assert decision.allowed is True
        assert decision.remaining == 5
