"""
Shared test fixtures.

Required settings are provided through the environment before any
``reviewbot`` module is imported.
"""

import os

os.environ.setdefault("WEBHOOK_SECRET", "test_secret")
os.environ.setdefault("LLM_API_KEY", "test_key")

from typing import AsyncGenerator

import fakeredis
import pytest

from reviewbot.models.github import PullRequestInfo
from reviewbot.models.review_task import ReviewTask
from reviewbot.services.redis_client import RedisClient


@pytest.fixture
async def redis_client() -> AsyncGenerator[RedisClient, None]:
    """Create Redis client with fakeredis for testing."""
    client = RedisClient(redis_url="redis://localhost:6379/0", retry_delay=0)

    # Replace the real Redis client with fakeredis
    fake_redis = fakeredis.FakeAsyncRedis(decode_responses=True)
    client._client = fake_redis

    yield client

    # Cleanup
    await fake_redis.flushdb()
    await fake_redis.aclose()


@pytest.fixture
def sample_task() -> ReviewTask:
    """Review task for octo/widgets#42."""
    return ReviewTask(
        repository_full_name="octo/widgets",
        pr_number=42,
        installation_id=7,
        action="opened",
        head_sha="abc123",
        event_id="delivery-1",
    )


@pytest.fixture
def sample_pr() -> PullRequestInfo:
    """Open pull request matching ``sample_task``."""
    return PullRequestInfo(
        number=42,
        title="Add widget caching",
        body="Caches widgets in memory",
        author="octocat",
        head_sha="abc123",
        base_ref="main",
        head_ref="feature/cache",
    )
