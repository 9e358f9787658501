"""
Webhook delivery deduplication.

GitHub retries deliveries it believes failed, so the same event id can
arrive more than once. A marker per (repository, PR, event id) is kept for
24 hours. Storage failures fail open: a delivery is never rejected because
Redis is unavailable.
"""

from datetime import datetime, timezone

from redis.exceptions import RedisError

from reviewbot.models.status import DeduplicationRecord
from reviewbot.services.redis_client import RedisClient, RedisConnectionError
from reviewbot.utils.logging import get_logger

logger = get_logger(__name__)

DEDUP_KEY = "dedup:{repository}:{pr_number}:{event_id}"
DEFAULT_TTL_SECONDS = 24 * 60 * 60


class Deduplicator:
    """Tracks processed webhook deliveries in Redis."""

    def __init__(self, redis_client: RedisClient, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _key(repository: str, pr_number: int, event_id: str) -> str:
        return DEDUP_KEY.format(repository=repository, pr_number=pr_number, event_id=event_id)

    async def is_duplicate(self, repository: str, pr_number: int, event_id: str) -> bool:
        """
        Check whether an event was already accepted.

        Returns:
            True if a marker exists; False if not or if storage failed
        """
        try:
            return await self.redis.get(self._key(repository, pr_number, event_id)) is not None
        except (RedisError, RedisConnectionError) as e:
            logger.warning(
                f"Dedup check failed, treating event as new: {e}",
                extra={"repository": repository, "pr_number": pr_number, "event_id": event_id}
            )
            return False

    async def mark_processed(self, repository: str, pr_number: int, event_id: str) -> None:
        """Record an accepted event. Storage failures are logged, not raised."""
        record = DeduplicationRecord(event_id=event_id, processed_at=datetime.now(timezone.utc))
        try:
            await self.redis.put(
                self._key(repository, pr_number, event_id),
                record.model_dump_json(),
                ttl_seconds=self.ttl_seconds,
            )
        except (RedisError, RedisConnectionError) as e:
            logger.warning(
                f"Failed to mark event processed: {e}",
                extra={"repository": repository, "pr_number": pr_number, "event_id": event_id}
            )
