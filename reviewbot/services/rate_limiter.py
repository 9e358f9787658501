"""
Per-installation fixed-window rate limiting for webhook ingestion.

The counter is a plain read-modify-write without a transaction, so
concurrent requests may slightly overshoot the ceiling, and bursts across a
window boundary can reach twice the limit. Both are accepted trade-offs for
a lock-free limiter. Storage failures allow the request.
"""

import json
import time
from typing import Callable, Optional

from redis.exceptions import RedisError

from reviewbot.models.status import RateLimitDecision, RateLimitWindow
from reviewbot.services.redis_client import RedisClient, RedisConnectionError
from reviewbot.utils.logging import get_logger

logger = get_logger(__name__)

RATE_KEY = "rate:{installation_id}:{window_index}"


def _now_ms() -> int:
    return int(time.time() * 1000)


class RateLimiter:
    """Fixed-window counter keyed by installation id."""

    def __init__(
        self,
        redis_client: RedisClient,
        limit: int = 60,
        window_ms: int = 60_000,
        clock: Callable[[], int] = _now_ms
    ):
        """
        Initialize rate limiter.

        Args:
            redis_client: Storage for window counters
            limit: Maximum accepted events per window
            window_ms: Window length in milliseconds
            clock: Returns the current time in epoch milliseconds
        """
        self.redis = redis_client
        self.limit = limit
        self.window_ms = window_ms
        self._clock = clock

    def _window(self) -> tuple[int, int]:
        window_index = self._clock() // self.window_ms
        reset_at = (window_index + 1) * self.window_ms
        return window_index, reset_at

    @property
    def _ttl_seconds(self) -> int:
        # Two windows, so a counter outlives the boundary it straddles
        return max(1, (2 * self.window_ms) // 1000)

    async def try_acquire(self, installation_id: int) -> RateLimitDecision:
        """
        Count one event against the installation's current window.

        Returns:
            Decision with the remaining budget and the window reset time
        """
        window_index, reset_at = self._window()
        key = RATE_KEY.format(installation_id=installation_id, window_index=window_index)

        try:
            data = await self.redis.get_json(key)
            count = data["count"] if data else 0

            if count >= self.limit:
                logger.warning(
                    f"Rate limit exceeded for installation {installation_id}",
                    extra={"installation_id": installation_id, "count": count, "limit": self.limit}
                )
                return RateLimitDecision(allowed=False, remaining=0, reset_at=reset_at)

            window = RateLimitWindow(
                installation_id=installation_id,
                window_index=window_index,
                count=count + 1,
                reset_at=reset_at,
            )
            await self.redis.put_json(key, window.model_dump(), ttl_seconds=self._ttl_seconds)

            return RateLimitDecision(
                allowed=True,
                remaining=max(0, self.limit - window.count),
                reset_at=reset_at,
            )

        except (RedisError, RedisConnectionError, json.JSONDecodeError, KeyError) as e:
            logger.warning(
                f"Rate limit check failed, allowing request: {e}",
                extra={"installation_id": installation_id}
            )
            return RateLimitDecision(allowed=True, remaining=self.limit, reset_at=reset_at)

    async def get_window(self, installation_id: int) -> Optional[RateLimitWindow]:
        """Return the installation's current window counter, if any."""
        window_index, _ = self._window()
        data = await self.redis.get_json(
            RATE_KEY.format(installation_id=installation_id, window_index=window_index)
        )
        return RateLimitWindow(**data) if data else None
