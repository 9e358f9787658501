"""
Redis client wrapper for review pipeline storage and the review queue.

This service provides Redis operations for:
- Key-value records with TTL (dedup markers, rate windows, review status)
- Queue lists (pending, in-flight, dead-letter)
- Delayed retries using a sorted set scored by due time

Includes connection pooling and retry logic for resilience.
"""

import json
import logging
import asyncio
from typing import Optional, List, Any
from contextlib import asynccontextmanager
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError, ConnectionError, TimeoutError

from reviewbot.utils.resilience import TransientError


logger = logging.getLogger(__name__)


class RedisConnectionError(TransientError):
    """Raised when Redis connection fails after retries."""
    pass


class RedisClient:
    """
    Redis client wrapper with connection pooling and retry logic.

    Provides methods for:
    - Generic key-value storage (get/put/delete/list by prefix)
    - JSON record helpers
    - Queue list operations (push, blocking move, remove)
    - Delayed item scheduling (sorted sets)
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        connection_timeout: int = 5,
        socket_timeout: int = 15
    ):
        """
        Initialize Redis client.

        Args:
            redis_url: Redis connection URL. If None, will load from settings.
            max_retries: Maximum number of retry attempts for transient errors
            retry_delay: Base delay between retries (exponential backoff)
            connection_timeout: Connection timeout in seconds
            socket_timeout: Read timeout in seconds, must exceed blocking pops
        """
        self._redis_url = redis_url
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[redis.Redis] = None
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._connection_timeout = connection_timeout
        self._socket_timeout = socket_timeout

    async def initialize(self) -> None:
        """
        Initialize Redis connection pool.

        Should be called during application startup.

        Raises:
            RedisConnectionError: If connection fails
        """
        try:
            if not self._redis_url:
                from reviewbot.config import settings
                self._redis_url = settings.redis_url

            self._pool = ConnectionPool.from_url(
                self._redis_url,
                max_connections=20,
                decode_responses=True,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._connection_timeout
            )
            self._client = redis.Redis(connection_pool=self._pool)

            await self._client.ping()

            logger.info("Redis connection pool initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize Redis connection pool: {e}")
            raise RedisConnectionError(f"Failed to connect to Redis: {e}")

    async def close(self) -> None:
        """
        Close Redis connection pool.

        Should be called during application shutdown.
        """
        if self._client:
            await self._client.aclose()

        if self._pool:
            await self._pool.disconnect()

        logger.info("Redis connection pool closed")

    @asynccontextmanager
    async def _get_client(self):
        """
        Get Redis client with connection check.

        Yields:
            redis.Redis: Redis client instance

        Raises:
            RedisConnectionError: If client not initialized
        """
        if not self._client:
            raise RedisConnectionError("Redis client not initialized. Call initialize() first.")

        yield self._client

    async def _retry_operation(self, operation, *args, **kwargs):
        """
        Execute Redis operation with retry logic.

        Args:
            operation: Async function to execute
            *args: Positional arguments for operation
            **kwargs: Keyword arguments for operation

        Returns:
            Operation result

        Raises:
            RedisConnectionError: If operation fails after all retries
        """
        last_error = None

        for attempt in range(self._max_retries):
            try:
                return await operation(*args, **kwargs)

            except (ConnectionError, TimeoutError) as e:
                last_error = e
                if attempt < self._max_retries - 1:
                    delay = self._retry_delay * (2 ** attempt)
                    logger.warning(
                        f"Redis operation failed (attempt {attempt + 1}/{self._max_retries}), "
                        f"retrying in {delay}s: {e}"
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(f"Redis operation failed after {self._max_retries} attempts: {e}")

            except RedisError as e:
                # Non-transient errors, don't retry
                logger.error(f"Redis operation failed with non-transient error: {e}")
                raise

        raise RedisConnectionError(f"Redis operation failed after {self._max_retries} retries: {last_error}")

    # ========== Key-Value Operations ==========

    async def get(self, key: str) -> Optional[str]:
        """
        Get a string value.

        Args:
            key: Redis key

        Returns:
            Stored value, or None when the key does not exist
        """
        async def _get():
            async with self._get_client() as client:
                return await client.get(key)

        return await self._retry_operation(_get)

    async def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        """
        Store a string value, optionally expiring after ``ttl_seconds``.

        Args:
            key: Redis key
            value: Value to store
            ttl_seconds: Expiry in seconds, None for no expiry
        """
        async def _put():
            async with self._get_client() as client:
                await client.set(key, value, ex=ttl_seconds)

        await self._retry_operation(_put)

    async def delete(self, key: str) -> None:
        """Delete a key."""
        async def _delete():
            async with self._get_client() as client:
                await client.delete(key)

        await self._retry_operation(_delete)

    async def list_keys(self, prefix: str) -> List[str]:
        """
        List keys starting with ``prefix``.

        Uses SCAN so large keyspaces are not blocked.

        Args:
            prefix: Key prefix

        Returns:
            Sorted list of matching keys
        """
        async def _list():
            async with self._get_client() as client:
                return sorted([key async for key in client.scan_iter(match=f"{prefix}*")])

        return await self._retry_operation(_list)

    async def get_json(self, key: str) -> Optional[Any]:
        """Get and decode a JSON value, None when absent."""
        raw = await self.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def put_json(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        """Encode ``value`` as JSON and store it."""
        await self.put(key, json.dumps(value, default=str), ttl_seconds)

    # ========== Queue Operations (List) ==========

    async def push(self, list_key: str, payload: str) -> None:
        """
        Append an item to the tail of a list.

        Args:
            list_key: List key
            payload: Serialized item
        """
        async def _push():
            async with self._get_client() as client:
                await client.rpush(list_key, payload)

        await self._retry_operation(_push)

    async def move_head(self, source: str, destination: str, timeout: float = 0) -> Optional[str]:
        """
        Atomically move the head of ``source`` onto ``destination``.

        Args:
            source: List to pop from (FIFO head)
            destination: List to push onto
            timeout: Blocking timeout in seconds (0 for non-blocking)

        Returns:
            The moved item, or None if ``source`` stayed empty
        """
        async def _move():
            async with self._get_client() as client:
                if timeout > 0:
                    return await client.blmove(source, destination, timeout, "LEFT", "RIGHT")
                return await client.lmove(source, destination, "LEFT", "RIGHT")

        return await self._retry_operation(_move)

    async def remove(self, list_key: str, payload: str) -> int:
        """
        Remove one occurrence of ``payload`` from a list.

        Returns:
            Number of removed items
        """
        async def _remove():
            async with self._get_client() as client:
                return await client.lrem(list_key, 1, payload)

        return await self._retry_operation(_remove)

    async def list_items(self, list_key: str) -> List[str]:
        """Return every item of a list, head first."""
        async def _items():
            async with self._get_client() as client:
                return await client.lrange(list_key, 0, -1)

        return await self._retry_operation(_items)

    async def length(self, list_key: str) -> int:
        """Return the number of items in a list."""
        async def _length():
            async with self._get_client() as client:
                return await client.llen(list_key)

        return await self._retry_operation(_length)

    # ========== Delayed Items (Sorted Set) ==========

    async def schedule(self, zset_key: str, payload: str, due_timestamp: float) -> None:
        """
        Add an item to a sorted set scored by its due time.

        Args:
            zset_key: Sorted set key
            payload: Serialized item
            due_timestamp: Unix timestamp after which the item is due
        """
        async def _schedule():
            async with self._get_client() as client:
                await client.zadd(zset_key, {payload: due_timestamp})

        await self._retry_operation(_schedule)

    async def pop_due(self, zset_key: str, current_timestamp: float) -> List[str]:
        """
        Remove and return items whose due time has passed.

        An item is returned only to the caller whose ZREM succeeded, so
        concurrent consumers never promote the same item twice.

        Args:
            zset_key: Sorted set key
            current_timestamp: Current Unix timestamp

        Returns:
            Due items, earliest first
        """
        async def _pop():
            async with self._get_client() as client:
                due = await client.zrangebyscore(zset_key, min=0, max=current_timestamp)
                claimed = []
                for item in due:
                    if await client.zrem(zset_key, item):
                        claimed.append(item)
                return claimed

        return await self._retry_operation(_pop)

    async def count_scheduled(self, zset_key: str) -> int:
        """Return the number of items in a sorted set."""
        async def _count():
            async with self._get_client() as client:
                return await client.zcard(zset_key)

        return await self._retry_operation(_count)

    # ========== Utility Methods ==========

    async def ping(self) -> bool:
        """
        Test Redis connection.

        Returns:
            True if connection is healthy

        Raises:
            RedisConnectionError: If ping fails
        """
        async def _ping():
            async with self._get_client() as client:
                return await client.ping()

        return await self._retry_operation(_ping)


def get_redis_client() -> RedisClient:
    """
    Create a Redis client configured from settings.

    Returns:
        RedisClient instance
    """
    return RedisClient()
