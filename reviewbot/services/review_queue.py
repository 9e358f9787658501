"""
Durable review queue backed by Redis lists.

Layout:
- ``review_queue:pending``: FIFO list of serialized ReviewTasks
- ``review_queue:inflight:{consumer}``: items received but not yet acked
- ``review_queue:delayed``: sorted set of retries scored by due time
- ``review_queue:dead_letter``: tasks that exhausted their retries

Delivery is at-least-once. A consumer that crashes leaves its items in its
in-flight list, and ``requeue_inflight`` puts them back on startup.
"""

import json
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from pydantic import BaseModel

from reviewbot.models.review_task import ReviewTask
from reviewbot.services.redis_client import RedisClient
from reviewbot.utils.logging import get_logger
from reviewbot.utils.resilience import PermanentError, backoff_delay

logger = get_logger(__name__)


class QueueMessage(BaseModel):
    """A received task together with the raw payload used to ack it."""

    task: ReviewTask
    raw: str


class ReviewQueue:
    """Review task queue with retry backoff and a dead-letter list."""

    PENDING_KEY = "review_queue:pending"
    INFLIGHT_KEY = "review_queue:inflight:{consumer}"
    DELAYED_KEY = "review_queue:delayed"
    DEAD_LETTER_KEY = "review_queue:dead_letter"

    def __init__(
        self,
        redis_client: RedisClient,
        consumer_id: str = "default",
        max_retries: int = 3,
        retry_base_delay: float = 5.0,
        retry_max_delay: float = 300.0,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize review queue.

        Args:
            redis_client: Redis storage
            consumer_id: Name of this consumer's in-flight list
            max_retries: Retries allowed before a task is dead-lettered
            retry_base_delay: Delay before the first retry in seconds
            retry_max_delay: Upper bound on the retry delay in seconds
            clock: Returns the current Unix timestamp
        """
        self.redis = redis_client
        self.consumer_id = consumer_id
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self._clock = clock

    @property
    def inflight_key(self) -> str:
        return self.INFLIGHT_KEY.format(consumer=self.consumer_id)

    def for_consumer(self, consumer_id: str) -> "ReviewQueue":
        """Return a queue handle sharing storage but with its own in-flight list."""
        return ReviewQueue(
            self.redis,
            consumer_id=consumer_id,
            max_retries=self.max_retries,
            retry_base_delay=self.retry_base_delay,
            retry_max_delay=self.retry_max_delay,
            clock=self._clock,
        )

    async def send(self, task: ReviewTask) -> None:
        """
        Enqueue a task for processing.

        Raises:
            RedisConnectionError: If the task could not be stored
        """
        await self.redis.push(self.PENDING_KEY, task.model_dump_json())
        logger.info(
            f"Enqueued review task for {task.repository_full_name}#{task.pr_number}",
            extra={
                "repository": task.repository_full_name,
                "pr_number": task.pr_number,
                "event_id": task.event_id,
                "retry_count": task.retry_count,
            }
        )

    async def receive(self, timeout: float = 5.0) -> Optional[QueueMessage]:
        """
        Take the next task, moving it to this consumer's in-flight list.

        Args:
            timeout: Seconds to block waiting for a task (0 for non-blocking)

        Returns:
            QueueMessage, or None if no task arrived in time
        """
        raw = await self.redis.move_head(self.PENDING_KEY, self.inflight_key, timeout=timeout)
        if raw is None:
            return None

        try:
            task = ReviewTask.model_validate_json(raw)
        except ValueError as e:
            logger.error(f"Discarding undecodable queue item: {e}", extra={"payload": raw[:500]})
            await self.redis.remove(self.inflight_key, raw)
            await self.redis.push(
                self.DEAD_LETTER_KEY,
                json.dumps({"payload": raw, "error": f"Undecodable task: {e}", "dead_lettered_at": _isonow()}),
            )
            return None

        return QueueMessage(task=task, raw=raw)

    async def ack(self, message: QueueMessage) -> None:
        """Remove a successfully handled task from the in-flight list."""
        await self.redis.remove(self.inflight_key, message.raw)

    async def fail(self, message: QueueMessage, error: Exception) -> bool:
        """
        Handle a failed task: schedule a retry or dead-letter it.

        Permanent errors are dead-lettered immediately. Otherwise the task is
        retried with exponential backoff until ``max_retries`` is exhausted.

        Args:
            message: The failed message
            error: What went wrong

        Returns:
            True if a retry was scheduled, False if the task was dead-lettered
        """
        task = message.task
        context = {
            "repository": task.repository_full_name,
            "pr_number": task.pr_number,
            "event_id": task.event_id,
            "retry_count": task.retry_count,
        }

        if isinstance(error, PermanentError) or task.retry_count >= self.max_retries:
            await self.dead_letter(message, error)
            return False

        delay = backoff_delay(task.retry_count, self.retry_base_delay, self.retry_max_delay)
        retry = task.with_retry()
        await self.redis.schedule(self.DELAYED_KEY, retry.model_dump_json(), self._clock() + delay)
        await self.redis.remove(self.inflight_key, message.raw)

        logger.warning(
            f"Review task failed, retry {retry.retry_count}/{self.max_retries} in {delay:.1f}s: {error}",
            extra=context
        )
        return True

    async def dead_letter(self, message: QueueMessage, error: Exception) -> None:
        """Move a task to the dead-letter list with the error that stopped it."""
        entry = {
            "task": message.task.model_dump(mode="json"),
            "error": str(error),
            "error_type": type(error).__name__,
            "dead_lettered_at": _isonow(),
        }
        await self.redis.push(self.DEAD_LETTER_KEY, json.dumps(entry))
        await self.redis.remove(self.inflight_key, message.raw)

        logger.error(
            f"Review task dead-lettered after {message.task.retry_count} retries: {error}",
            extra={
                "repository": message.task.repository_full_name,
                "pr_number": message.task.pr_number,
                "event_id": message.task.event_id,
            }
        )

    async def promote_due(self) -> int:
        """
        Move retries whose delay has elapsed back onto the pending list.

        Returns:
            Number of promoted tasks
        """
        due = await self.redis.pop_due(self.DELAYED_KEY, self._clock())
        for raw in due:
            await self.redis.push(self.PENDING_KEY, raw)

        if due:
            logger.info(f"Promoted {len(due)} delayed review tasks")
        return len(due)

    async def requeue_inflight(self) -> int:
        """
        Return items left in this consumer's in-flight list to the pending list.

        Called when a consumer starts, before it receives anything.

        Returns:
            Number of requeued tasks
        """
        count = 0
        while await self.redis.move_head(self.inflight_key, self.PENDING_KEY) is not None:
            count += 1

        if count:
            logger.warning(f"Requeued {count} in-flight tasks for consumer {self.consumer_id}")
        return count

    async def stats(self) -> Dict[str, int]:
        """Return queue depths."""
        return {
            "pending": await self.redis.length(self.PENDING_KEY),
            "delayed": await self.redis.count_scheduled(self.DELAYED_KEY),
            "dead_letter": await self.redis.length(self.DEAD_LETTER_KEY),
        }


def _isonow() -> str:
    return datetime.now(timezone.utc).isoformat()
