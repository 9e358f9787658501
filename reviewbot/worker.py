"""
Worker process for the review queue.

Runs a pool of consumer loops. Each consumer takes one task at a time from
the Redis review queue, runs the ReviewProcessor under a whole-task
timeout, and acks the task or hands the failure back to the queue for
retry or dead-lettering. Shuts down gracefully on SIGTERM/SIGINT, letting
in-progress tasks finish.
"""

import asyncio
import signal
import sys
from typing import List, Optional

from redis.exceptions import RedisError

from reviewbot.config import settings
from reviewbot.models.review_task import ReviewTask
from reviewbot.models.status import ReviewState
from reviewbot.services.github_client import create_github_client
from reviewbot.services.llm_client import LLMClient
from reviewbot.services.redis_client import RedisClient, RedisConnectionError
from reviewbot.services.repository_config import RepositoryConfigService
from reviewbot.services.review_formatter import ReviewFormatter
from reviewbot.services.review_processor import ProcessStatus, ReviewProcessor
from reviewbot.services.review_queue import QueueMessage, ReviewQueue
from reviewbot.services.review_status import ReviewStatusService
from reviewbot.utils.logging import setup_logging, get_logger, log_error_with_context
from reviewbot.utils.metrics import MetricsCollector, emit_metric

logger = get_logger(__name__)

RECEIVE_TIMEOUT_SECONDS = 5
ERROR_BACKOFF_SECONDS = 1


class TaskTimeoutError(Exception):
    """A review task exceeded the whole-task timeout."""
    pass


class Worker:
    """Worker process that consumes the review queue."""

    def __init__(
        self,
        redis_client: Optional[RedisClient] = None,
        queue: Optional[ReviewQueue] = None,
        processor: Optional[ReviewProcessor] = None,
        status_service: Optional[ReviewStatusService] = None,
        max_workers: int = settings.max_workers,
        task_timeout: float = settings.task_timeout_seconds,
        receive_timeout: float = RECEIVE_TIMEOUT_SECONDS,
    ):
        """
        Initialize the worker. Collaborators default to settings-based instances.

        Args:
            redis_client: Redis client
            queue: Review queue (consumer handles are derived from it)
            processor: Review processor
            status_service: Review status tracking
            max_workers: Number of concurrent consumer loops
            task_timeout: Seconds a single task may run
            receive_timeout: Seconds each receive blocks waiting for work
        """
        self.redis_client = redis_client or RedisClient()
        self.queue = queue or ReviewQueue(
            self.redis_client,
            max_retries=settings.queue_max_retries,
            retry_base_delay=settings.queue_retry_base_delay,
            retry_max_delay=settings.queue_retry_max_delay,
        )
        self.status_service = status_service or ReviewStatusService(self.redis_client)
        self.processor = processor or ReviewProcessor(
            llm=LLMClient(),
            formatter=ReviewFormatter(),
            status_service=self.status_service,
            config_service=RepositoryConfigService(self.redis_client),
            github_factory=create_github_client,
            model=settings.llm_model,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            max_diff_bytes=settings.max_diff_bytes,
            bot_login=settings.bot_login,
            continuation_delay=settings.continuation_delay_seconds,
        )
        self.max_workers = max_workers
        self.task_timeout = task_timeout
        self.receive_timeout = receive_timeout
        self.running = False
        self._consumers: List[asyncio.Task] = []
        self._stopped = False

    async def start(self) -> None:
        """
        Start the worker process.

        Initializes Redis and runs the consumer loops until stopped.
        """
        logger.info("Starting worker process...")

        await self.redis_client.initialize()
        self.running = True
        self._register_signal_handlers()

        self._consumers = [
            asyncio.create_task(self._consume(f"worker-{index}"))
            for index in range(self.max_workers)
        ]
        logger.info(f"Worker process started with {self.max_workers} consumers")

        await asyncio.gather(*self._consumers)

    async def stop(self) -> None:
        """
        Stop the worker process gracefully.

        Consumers finish their current task and exit at the next receive.
        """
        if self._stopped:
            return
        self._stopped = True
        logger.info("Stopping worker process...")
        self.running = False

        if self._consumers:
            await asyncio.gather(*self._consumers, return_exceptions=True)

        await self.redis_client.close()
        logger.info("Worker process stopped")

    async def _consume(self, consumer_id: str) -> None:
        """
        Consumer loop.

        Continuously promotes due retries and processes one task at a time.
        """
        queue = self.queue.for_consumer(consumer_id)
        await queue.requeue_inflight()
        logger.info(f"Consumer {consumer_id} started")

        while self.running:
            try:
                await queue.promote_due()
                message = await queue.receive(timeout=self.receive_timeout)
                if message is not None:
                    await self.handle_message(queue, message)

            except asyncio.CancelledError:
                logger.info(f"Consumer {consumer_id} cancelled")
                break

            except (RedisError, RedisConnectionError) as e:
                logger.error(f"Consumer {consumer_id} lost Redis: {e}")
                await asyncio.sleep(ERROR_BACKOFF_SECONDS)

        logger.info(f"Consumer {consumer_id} stopped")

    async def handle_message(self, queue: ReviewQueue, message: QueueMessage) -> None:
        """
        Process one received task and settle it on the queue.

        Success and skips are acked; failures go to ``queue.fail`` which
        schedules a retry or dead-letters the task.
        """
        task = message.task
        metrics = MetricsCollector(task.event_id, task.repository_full_name, task.pr_number)
        metrics.start()
        await self._set_status(task, ReviewState.PROCESSING)

        try:
            outcome = await asyncio.wait_for(self.processor.process(task, metrics), timeout=self.task_timeout)

        except asyncio.TimeoutError:
            error = TaskTimeoutError(f"Review task exceeded {self.task_timeout}s")
            await self._handle_failure(queue, message, error, metrics)

        except Exception as e:
            # Any failure is settled on the queue; the consumer loop must survive it
            await self._handle_failure(queue, message, e, metrics)

        else:
            await queue.ack(message)
            state = ReviewState.COMPLETED if outcome.status is ProcessStatus.PUBLISHED else ReviewState.SKIPPED
            await self._set_status(task, state, error=outcome.reason)
            metrics.complete(status=outcome.status.value)
            emit_metric("review_task_completed", 1, status=outcome.status.value, reason=outcome.reason)

        summary = metrics.get_metrics_summary()
        emit_metric("review_task_duration_ms", summary["duration_ms"] or 0, status=summary["status"])

    async def _handle_failure(
        self,
        queue: ReviewQueue,
        message: QueueMessage,
        error: Exception,
        metrics: MetricsCollector,
    ) -> None:
        task = message.task
        log_error_with_context(
            logger,
            f"Review task failed: {error}",
            error,
            repository=task.repository_full_name,
            pr_number=task.pr_number,
            event_id=task.event_id,
            retry_count=task.retry_count,
        )

        retried = await queue.fail(message, error)
        state = ReviewState.FAILED if retried else ReviewState.DEAD_LETTERED
        await self._set_status(task, state, error=str(error))
        metrics.complete(status=state.value, error_message=str(error))
        emit_metric("review_task_failed", 1, retried=retried, error_type=type(error).__name__)

    async def _set_status(self, task: ReviewTask, state: ReviewState, error: Optional[str] = None) -> None:
        """Record review status; a Redis failure here must not strand the task."""
        try:
            await self.status_service.set_status(task, state, error=error)
        except (RedisError, RedisConnectionError) as e:
            logger.warning(
                f"Could not record status {state.value}: {e}",
                extra={"repository": task.repository_full_name, "pr_number": task.pr_number}
            )

    def _register_signal_handlers(self) -> None:
        """Register signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum: int) -> None:
            logger.info(f"Received signal {signal.Signals(signum).name}, initiating graceful shutdown...")
            self.running = False

        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(signum, signal_handler, signum)

        logger.info("Signal handlers registered (SIGTERM, SIGINT)")


async def main() -> None:
    """Main entry point for worker process."""
    setup_logging(settings.log_level.upper())
    logger.info("Worker process starting...")

    worker = Worker()

    try:
        await worker.start()
    except RedisConnectionError as e:
        logger.error(f"Worker process failed: {e}", exc_info=True)
        sys.exit(1)
    finally:
        await worker.stop()


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
