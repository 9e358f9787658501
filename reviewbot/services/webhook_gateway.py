"""
Webhook gateway: validates inbound GitHub deliveries and enqueues review tasks.

Checks run in a fixed order and each rejection leaves no side effects
behind it:

1. Signature (HMAC-SHA256 over the raw body)
2. Event filter (reviewable pull_request actions, non-draft)
3. Payload validation
4. Deduplication by delivery id
5. Per-installation rate limit
6. Enqueue, then mark the delivery processed
"""

import json
import uuid
from typing import Any, Dict, Optional

from redis.exceptions import RedisError

from reviewbot.models.api_response import GatewayResult, GatewayStatus
from reviewbot.models.review_task import ReviewTask
from reviewbot.models.status import ReviewState
from reviewbot.services.deduplicator import Deduplicator
from reviewbot.services.rate_limiter import RateLimiter
from reviewbot.services.redis_client import RedisConnectionError
from reviewbot.services.review_queue import ReviewQueue
from reviewbot.services.review_status import ReviewStatusService
from reviewbot.services.signature import SignatureValidator
from reviewbot.utils.logging import get_logger, log_webhook_event

logger = get_logger(__name__)

REVIEWABLE_EVENT = "pull_request"
REVIEWABLE_ACTIONS = frozenset({"opened", "synchronize", "edited", "ready_for_review"})


class EnqueueError(Exception):
    """The review task could not be stored; the delivery should be retried."""
    pass


class WebhookGateway:
    """Turns inbound webhook deliveries into queued review tasks."""

    def __init__(
        self,
        validator: SignatureValidator,
        deduplicator: Deduplicator,
        rate_limiter: RateLimiter,
        queue: ReviewQueue,
        status_service: Optional[ReviewStatusService] = None,
    ):
        self.validator = validator
        self.deduplicator = deduplicator
        self.rate_limiter = rate_limiter
        self.queue = queue
        self.status_service = status_service

    async def handle(
        self,
        body: bytes,
        event_type: Optional[str],
        delivery_id: Optional[str],
        signature: Optional[str],
    ) -> GatewayResult:
        """
        Handle one webhook delivery.

        Args:
            body: Raw request body
            event_type: ``X-GitHub-Event`` header
            delivery_id: ``X-GitHub-Delivery`` header; generated when missing
            signature: ``X-Hub-Signature-256`` header

        Returns:
            GatewayResult describing what happened

        Raises:
            EnqueueError: If the task could not be enqueued
        """
        delivery_id = delivery_id or str(uuid.uuid4())

        if not self.validator.is_valid(body, signature):
            logger.warning("Invalid webhook signature", extra={"event_id": delivery_id})
            return GatewayResult(status=GatewayStatus.UNAUTHORIZED, delivery_id=delivery_id, message="Invalid signature")

        try:
            payload = json.loads(body)
        except (ValueError, UnicodeDecodeError):
            return GatewayResult(status=GatewayStatus.INVALID, delivery_id=delivery_id, message="Malformed JSON payload")
        if not isinstance(payload, dict):
            return GatewayResult(status=GatewayStatus.INVALID, delivery_id=delivery_id, message="Malformed JSON payload")

        action = payload.get("action", "")
        if event_type != REVIEWABLE_EVENT or action not in REVIEWABLE_ACTIONS:
            return GatewayResult(
                status=GatewayStatus.IGNORED,
                delivery_id=delivery_id,
                message=f"Event {event_type}.{action} ignored",
            )

        task = self._build_task(payload, delivery_id)
        if task is None:
            return GatewayResult(status=GatewayStatus.INVALID, delivery_id=delivery_id, message="Invalid pull request payload")

        log_webhook_event(logger, event_type, action, task.repository_full_name, task.pr_number, delivery_id)

        if payload["pull_request"].get("draft"):
            return GatewayResult(status=GatewayStatus.IGNORED, delivery_id=delivery_id, message="Draft pull request ignored")

        if await self.deduplicator.is_duplicate(task.repository_full_name, task.pr_number, delivery_id):
            logger.info("Duplicate delivery", extra={"event_id": delivery_id})
            return GatewayResult(status=GatewayStatus.DUPLICATE, delivery_id=delivery_id, message="Event already processed")

        decision = await self.rate_limiter.try_acquire(task.installation_id)
        if not decision.allowed:
            return GatewayResult(status=GatewayStatus.RATE_LIMITED, delivery_id=delivery_id, message="Rate limit exceeded")

        # Recorded before the send so a fast worker's status is never overwritten
        await self._record_status(task, ReviewState.PENDING)

        try:
            await self.queue.send(task)
        except (RedisError, RedisConnectionError) as e:
            logger.error(
                f"Failed to enqueue review task: {e}",
                extra={"event_id": delivery_id, "repository": task.repository_full_name, "pr_number": task.pr_number}
            )
            await self._record_status(task, ReviewState.FAILED, error="Failed to enqueue review task")
            raise EnqueueError(f"Failed to enqueue review task: {e}") from e

        await self.deduplicator.mark_processed(task.repository_full_name, task.pr_number, delivery_id)

        return GatewayResult(
            status=GatewayStatus.ACCEPTED,
            delivery_id=delivery_id,
            message="Review queued",
            task=task,
        )

    async def _record_status(self, task: ReviewTask, state: ReviewState, error: Optional[str] = None) -> None:
        if not self.status_service:
            return
        try:
            await self.status_service.set_status(task, state, error=error)
        except (RedisError, RedisConnectionError) as e:
            logger.warning(f"Failed to record {state.value} status: {e}", extra={"event_id": task.event_id})

    @staticmethod
    def _build_task(payload: Dict[str, Any], delivery_id: str) -> Optional[ReviewTask]:
        pull_request = payload.get("pull_request")
        repository = payload.get("repository")
        if not isinstance(pull_request, dict) or not isinstance(repository, dict):
            return None

        full_name = repository.get("full_name")
        number = pull_request.get("number", payload.get("number"))
        head_sha = (pull_request.get("head") or {}).get("sha")
        installation_id = (payload.get("installation") or {}).get("id", 0)

        if not full_name or not isinstance(number, int) or not head_sha:
            return None

        return ReviewTask(
            repository_full_name=full_name,
            pr_number=number,
            installation_id=installation_id,
            action=payload["action"],
            head_sha=head_sha,
            event_id=delivery_id,
        )
