"""
Review status tracking.

Keeps the lifecycle state of the latest review task per pull request and
the record of which revisions already have a published review.
"""

from datetime import datetime, timezone
from typing import Optional

from reviewbot.models.review_task import ReviewTask
from reviewbot.models.status import PublishedReviewRecord, ReviewState, ReviewStatus
from reviewbot.services.redis_client import RedisClient
from reviewbot.utils.logging import get_logger

logger = get_logger(__name__)

STATUS_KEY = "status:{repository}:{pr_number}"
REVIEW_KEY = "review:{repository}:{pr_number}:{head_sha}"

STATUS_TTL_SECONDS = 24 * 60 * 60
REVIEW_TTL_SECONDS = 7 * 24 * 60 * 60

_TERMINAL_STATES = {
    ReviewState.COMPLETED,
    ReviewState.FAILED,
    ReviewState.SKIPPED,
    ReviewState.DEAD_LETTERED,
}


class ReviewStatusService:
    """Stores review status and published review records in Redis."""

    def __init__(self, redis_client: RedisClient):
        self.redis = redis_client

    async def set_status(
        self,
        task: ReviewTask,
        state: ReviewState,
        error: Optional[str] = None,
    ) -> ReviewStatus:
        """
        Record the state of a task's pull request.

        ``started_at`` is set when processing begins and kept for the
        transitions that follow; ``completed_at`` is set on terminal states.
        """
        key = STATUS_KEY.format(repository=task.repository_full_name, pr_number=task.pr_number)
        now = datetime.now(timezone.utc)

        previous = await self.get_status(task.repository_full_name, task.pr_number)
        started_at = None
        if state is ReviewState.PROCESSING:
            started_at = now
        elif previous and previous.head_sha == task.head_sha:
            started_at = previous.started_at

        status = ReviewStatus(
            repository=task.repository_full_name,
            pr_number=task.pr_number,
            head_sha=task.head_sha,
            status=state,
            started_at=started_at,
            completed_at=now if state in _TERMINAL_STATES else None,
            error=error,
            retry_count=task.retry_count,
        )
        await self.redis.put(key, status.model_dump_json(), ttl_seconds=STATUS_TTL_SECONDS)
        return status

    async def get_status(self, repository: str, pr_number: int) -> Optional[ReviewStatus]:
        """Return the stored status for a pull request, if any."""
        raw = await self.redis.get(STATUS_KEY.format(repository=repository, pr_number=pr_number))
        return ReviewStatus.model_validate_json(raw) if raw else None

    async def get_published(self, repository: str, pr_number: int, head_sha: str) -> Optional[PublishedReviewRecord]:
        """Return the published review record for a revision, if any."""
        raw = await self.redis.get(
            REVIEW_KEY.format(repository=repository, pr_number=pr_number, head_sha=head_sha)
        )
        return PublishedReviewRecord.model_validate_json(raw) if raw else None

    async def record_published(self, record: PublishedReviewRecord) -> None:
        """Mark a revision as reviewed."""
        key = REVIEW_KEY.format(
            repository=record.repository, pr_number=record.pr_number, head_sha=record.head_sha
        )
        await self.redis.put(key, record.model_dump_json(), ttl_seconds=REVIEW_TTL_SECONDS)
        logger.info(
            f"Recorded published review {record.review_id}",
            extra={"repository": record.repository, "pr_number": record.pr_number, "head_sha": record.head_sha}
        )
