"""Review task data models."""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReviewTask(BaseModel):
    """Unit of work carried on the review queue, one per accepted webhook."""

    model_config = ConfigDict(frozen=True)

    repository_full_name: str  # 'owner/repo'
    pr_number: int
    installation_id: int
    action: str  # 'opened', 'synchronize', 'edited', 'ready_for_review'
    head_sha: str
    event_id: str
    enqueued_at: datetime = Field(default_factory=_utcnow)
    retry_count: int = 0

    @property
    def owner(self) -> str:
        return self.repository_full_name.split("/", 1)[0]

    @property
    def repo(self) -> str:
        return self.repository_full_name.split("/", 1)[1]

    def with_retry(self) -> "ReviewTask":
        """Return a copy of this task with the retry counter incremented."""
        return self.model_copy(update={"retry_count": self.retry_count + 1})
