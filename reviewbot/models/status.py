"""Stored review state data models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class ReviewState(str, Enum):
    """Lifecycle state of the latest review task for a pull request."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    DEAD_LETTERED = "dead_lettered"


class ReviewStatus(BaseModel):
    """Review status stored under ``status:{repo}:{pr}``."""

    repository: str
    pr_number: int
    head_sha: Optional[str] = None
    status: ReviewState
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    retry_count: int = 0


class PublishedReviewRecord(BaseModel):
    """Marker that a revision has been reviewed, stored under ``review:{repo}:{pr}:{sha}``."""

    repository: str
    pr_number: int
    head_sha: str
    review_id: int
    verdict: str
    model: str
    published_at: datetime


class DeduplicationRecord(BaseModel):
    """Marker that a webhook delivery was accepted."""

    event_id: str
    processed_at: datetime


class RateLimitDecision(BaseModel):
    """Outcome of a rate limiter check."""

    allowed: bool
    remaining: int
    reset_at: int  # epoch milliseconds


class RateLimitWindow(BaseModel):
    """Current fixed-window counter for an installation."""

    installation_id: int
    window_index: int
    count: int
    reset_at: int
