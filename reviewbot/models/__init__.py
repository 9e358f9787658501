"""Data models for the PR review bot."""

from .api_response import ErrorResponse, GatewayResult, GatewayStatus, WebhookResponse
from .github import ChangedFile, ExistingBotReview, PullRequestInfo
from .repository import RepositoryConfig
from .review import (
    FileReview,
    FileVerdict,
    FormattedReview,
    ReviewComment,
    ReviewFeatures,
    ReviewMetadata,
    ReviewResult,
    ReviewSummary,
    Severity,
    Side,
    SkippedFile,
    SkipReason,
    Verdict,
    aggregate_verdicts,
)
from .review_task import ReviewTask
from .status import (
    DeduplicationRecord,
    PublishedReviewRecord,
    RateLimitDecision,
    RateLimitWindow,
    ReviewState,
    ReviewStatus,
)

__all__ = [
    # Queue models
    "ReviewTask",
    # Review models
    "Verdict",
    "FileVerdict",
    "aggregate_verdicts",
    "Severity",
    "Side",
    "SkipReason",
    "ReviewComment",
    "ReviewSummary",
    "SkippedFile",
    "ReviewFeatures",
    "ReviewMetadata",
    "FileReview",
    "ReviewResult",
    "FormattedReview",
    # GitHub models
    "PullRequestInfo",
    "ChangedFile",
    "ExistingBotReview",
    # Repository models
    "RepositoryConfig",
    # Stored state models
    "ReviewState",
    "ReviewStatus",
    "PublishedReviewRecord",
    "DeduplicationRecord",
    "RateLimitDecision",
    "RateLimitWindow",
    # API response models
    "GatewayStatus",
    "GatewayResult",
    "WebhookResponse",
    "ErrorResponse",
]
