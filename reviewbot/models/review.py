"""Review result data models."""

from enum import Enum
from typing import Iterable, List, Optional

from pydantic import BaseModel, Field


class Verdict(str, Enum):
    """Overall review verdict, mapped onto a GitHub review event."""

    APPROVE = "approve"
    REQUEST_CHANGES = "request_changes"
    COMMENT = "comment"

    @property
    def event(self) -> str:
        return {
            Verdict.APPROVE: "APPROVE",
            Verdict.REQUEST_CHANGES: "REQUEST_CHANGES",
            Verdict.COMMENT: "COMMENT",
        }[self]


class FileVerdict(str, Enum):
    """Verdict for a single file reviewed by the chunked fallback."""

    CRITICAL = "critical"
    REQUEST_CHANGES = "request_changes"
    COMMENT = "comment"
    APPROVE = "approve"

    @property
    def precedence(self) -> int:
        return _FILE_VERDICT_PRECEDENCE[self]

    def to_review_verdict(self) -> Verdict:
        if self in (FileVerdict.CRITICAL, FileVerdict.REQUEST_CHANGES):
            return Verdict.REQUEST_CHANGES
        if self is FileVerdict.COMMENT:
            return Verdict.COMMENT
        return Verdict.APPROVE


_FILE_VERDICT_PRECEDENCE = {
    FileVerdict.APPROVE: 0,
    FileVerdict.COMMENT: 1,
    FileVerdict.REQUEST_CHANGES: 2,
    FileVerdict.CRITICAL: 3,
}


def aggregate_verdicts(verdicts: Iterable[FileVerdict]) -> FileVerdict:
    """Return the most severe verdict; approve when there is nothing to aggregate."""
    return max(verdicts, key=lambda v: v.precedence, default=FileVerdict.APPROVE)


class Severity(str, Enum):
    """Severity of an inline review comment."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class Side(str, Enum):
    """Diff side an inline comment is anchored to."""

    LEFT = "LEFT"
    RIGHT = "RIGHT"


class SkipReason(str, Enum):
    """Why a file was not reviewed by the chunked fallback."""

    TOO_LARGE = "too_large"
    NOT_REACHED = "not_reached"
    FAILED = "failed"
    FILE_LIMIT = "file_limit"


class ReviewComment(BaseModel):
    """Inline comment anchored to a line of the diff."""

    path: str
    line: int = Field(ge=1)
    side: Side = Side.RIGHT
    body: str
    severity: Severity = Severity.INFO
    category: Optional[str] = None


class ReviewSummary(BaseModel):
    """Headline of a review."""

    verdict: Verdict
    confidence: float = Field(ge=0.0, le=1.0)
    main_issues: List[str] = []
    positives: List[str] = []


class SkippedFile(BaseModel):
    """File left out of a chunked review."""

    path: str
    reason: SkipReason


class ReviewFeatures(BaseModel):
    """Counters describing how a chunked review was produced."""

    chunked: bool = False
    files_analyzed: int = 0
    files_skipped: int = 0
    critical_count: int = 0
    warning_count: int = 0
    approved_count: int = 0
    skipped_files: List[SkippedFile] = []


class ReviewMetadata(BaseModel):
    """Provenance of a review."""

    model: str
    tokens_used: int = 0
    processing_time_ms: int = 0
    review_iteration: Optional[int] = None
    previous_review_id: Optional[int] = None
    features: Optional[ReviewFeatures] = None


class FileReview(BaseModel):
    """Per-file result of the chunked fallback."""

    path: str
    verdict: FileVerdict
    confidence: float = Field(ge=0.0, le=1.0)
    issues: List[str] = []
    summary: str = ""
    comments: List[ReviewComment] = []


class ReviewResult(BaseModel):
    """Complete generated review, ready to be formatted and published."""

    summary: ReviewSummary
    comments: List[ReviewComment] = []
    overall_feedback: str = ""
    metadata: ReviewMetadata
    file_reviews: List[FileReview] = []

    @property
    def chunked(self) -> bool:
        return bool(self.metadata.features and self.metadata.features.chunked)


class FormattedReview(BaseModel):
    """Review split into publishable comment bodies."""

    main_body: str
    continuation_bodies: List[str] = []
    comments: List[ReviewComment] = []
