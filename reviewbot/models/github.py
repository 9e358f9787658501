"""GitHub pull request data models."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class PullRequestInfo(BaseModel):
    """Pull request metadata used for review generation."""

    number: int
    title: str
    body: Optional[str] = None
    author: str
    head_sha: str
    base_ref: str
    head_ref: str
    draft: bool = False
    state: str = "open"


class ChangedFile(BaseModel):
    """File changed by a pull request, with its unified diff hunk."""

    filename: str
    status: str  # 'added', 'modified', 'removed', 'renamed'
    additions: int = 0
    deletions: int = 0
    changes: int = 0
    patch: Optional[str] = None  # Absent for binary or very large files


class ExistingBotReview(BaseModel):
    """A review previously submitted on a pull request."""

    id: int
    body: str = ""
    state: str  # 'APPROVED', 'CHANGES_REQUESTED', 'COMMENTED', 'DISMISSED'
    submitted_at: Optional[datetime] = None
    user_login: Optional[str] = None
    user_type: Optional[str] = None
