"""Repository configuration data models."""

from typing import List, Optional

from pydantic import BaseModel, Field


class RepositoryConfig(BaseModel):
    """Per-repository review settings stored under ``config:{owner}/{repo}``."""

    enabled: bool = True
    model: Optional[str] = None  # Falls back to the configured LLM model
    review_drafts: bool = False
    auto_approve: bool = True
    max_files_per_review: int = Field(default=50, ge=1)
    ignore_paths: List[str] = []
    focus_paths: List[str] = []
    custom_instructions: Optional[str] = None
