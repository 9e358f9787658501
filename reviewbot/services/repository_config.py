"""
Repository configuration service.

Per-repository review settings live in Redis as JSON under
``config:{owner}/{repo}``. The review pipeline only reads them; a missing
or unreadable record means the defaults apply.
"""

import fnmatch
import re
from typing import Iterable, List, Optional

from reviewbot.models.github import ChangedFile
from reviewbot.models.repository import RepositoryConfig
from reviewbot.services.redis_client import RedisClient
from reviewbot.utils.logging import get_logger


logger = get_logger(__name__)

CONFIG_KEY = "config:{repository}"

_REPOSITORY_PATTERN = re.compile(r"^(?P<owner>[A-Za-z0-9_.-]+)/(?P<repo>[A-Za-z0-9_.-]+)$")


class RepositoryValidationError(Exception):
    """Raised when a repository full name is malformed."""
    pass


def validate_repository_name(repository: str) -> str:
    """
    Validate an ``owner/repo`` full name.

    Raises:
        RepositoryValidationError: If the name is malformed
    """
    if not _REPOSITORY_PATTERN.match(repository or ""):
        raise RepositoryValidationError(f"Invalid repository name: {repository!r}")
    return repository


def _matches(path: str, patterns: Iterable[str]) -> bool:
    return any(fnmatch.fnmatch(path, pattern) for pattern in patterns)


def is_path_included(path: str, config: RepositoryConfig) -> bool:
    """
    Apply the repository's ignore and focus globs to a file path.

    Ignore patterns win. When focus patterns are set, only matching
    paths are included.
    """
    if _matches(path, config.ignore_paths):
        return False
    if config.focus_paths:
        return _matches(path, config.focus_paths)
    return True


_DIFF_FILE_BOUNDARY = re.compile(r"(?m)^(?=diff --git )")
_NEW_FILE_PATH = re.compile(r"(?m)^\+\+\+ b/(?P<path>.+?)\t?$")
_OLD_FILE_PATH = re.compile(r"(?m)^--- a/(?P<path>.+?)\t?$")


def _section_path(section: str) -> Optional[str]:
    """Path of one file section of a unified diff, or None for a preamble."""
    if not section.startswith("diff --git "):
        return None

    # Sections with content name the file in their ---/+++ lines; deletions only in ---
    match = _NEW_FILE_PATH.search(section) or _OLD_FILE_PATH.search(section)
    if match:
        return match.group("path")

    # Binary and mode-only sections: the header is "a/<path> b/<path>"
    header = section.splitlines()[0][len("diff --git "):]
    length = (len(header) - 5) // 2
    path = header[2:2 + length]
    if header == f"a/{path} b/{path}":
        return path
    return header.rsplit(" b/", 1)[-1]


def filter_diff(diff: str, config: RepositoryConfig) -> str:
    """Drop the per-file sections of a unified diff whose paths are filtered out."""
    if not config.ignore_paths and not config.focus_paths:
        return diff

    kept = []
    for section in _DIFF_FILE_BOUNDARY.split(diff):
        path = _section_path(section)
        if path is None or is_path_included(path, config):
            kept.append(section)
    return "".join(kept)


def filter_reviewable_files(files: List[ChangedFile], config: RepositoryConfig) -> List[ChangedFile]:
    """Keep files that pass the path filters and carry a textual patch."""
    return [f for f in files if f.patch and is_path_included(f.filename, config)]


class RepositoryConfigService:
    """Reads and writes per-repository review settings."""

    def __init__(self, redis_client: RedisClient):
        self.redis = redis_client

    async def get_config(self, repository: str) -> RepositoryConfig:
        """
        Get the configuration for a repository.

        Args:
            repository: Repository full name ('owner/repo')

        Returns:
            Stored configuration, or defaults if none is stored or it is invalid
        """
        try:
            data = await self.redis.get_json(CONFIG_KEY.format(repository=repository))
            if data is None:
                return RepositoryConfig()
            return RepositoryConfig(**data)
        except (ValueError, TypeError) as e:
            logger.warning(
                f"Invalid stored configuration, using defaults: {e}",
                extra={"repository": repository}
            )
            return RepositoryConfig()

    async def save_config(self, repository: str, config: RepositoryConfig) -> None:
        """
        Store the configuration for a repository.

        Raises:
            RepositoryValidationError: If the repository name is malformed
        """
        validate_repository_name(repository)
        await self.redis.put_json(CONFIG_KEY.format(repository=repository), config.model_dump())
        logger.info("Saved repository configuration", extra={"repository": repository})
