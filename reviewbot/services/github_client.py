"""
GitHub REST API client.

This module provides functionality to retrieve pull request context (metadata,
unified diff, changed files) and to publish reviews and comments, using
httpx. Authentication is either a static token or GitHub App installation
tokens minted from an RS256 JWT.
"""

import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import httpx
import jwt

from reviewbot.models.github import ChangedFile, ExistingBotReview, PullRequestInfo
from reviewbot.models.review import ReviewComment
from reviewbot.utils.logging import get_logger, log_api_call
from reviewbot.utils.resilience import PermanentError, TransientError, retry_with_backoff


logger = get_logger(__name__)

API_VERSION = "2022-11-28"
JSON_MEDIA_TYPE = "application/vnd.github+json"
DIFF_MEDIA_TYPE = "application/vnd.github.v3.diff"
PAGE_SIZE = 100


class GitHubError(Exception):
    """Base exception for GitHub API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class GitHubTransientError(GitHubError, TransientError):
    """Network failure, 5xx, or rate limiting. May succeed on retry."""
    pass


class GitHubPermanentError(GitHubError, PermanentError):
    """Client error that will not succeed on retry."""
    pass


def _is_rate_limited(response: httpx.Response) -> bool:
    if response.status_code == 429:
        return True
    return response.status_code == 403 and response.headers.get("x-ratelimit-remaining") == "0"


def _error_message(response: httpx.Response) -> str:
    try:
        return response.json().get("message", response.text)
    except ValueError:
        return response.text


class GitHubClient:
    """
    Async GitHub client scoped to one App installation.

    Use as an async context manager so the underlying HTTP client is closed:

        async with GitHubClient(installation_id, token="...") as github:
            pr = await github.get_pull_request("octo/repo", 42)
    """

    def __init__(
        self,
        installation_id: Optional[int] = None,
        api_url: str = "https://api.github.com",
        token: Optional[str] = None,
        app_id: Optional[str] = None,
        private_key: Optional[str] = None,
        timeout: float = 15.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize GitHub client.

        Args:
            installation_id: App installation the token is minted for
            api_url: REST API base URL
            token: Static token; when set, App authentication is not used
            app_id: GitHub App id
            private_key: PEM encoded App private key
            timeout: Per-request timeout in seconds
            http_client: Preconfigured client (mainly for tests)
        """
        if not token and not (app_id and private_key and installation_id):
            raise ValueError("Either a token or app_id, private_key and installation_id are required")

        self.installation_id = installation_id
        self.api_url = api_url.rstrip("/")
        self._static_token = token
        self._app_id = app_id
        self._private_key = private_key
        self._token_cache: Optional[tuple[str, datetime]] = None
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    # ========== Authentication ==========

    def _generate_jwt(self) -> str:
        """Generate a JWT for GitHub App authentication."""
        now = int(time.time())
        payload = {
            "iat": now - 60,  # Allow for clock drift
            "exp": now + (10 * 60),  # GitHub's maximum
            "iss": self._app_id,
        }
        return jwt.encode(payload, self._private_key, algorithm="RS256")

    async def _get_token(self) -> str:
        """Return the static token, or a cached installation token."""
        if self._static_token:
            return self._static_token

        if self._token_cache:
            token, expiry = self._token_cache
            if datetime.now() < expiry:
                return token

        response = await self._send(
            "POST",
            f"/app/installations/{self.installation_id}/access_tokens",
            headers={"Authorization": f"Bearer {self._generate_jwt()}"},
        )
        token = response.json()["token"]
        # Tokens live for an hour; refresh early
        self._token_cache = (token, datetime.now() + timedelta(minutes=50))
        logger.info(
            "Fetched new installation access token",
            extra={"installation_id": self.installation_id}
        )
        return token

    # ========== Transport ==========

    async def _send(
        self,
        method: str,
        path: str,
        headers: Optional[Dict[str, str]] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Send one request and map failures onto the error taxonomy.

        Raises:
            GitHubTransientError: Network failure, 5xx, or rate limiting
            GitHubPermanentError: Any other 4xx
        """
        request_headers = {"Accept": JSON_MEDIA_TYPE, "X-GitHub-Api-Version": API_VERSION}
        request_headers.update(headers or {})

        start = time.monotonic()
        try:
            response = await self._http.request(
                method, f"{self.api_url}{path}", headers=request_headers, **kwargs
            )
        except httpx.HTTPError as e:
            log_api_call(logger, "github", path, method, error=str(e))
            raise GitHubTransientError(f"GitHub request failed: {e}") from e

        duration_ms = (time.monotonic() - start) * 1000

        if response.is_success:
            log_api_call(logger, "github", path, method, response.status_code, duration_ms)
            return response

        message = f"GitHub API {method} {path} returned {response.status_code}: {_error_message(response)}"
        log_api_call(logger, "github", path, method, response.status_code, duration_ms, error=message)

        if response.status_code >= 500 or _is_rate_limited(response):
            raise GitHubTransientError(message, response.status_code)
        raise GitHubPermanentError(message, response.status_code)

    async def _request(self, method: str, path: str, accept: Optional[str] = None, **kwargs: Any) -> httpx.Response:
        headers = {"Authorization": f"Bearer {await self._get_token()}"}
        if accept:
            headers["Accept"] = accept
        return await self._send(method, path, headers=headers, **kwargs)

    async def _paginate(self, path: str) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        page = 1
        while True:
            response = await self._request("GET", path, params={"per_page": PAGE_SIZE, "page": page})
            batch = response.json()
            items.extend(batch)
            if len(batch) < PAGE_SIZE:
                return items
            page += 1

    # ========== Pull Request Context ==========

    @retry_with_backoff(max_retries=3, base_delay=1.0, exceptions=(GitHubTransientError,))
    async def get_pull_request(self, repository: str, pr_number: int) -> PullRequestInfo:
        """
        Get pull request metadata.

        Args:
            repository: Repository full name ('owner/repo')
            pr_number: Pull request number

        Returns:
            PullRequestInfo
        """
        data = (await self._request("GET", f"/repos/{repository}/pulls/{pr_number}")).json()
        return PullRequestInfo(
            number=data["number"],
            title=data.get("title", ""),
            body=data.get("body"),
            author=(data.get("user") or {}).get("login", "unknown"),
            head_sha=data["head"]["sha"],
            head_ref=data["head"].get("ref", ""),
            base_ref=data["base"].get("ref", ""),
            draft=data.get("draft", False),
            state=data.get("state", "open"),
        )

    @retry_with_backoff(max_retries=3, base_delay=1.0, exceptions=(GitHubTransientError,))
    async def get_diff(self, repository: str, pr_number: int, head_sha: Optional[str] = None) -> str:
        """
        Get the unified diff of a pull request.

        GitHub always returns the diff of the current head; callers compare
        ``head_sha`` against the pull request head beforehand.

        Args:
            repository: Repository full name
            pr_number: Pull request number
            head_sha: Revision the caller expects, used for logging

        Returns:
            Unified diff text
        """
        response = await self._request(
            "GET", f"/repos/{repository}/pulls/{pr_number}", accept=DIFF_MEDIA_TYPE
        )
        logger.debug(
            f"Fetched diff ({len(response.content)} bytes)",
            extra={"repository": repository, "pr_number": pr_number, "head_sha": head_sha}
        )
        return response.text

    @retry_with_backoff(max_retries=3, base_delay=1.0, exceptions=(GitHubTransientError,))
    async def get_changed_files(self, repository: str, pr_number: int) -> List[ChangedFile]:
        """
        List files changed by a pull request, with their patches.

        Args:
            repository: Repository full name
            pr_number: Pull request number

        Returns:
            Changed files in GitHub's order
        """
        items = await self._paginate(f"/repos/{repository}/pulls/{pr_number}/files")
        return [
            ChangedFile(
                filename=item["filename"],
                status=item.get("status", "modified"),
                additions=item.get("additions", 0),
                deletions=item.get("deletions", 0),
                changes=item.get("changes", 0),
                patch=item.get("patch"),
            )
            for item in items
        ]

    # ========== Reviews and Comments ==========

    @retry_with_backoff(max_retries=3, base_delay=1.0, exceptions=(GitHubTransientError,))
    async def list_reviews(self, repository: str, pr_number: int) -> List[ExistingBotReview]:
        """List every review on a pull request, oldest first."""
        items = await self._paginate(f"/repos/{repository}/pulls/{pr_number}/reviews")
        return [
            ExistingBotReview(
                id=item["id"],
                body=item.get("body") or "",
                state=item.get("state", ""),
                submitted_at=item.get("submitted_at"),
                user_login=(item.get("user") or {}).get("login"),
                user_type=(item.get("user") or {}).get("type"),
            )
            for item in items
        ]

    async def dismiss_review(self, repository: str, pr_number: int, review_id: int, message: str) -> None:
        """Dismiss an APPROVED or CHANGES_REQUESTED review."""
        await self._request(
            "PUT",
            f"/repos/{repository}/pulls/{pr_number}/reviews/{review_id}/dismissals",
            json={"message": message, "event": "DISMISS"},
        )

    async def update_review(self, repository: str, pr_number: int, review_id: int, body: str) -> None:
        """Replace the body of an existing review."""
        await self._request(
            "PUT",
            f"/repos/{repository}/pulls/{pr_number}/reviews/{review_id}",
            json={"body": body},
        )

    async def create_review(
        self,
        repository: str,
        pr_number: int,
        body: str,
        event: str,
        comments: Optional[List[ReviewComment]] = None,
        commit_id: Optional[str] = None,
    ) -> int:
        """
        Submit a pull request review.

        Args:
            repository: Repository full name
            pr_number: Pull request number
            body: Review body (markdown)
            event: 'APPROVE', 'REQUEST_CHANGES' or 'COMMENT'
            comments: Inline comments anchored to diff lines
            commit_id: Revision the review applies to

        Returns:
            Id of the created review
        """
        payload: Dict[str, Any] = {"body": body, "event": event}
        if commit_id:
            payload["commit_id"] = commit_id
        if comments:
            payload["comments"] = [
                {"path": c.path, "line": c.line, "side": c.side.value, "body": c.body}
                for c in comments
            ]

        response = await self._request(
            "POST", f"/repos/{repository}/pulls/{pr_number}/reviews", json=payload
        )
        return response.json()["id"]

    async def create_issue_comment(self, repository: str, pr_number: int, body: str) -> int:
        """Post a plain comment on the pull request conversation."""
        response = await self._request(
            "POST", f"/repos/{repository}/issues/{pr_number}/comments", json={"body": body}
        )
        return response.json()["id"]


def create_github_client(installation_id: int) -> GitHubClient:
    """
    Create a GitHub client for an installation from settings.

    Args:
        installation_id: App installation id from the webhook

    Returns:
        GitHubClient instance
    """
    from reviewbot.config import settings

    return GitHubClient(
        installation_id=installation_id,
        api_url=settings.github_api_url,
        token=settings.github_token,
        app_id=settings.github_app_id,
        private_key=settings.github_private_key.replace("\\n", "\n") if settings.github_private_key else None,
        timeout=settings.github_timeout_seconds,
    )
