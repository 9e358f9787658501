"""
Review publishing with supersede semantics.

A pull request carries at most one live bot review. Before a new review is
created, the most recent live bot review is dismissed, or, for COMMENTED
reviews that GitHub cannot dismiss, its body is replaced with a superseded
notice. If that step fails nothing new is created, so two live bot reviews
never coexist.
"""

import asyncio
from typing import Awaitable, Callable, List, Optional

from pydantic import BaseModel

from reviewbot.models.github import ExistingBotReview
from reviewbot.models.review import FormattedReview, ReviewComment, ReviewResult, Verdict
from reviewbot.services.github_client import GitHubClient, GitHubError, GitHubPermanentError
from reviewbot.services.review_formatter import REVIEW_HEADER, SUPERSEDED_MARKER, ReviewFormatter
from reviewbot.utils.logging import get_logger
from reviewbot.utils.resilience import TransientError

logger = get_logger(__name__)

DISMISSIBLE_STATES = {"APPROVED", "CHANGES_REQUESTED"}


class PublishError(TransientError):
    """Publishing failed; the task should be retried."""
    pass


class PublishOutcome(BaseModel):
    """What was posted to the pull request."""

    review_id: int
    event: str
    iteration: int
    previous_review_id: Optional[int] = None
    continuation_ids: List[int] = []
    inline_comments: int = 0


def _render_inline_fallback(comments: List[ReviewComment]) -> str:
    lines = ["### 📍 Inline Comments", ""]
    for comment in comments:
        lines.append(f"**`{comment.path}` line {comment.line}:** {comment.body}")
        lines.append("")
    return "\n".join(lines)


class ReviewPublisher:
    """Publishes formatted reviews to a pull request."""

    def __init__(
        self,
        github: GitHubClient,
        formatter: ReviewFormatter,
        bot_login: Optional[str] = None,
        continuation_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize publisher.

        Args:
            github: Client for the pull request's installation
            formatter: Renders and sizes review bodies
            bot_login: Login the bot posts as (e.g. 'reviewbot[bot]')
            continuation_delay: Seconds to wait before each continuation comment
            sleep: Awaitable sleep, replaceable in tests
        """
        self.github = github
        self.formatter = formatter
        self.bot_login = bot_login
        self.continuation_delay = continuation_delay
        self._sleep = sleep

    def is_bot_review(self, review: ExistingBotReview) -> bool:
        if self.bot_login and review.user_login == self.bot_login:
            return True
        return review.user_type == "Bot" and review.body.startswith(REVIEW_HEADER)

    async def find_bot_reviews(self, repository: str, pr_number: int) -> List[ExistingBotReview]:
        """Return reviews authored by the bot, oldest first."""
        reviews = await self.github.list_reviews(repository, pr_number)
        return [review for review in reviews if self.is_bot_review(review)]

    @staticmethod
    def latest_live_review(bot_reviews: List[ExistingBotReview]) -> Optional[ExistingBotReview]:
        """The most recent bot review that has not been dismissed or superseded."""
        live = [
            review for review in bot_reviews
            if review.state != "DISMISSED" and SUPERSEDED_MARKER not in review.body
        ]
        # GitHub lists reviews chronologically
        return live[-1] if live else None

    async def _supersede(self, repository: str, pr_number: int, prior: ExistingBotReview, iteration: int) -> None:
        try:
            if prior.state in DISMISSIBLE_STATES:
                await self.github.dismiss_review(
                    repository, pr_number, prior.id,
                    f"Superseded by updated AI review (Review #{iteration})",
                )
            else:
                await self.github.update_review(
                    repository, pr_number, prior.id,
                    self.formatter.render_superseded_body(iteration),
                )
        except GitHubError as e:
            raise PublishError(f"Failed to supersede review {prior.id}: {e}") from e

        logger.info(
            f"Superseded previous review {prior.id}",
            extra={"repository": repository, "pr_number": pr_number, "review_state": prior.state}
        )

    async def _create_review(
        self,
        repository: str,
        pr_number: int,
        head_sha: str,
        result: ReviewResult,
        event: str,
    ) -> tuple[int, FormattedReview]:
        formatted = self.formatter.format_review(result)
        try:
            review_id = await self.github.create_review(
                repository, pr_number, formatted.main_body, event,
                comments=formatted.comments, commit_id=head_sha,
            )
            return review_id, formatted
        except GitHubPermanentError as e:
            if e.status_code != 422 or not formatted.comments:
                raise PublishError(f"Failed to create review: {e}") from e
            logger.warning(
                f"Inline comments rejected, retrying with comments in the body: {e}",
                extra={"repository": repository, "pr_number": pr_number}
            )
        except GitHubError as e:
            raise PublishError(f"Failed to create review: {e}") from e

        folded = result.model_copy(update={
            "overall_feedback": "\n\n".join(
                part for part in (result.overall_feedback, _render_inline_fallback(result.comments)) if part
            ),
            "comments": [],
        })
        formatted = self.formatter.format_review(folded)
        try:
            review_id = await self.github.create_review(
                repository, pr_number, formatted.main_body, event, commit_id=head_sha,
            )
        except GitHubError as e:
            raise PublishError(f"Failed to create review without inline comments: {e}") from e
        return review_id, formatted

    async def publish(
        self,
        repository: str,
        pr_number: int,
        head_sha: str,
        result: ReviewResult,
        auto_approve: bool = True,
    ) -> PublishOutcome:
        """
        Publish a review, superseding the bot's previous one.

        Args:
            repository: Repository full name
            pr_number: Pull request number
            head_sha: Revision that was reviewed
            result: Generated review
            auto_approve: When False an approve verdict is posted as a comment

        Returns:
            PublishOutcome

        Raises:
            PublishError: If any GitHub call fails
        """
        try:
            bot_reviews = await self.find_bot_reviews(repository, pr_number)
        except GitHubError as e:
            raise PublishError(f"Failed to list reviews: {e}") from e

        iteration = len(bot_reviews) + 1
        prior = self.latest_live_review(bot_reviews)

        result = result.model_copy(update={
            "metadata": result.metadata.model_copy(update={
                "review_iteration": iteration,
                "previous_review_id": prior.id if prior else None,
            })
        })

        if prior:
            await self._supersede(repository, pr_number, prior, iteration)

        event = result.summary.verdict.event
        if not auto_approve and result.summary.verdict is Verdict.APPROVE:
            event = Verdict.COMMENT.event

        review_id, formatted = await self._create_review(repository, pr_number, head_sha, result, event)

        continuation_ids = []
        for body in formatted.continuation_bodies:
            await self._sleep(self.continuation_delay)
            try:
                continuation_ids.append(await self.github.create_issue_comment(repository, pr_number, body))
            except GitHubError as e:
                raise PublishError(
                    f"Failed to post continuation {len(continuation_ids) + 2} for review {review_id}: {e}"
                ) from e

        logger.info(
            f"Published review {review_id} ({event})",
            extra={
                "repository": repository,
                "pr_number": pr_number,
                "review_iteration": iteration,
                "continuations": len(continuation_ids),
                "inline_comments": len(formatted.comments),
            }
        )

        return PublishOutcome(
            review_id=review_id,
            event=event,
            iteration=iteration,
            previous_review_id=prior.id if prior else None,
            continuation_ids=continuation_ids,
            inline_comments=len(formatted.comments),
        )
