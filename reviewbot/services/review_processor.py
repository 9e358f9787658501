"""
Review processor: turns one review task into one published review.

Flow per task:
1. Load repository configuration and PR metadata; skip disabled
   repositories, drafts, stale revisions and already-reviewed revisions.
2. Review the whole diff in one LLM call.
3. If the diff is too large for the model, fall back to reviewing files one
   at a time and aggregating the per-file verdicts.
4. Publish through ReviewPublisher and record the revision as reviewed.

Errors that should be retried (rate limits, timeouts, GitHub failures)
propagate to the worker, which hands them to the review queue.
"""

import time
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional, Tuple

from pydantic import BaseModel

from reviewbot.models.github import ChangedFile, PullRequestInfo
from reviewbot.models.repository import RepositoryConfig
from reviewbot.models.review import (
    FileReview,
    FileVerdict,
    ReviewFeatures,
    ReviewMetadata,
    ReviewResult,
    ReviewSummary,
    SkippedFile,
    SkipReason,
    Verdict,
    aggregate_verdicts,
)
from reviewbot.models.review_task import ReviewTask
from reviewbot.models.status import PublishedReviewRecord
from reviewbot.services.github_client import GitHubClient
from reviewbot.services.llm_client import (
    LLMClient,
    LLMError,
    LLMRateLimitError,
    LLMTimeoutError,
    PayloadTooLargeError,
)
from reviewbot.services.prompts import build_file_review_messages, build_review_messages
from reviewbot.services.repository_config import (
    RepositoryConfigService,
    filter_diff,
    filter_reviewable_files,
)
from reviewbot.services.response_parser import parse_file_review, parse_review_response
from reviewbot.services.review_formatter import ReviewFormatter, byte_length
from reviewbot.services.review_publisher import ReviewPublisher
from reviewbot.services.review_status import ReviewStatusService
from reviewbot.utils.logging import get_logger, log_phase_transition
from reviewbot.utils.metrics import MetricsCollector, track_api_call

logger = get_logger(__name__)

# Errors that end the per-file loop early. Accumulated file results are kept
# and published as a partial review.
PARTIAL_REVIEW_ERRORS = (LLMRateLimitError, LLMTimeoutError)


class ProcessStatus(str, Enum):
    """Terminal outcome of processing a task."""

    PUBLISHED = "published"
    SKIPPED = "skipped"


class ProcessOutcome(BaseModel):
    """Result of ReviewProcessor.process."""

    status: ProcessStatus
    reason: Optional[str] = None
    review_id: Optional[int] = None


class ReviewProcessor:
    """Generates and publishes a review for one task."""

    def __init__(
        self,
        llm: LLMClient,
        formatter: ReviewFormatter,
        status_service: ReviewStatusService,
        config_service: RepositoryConfigService,
        github_factory: Callable[[int], GitHubClient],
        model: str = "gpt-4o-mini",
        temperature: float = 0.3,
        max_tokens: int = 2000,
        max_diff_bytes: int = 500_000,
        bot_login: Optional[str] = None,
        continuation_delay: float = 1.0,
    ):
        """
        Initialize review processor.

        Args:
            llm: LLM client
            formatter: Review formatter
            status_service: Published review records
            config_service: Repository configuration
            github_factory: Creates a GitHub client for an installation id
            model: Default model when the repository sets none
            temperature: Sampling temperature
            max_tokens: Completion token budget per call
            max_diff_bytes: Diffs above this skip the whole-diff call
            bot_login: Login the bot posts reviews as
            continuation_delay: Seconds between continuation comments
        """
        self.llm = llm
        self.formatter = formatter
        self.status_service = status_service
        self.config_service = config_service
        self.github_factory = github_factory
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.max_diff_bytes = max_diff_bytes
        self.bot_login = bot_login
        self.continuation_delay = continuation_delay

    async def process(self, task: ReviewTask, metrics: Optional[MetricsCollector] = None) -> ProcessOutcome:
        """
        Process a review task end to end.

        Args:
            task: Task from the review queue
            metrics: Collector for this task, if any

        Returns:
            ProcessOutcome (published or skipped with a reason)
        """
        task_logger = logger.with_context(
            repository=task.repository_full_name,
            pr_number=task.pr_number,
            event_id=task.event_id,
        )

        config = await self.config_service.get_config(task.repository_full_name)
        if not config.enabled:
            task_logger.info("Reviews disabled for repository, skipping")
            return ProcessOutcome(status=ProcessStatus.SKIPPED, reason="disabled")

        async with self.github_factory(task.installation_id) as github:
            self._phase(task, "fetch_context", "started")
            pr = await github.get_pull_request(task.repository_full_name, task.pr_number)

            if pr.head_sha != task.head_sha:
                task_logger.info(f"Head moved from {task.head_sha} to {pr.head_sha}, skipping stale task")
                return ProcessOutcome(status=ProcessStatus.SKIPPED, reason="stale")

            if pr.draft and not config.review_drafts:
                task_logger.info("Pull request is a draft, skipping")
                return ProcessOutcome(status=ProcessStatus.SKIPPED, reason="draft")

            if await self.status_service.get_published(task.repository_full_name, task.pr_number, task.head_sha):
                task_logger.info("Revision already reviewed, skipping")
                return ProcessOutcome(status=ProcessStatus.SKIPPED, reason="already_reviewed")
            self._phase(task, "fetch_context", "completed")

            self._phase(task, "generate", "started")
            result, informational = await self.generate(github, task, pr, config, metrics)
            self._phase(task, "generate", "completed")

            self._phase(task, "publish", "started")
            publisher = ReviewPublisher(
                github,
                self.formatter,
                bot_login=self.bot_login,
                continuation_delay=self.continuation_delay,
            )
            outcome = await publisher.publish(
                task.repository_full_name,
                task.pr_number,
                task.head_sha,
                result,
                auto_approve=config.auto_approve,
            )
            self._phase(task, "publish", "completed")

        if metrics:
            metrics.record_published(outcome.inline_comments, len(outcome.continuation_ids))

        await self.status_service.record_published(PublishedReviewRecord(
            repository=task.repository_full_name,
            pr_number=task.pr_number,
            head_sha=task.head_sha,
            review_id=outcome.review_id,
            verdict=result.summary.verdict.value,
            model=result.metadata.model,
            published_at=datetime.now(timezone.utc),
        ))

        if informational:
            return ProcessOutcome(status=ProcessStatus.SKIPPED, reason="no_eligible_files", review_id=outcome.review_id)
        return ProcessOutcome(status=ProcessStatus.PUBLISHED, review_id=outcome.review_id)

    async def generate(
        self,
        github: GitHubClient,
        task: ReviewTask,
        pr: PullRequestInfo,
        config: RepositoryConfig,
        metrics: Optional[MetricsCollector] = None,
    ) -> Tuple[ReviewResult, bool]:
        """
        Generate a review, falling back to per-file review for large diffs.

        Returns:
            The review and whether it is only an informational notice

        Raises:
            LLMError: Whole-diff generation failed for a reason other than size
            GitHubError: Fetching context failed
        """
        start = time.monotonic()
        model = config.model or self.model

        diff = filter_diff(
            await github.get_diff(task.repository_full_name, task.pr_number, task.head_sha),
            config,
        )
        diff_size = byte_length(diff)

        if not diff.strip() or diff_size > self.max_diff_bytes:
            logger.info(
                f"Diff is {diff_size} bytes, reviewing files individually",
                extra={"repository": task.repository_full_name, "pr_number": task.pr_number}
            )
            result, informational = await self._review_chunked(github, task, pr, config, model, metrics)
        else:
            try:
                async with track_api_call(metrics, "llm", logger, endpoint="chat.completions"):
                    response = await self.llm.generate(
                        build_review_messages(pr, diff, config.custom_instructions),
                        temperature=self.temperature,
                        max_tokens=self.max_tokens,
                        model=model,
                    )
            except PayloadTooLargeError:
                logger.info(
                    "Diff too large for the model, reviewing files individually",
                    extra={"repository": task.repository_full_name, "pr_number": task.pr_number}
                )
                result, informational = await self._review_chunked(github, task, pr, config, model, metrics)
            else:
                if metrics:
                    metrics.record_llm_call(response.tokens_used)
                result = parse_review_response(response.content, response.model, response.tokens_used)
                informational = False

        processing_time_ms = int((time.monotonic() - start) * 1000)
        result = result.model_copy(update={
            "metadata": result.metadata.model_copy(update={"processing_time_ms": processing_time_ms})
        })
        return result, informational

    async def _review_chunked(
        self,
        github: GitHubClient,
        task: ReviewTask,
        pr: PullRequestInfo,
        config: RepositoryConfig,
        model: str,
        metrics: Optional[MetricsCollector] = None,
    ) -> Tuple[ReviewResult, bool]:
        files = await github.get_changed_files(task.repository_full_name, task.pr_number)
        eligible = filter_reviewable_files(files, config)

        if not eligible:
            return self._no_eligible_files_result(model, len(files)), True

        to_review = eligible[:config.max_files_per_review]
        over_limit = [
            SkippedFile(path=f.filename, reason=SkipReason.FILE_LIMIT)
            for f in eligible[config.max_files_per_review:]
        ]

        file_reviews, skipped, tokens_used = await self._review_files(pr, to_review, config, model, metrics)
        skipped.extend(over_limit)

        if metrics:
            metrics.record_files(len(file_reviews), len(skipped))

        return self._aggregate(file_reviews, skipped, model, tokens_used), False

    async def _review_files(
        self,
        pr: PullRequestInfo,
        files: List[ChangedFile],
        config: RepositoryConfig,
        model: str,
        metrics: Optional[MetricsCollector] = None,
    ) -> Tuple[List[FileReview], List[SkippedFile], int]:
        """Review files strictly one after another."""
        file_reviews: List[FileReview] = []
        skipped: List[SkippedFile] = []
        tokens_used = 0

        for index, changed_file in enumerate(files):
            try:
                async with track_api_call(metrics, "llm", logger, endpoint="chat.completions"):
                    response = await self.llm.generate(
                        build_file_review_messages(pr, changed_file, config.custom_instructions),
                        temperature=self.temperature,
                        max_tokens=self.max_tokens,
                        model=model,
                    )
            except PARTIAL_REVIEW_ERRORS as e:
                remaining = files[index:]
                logger.warning(
                    f"Stopping per-file review after {len(file_reviews)} files: {e}",
                    extra={"not_reached": len(remaining)}
                )
                if not file_reviews:
                    # Nothing to publish yet; let the queue retry the whole task
                    raise
                skipped.extend(SkippedFile(path=f.filename, reason=SkipReason.NOT_REACHED) for f in remaining)
                break
            except PayloadTooLargeError:
                skipped.append(SkippedFile(path=changed_file.filename, reason=SkipReason.TOO_LARGE))
                continue
            except LLMError as e:
                logger.warning(f"Review of {changed_file.filename} failed: {e}")
                skipped.append(SkippedFile(path=changed_file.filename, reason=SkipReason.FAILED))
                continue

            tokens_used += response.tokens_used
            if metrics:
                metrics.record_llm_call(response.tokens_used)

            try:
                file_reviews.append(parse_file_review(changed_file.filename, response.content))
            except (TypeError, ValueError) as e:
                logger.warning(f"Unusable review reply for {changed_file.filename}: {e}")
                skipped.append(SkippedFile(path=changed_file.filename, reason=SkipReason.FAILED))

        return file_reviews, skipped, tokens_used

    @staticmethod
    def _aggregate(
        file_reviews: List[FileReview],
        skipped: List[SkippedFile],
        model: str,
        tokens_used: int,
    ) -> ReviewResult:
        """Combine per-file results into one review; the most severe file verdict wins."""
        if file_reviews:
            verdict = aggregate_verdicts(r.verdict for r in file_reviews).to_review_verdict()
            confidence = sum(r.confidence for r in file_reviews) / len(file_reviews)
        else:
            verdict = Verdict.COMMENT
            confidence = 0.0

        features = ReviewFeatures(
            chunked=True,
            files_analyzed=len(file_reviews),
            files_skipped=len(skipped),
            critical_count=sum(1 for r in file_reviews if r.verdict is FileVerdict.CRITICAL),
            warning_count=sum(
                1 for r in file_reviews if r.verdict in (FileVerdict.REQUEST_CHANGES, FileVerdict.COMMENT)
            ),
            approved_count=sum(1 for r in file_reviews if r.verdict is FileVerdict.APPROVE),
            skipped_files=skipped,
        )

        feedback = (
            f"This pull request was too large to review in a single pass, "
            f"so its files were reviewed individually ({len(file_reviews)} analyzed, {len(skipped)} skipped)."
        )

        return ReviewResult(
            summary=ReviewSummary(
                verdict=verdict,
                confidence=confidence,
                main_issues=[f"`{r.path}`: {issue}" for r in file_reviews for issue in r.issues],
            ),
            comments=[comment for r in file_reviews for comment in r.comments],
            overall_feedback=feedback,
            metadata=ReviewMetadata(model=model, tokens_used=tokens_used, features=features),
            file_reviews=file_reviews,
        )

    @staticmethod
    def _no_eligible_files_result(model: str, total_files: int) -> ReviewResult:
        return ReviewResult(
            summary=ReviewSummary(verdict=Verdict.COMMENT, confidence=0.0),
            overall_feedback=(
                f"No files were eligible for review. {total_files} changed file(s) were excluded "
                "by path filters or have no textual diff."
            ),
            metadata=ReviewMetadata(model=model, features=ReviewFeatures(chunked=True)),
        )

    @staticmethod
    def _phase(task: ReviewTask, phase: str, status: str) -> None:
        log_phase_transition(
            logger, task.event_id, task.repository_full_name, task.pr_number, phase, status
        )
