"""
Metrics collection and emission for observability.

This module provides metrics tracking for:
- Review task execution time
- LLM calls and token usage
- Files analyzed / skipped by the chunked fallback
- API call latency

Metrics are emitted as structured log records; there is no external sink.
"""

import time
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from contextlib import asynccontextmanager

from reviewbot.utils.logging import get_logger, log_api_call

logger = get_logger(__name__)


class MetricsCollector:
    """
    Collects metrics during the processing of one review task.

    Tracks:
    - Execution start/end time
    - LLM calls and tokens used
    - Files analyzed and skipped
    - Inline and continuation comments published
    - API call counts and latency
    """

    def __init__(self, event_id: str, repository: str, pr_number: int):
        """
        Initialize metrics collector.

        Args:
            event_id: Delivery id the task was created from
            repository: Repository full name
            pr_number: Pull request number
        """
        self.event_id = event_id
        self.repository = repository
        self.pr_number = pr_number

        # Timing metrics
        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None
        self.duration_ms: Optional[int] = None

        # Generation metrics
        self.llm_calls: int = 0
        self.tokens_used: int = 0
        self.files_analyzed: int = 0
        self.files_skipped: int = 0
        self.chunked: bool = False

        # Publishing metrics
        self.inline_comments_count: int = 0
        self.continuation_comments_count: int = 0

        # API metrics
        self.api_calls: Dict[str, int] = {}
        self.api_latencies: Dict[str, list[float]] = {}

        # Status
        self.status: str = "running"
        self.error_message: Optional[str] = None

    def start(self) -> None:
        """Mark task processing start."""
        self.start_time = datetime.now(timezone.utc)
        self.status = "running"
        logger.info(
            f"Metrics collection started for task {self.event_id}",
            extra={
                "event_id": self.event_id,
                "repository": self.repository,
                "pr_number": self.pr_number,
            }
        )

    def complete(self, status: str = "completed", error_message: Optional[str] = None) -> None:
        """
        Mark task processing completion.

        Args:
            status: Final status ('completed', 'skipped', 'failed')
            error_message: Error message if failed
        """
        self.end_time = datetime.now(timezone.utc)
        self.status = status
        self.error_message = error_message

        if self.start_time:
            duration = (self.end_time - self.start_time).total_seconds()
            self.duration_ms = int(duration * 1000)

        logger.info(
            f"Metrics collection completed for task {self.event_id}",
            extra={
                "event_id": self.event_id,
                "repository": self.repository,
                "pr_number": self.pr_number,
                "status": self.status,
                "duration_ms": self.duration_ms,
                "llm_calls": self.llm_calls,
                "tokens_used": self.tokens_used,
                "files_analyzed": self.files_analyzed,
                "files_skipped": self.files_skipped,
            }
        )

    def record_llm_call(self, tokens_used: int) -> None:
        """Record one LLM call and the tokens it consumed."""
        self.llm_calls += 1
        self.tokens_used += tokens_used

    def record_files(self, analyzed: int, skipped: int, chunked: bool = True) -> None:
        """
        Record chunked fallback file counts.

        Args:
            analyzed: Number of files reviewed individually
            skipped: Number of files skipped
            chunked: Whether the chunked fallback was used
        """
        self.files_analyzed = analyzed
        self.files_skipped = skipped
        self.chunked = chunked

    def record_published(self, inline_comments: int, continuation_comments: int) -> None:
        """Record what was published to the pull request."""
        self.inline_comments_count = inline_comments
        self.continuation_comments_count = continuation_comments

    def record_api_call(self, service: str, duration_ms: float) -> None:
        """
        Record API call and latency.

        Args:
            service: Service name (e.g., 'github', 'llm')
            duration_ms: Call duration in milliseconds
        """
        self.api_calls[service] = self.api_calls.get(service, 0) + 1
        self.api_latencies.setdefault(service, []).append(duration_ms)

    def get_metrics_summary(self) -> Dict[str, Any]:
        """
        Get summary of collected metrics.

        Returns:
            Dictionary of metrics
        """
        summary = {
            "event_id": self.event_id,
            "repository": self.repository,
            "pr_number": self.pr_number,
            "status": self.status,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_ms": self.duration_ms,
            "llm_calls": self.llm_calls,
            "tokens_used": self.tokens_used,
            "chunked": self.chunked,
            "files_analyzed": self.files_analyzed,
            "files_skipped": self.files_skipped,
            "inline_comments_count": self.inline_comments_count,
            "continuation_comments_count": self.continuation_comments_count,
            "api_calls": self.api_calls,
        }

        if self.api_latencies:
            latency_stats = {}
            for service, latencies in self.api_latencies.items():
                if latencies:
                    latency_stats[service] = {
                        "count": len(latencies),
                        "min_ms": round(min(latencies), 2),
                        "max_ms": round(max(latencies), 2),
                        "avg_ms": round(sum(latencies) / len(latencies), 2),
                    }
            summary["api_latencies"] = latency_stats

        if self.error_message:
            summary["error_message"] = self.error_message

        return summary


@asynccontextmanager
async def track_api_call(
    metrics_collector: Optional[MetricsCollector],
    service: str,
    logger_adapter,
    endpoint: str = "",
    method: str = ""
):
    """
    Context manager to track API call timing.

    Usage:
        async with track_api_call(metrics, "llm", logger, endpoint="chat.completions"):
            response = await llm.generate(messages)

    Args:
        metrics_collector: Metrics collector (optional)
        service: Service name
        logger_adapter: Logger for logging API calls
        endpoint: Endpoint or operation name
        method: HTTP method, when meaningful

    Yields:
        None
    """
    start_time = time.monotonic()
    error = None

    try:
        yield
    except Exception as e:
        error = e
        raise
    finally:
        duration_ms = (time.monotonic() - start_time) * 1000

        if metrics_collector:
            metrics_collector.record_api_call(service, duration_ms)

        log_api_call(
            logger_adapter,
            service=service,
            endpoint=endpoint,
            method=method,
            duration_ms=duration_ms,
            error=str(error) if error else None
        )


def emit_metric(metric_name: str, value: float, **tags: Any) -> None:
    """
    Emit a metric as a structured log record.

    Args:
        metric_name: Metric name
        value: Metric value
        **tags: Metric tags/labels
    """
    logger.info(
        f"Metric: {metric_name}",
        extra={
            "metric_name": metric_name,
            "metric_value": value,
            "metric_tags": tags,
        }
    )
