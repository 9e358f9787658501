"""
Utility modules for the PR review bot.
"""

from reviewbot.utils.logging import (
    get_logger,
    setup_logging,
    log_webhook_event,
    log_phase_transition,
    log_api_call,
    log_error_with_context,
)
from reviewbot.utils.metrics import (
    MetricsCollector,
    track_api_call,
    emit_metric,
)
from reviewbot.utils.resilience import (
    TransientError,
    PermanentError,
    backoff_delay,
    retry_with_backoff,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "log_webhook_event",
    "log_phase_transition",
    "log_api_call",
    "log_error_with_context",
    "MetricsCollector",
    "track_api_call",
    "emit_metric",
    "TransientError",
    "PermanentError",
    "backoff_delay",
    "retry_with_backoff",
]
