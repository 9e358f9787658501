"""Business logic services package."""

from reviewbot.services.redis_client import (
    RedisClient,
    RedisConnectionError,
    get_redis_client
)
from reviewbot.services.signature import SignatureValidator
from reviewbot.services.deduplicator import Deduplicator
from reviewbot.services.rate_limiter import RateLimiter
from reviewbot.services.review_queue import QueueMessage, ReviewQueue
from reviewbot.services.github_client import (
    GitHubClient,
    GitHubError,
    GitHubPermanentError,
    GitHubTransientError,
    create_github_client
)
from reviewbot.services.llm_client import (
    LLMClient,
    LLMError,
    LLMRateLimitError,
    LLMResponse,
    LLMTimeoutError,
    PayloadTooLargeError
)
from reviewbot.services.repository_config import (
    RepositoryConfigService,
    RepositoryValidationError
)
from reviewbot.services.review_status import ReviewStatusService
from reviewbot.services.review_formatter import ReviewFormatter
from reviewbot.services.review_publisher import PublishError, ReviewPublisher
from reviewbot.services.review_processor import ReviewProcessor
from reviewbot.services.webhook_gateway import EnqueueError, WebhookGateway

__all__ = [
    'RedisClient',
    'RedisConnectionError',
    'get_redis_client',
    'SignatureValidator',
    'Deduplicator',
    'RateLimiter',
    'QueueMessage',
    'ReviewQueue',
    'GitHubClient',
    'GitHubError',
    'GitHubPermanentError',
    'GitHubTransientError',
    'create_github_client',
    'LLMClient',
    'LLMError',
    'LLMRateLimitError',
    'LLMResponse',
    'LLMTimeoutError',
    'PayloadTooLargeError',
    'RepositoryConfigService',
    'RepositoryValidationError',
    'ReviewStatusService',
    'ReviewFormatter',
    'PublishError',
    'ReviewPublisher',
    'ReviewProcessor',
    'EnqueueError',
    'WebhookGateway',
]
