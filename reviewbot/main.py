"""
FastAPI application entry point.
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from reviewbot import __version__
from reviewbot.config import settings
from reviewbot.middleware.logging import RequestLoggingMiddleware
from reviewbot.api import webhooks, reviews
from reviewbot.services.deduplicator import Deduplicator
from reviewbot.services.rate_limiter import RateLimiter
from reviewbot.services.redis_client import RedisClient, RedisConnectionError, get_redis_client
from reviewbot.services.review_queue import ReviewQueue
from reviewbot.services.review_status import ReviewStatusService
from reviewbot.services.signature import SignatureValidator
from reviewbot.services.webhook_gateway import WebhookGateway
from reviewbot.utils.logging import setup_logging, get_logger

# Configure structured logging
setup_logging(settings.log_level.upper())

logger = get_logger(__name__)

# Create FastAPI application
app = FastAPI(
    title="PR Review Bot",
    description="Automated LLM code review for GitHub pull requests",
    version=__version__
)

# Add request logging middleware
app.add_middleware(RequestLoggingMiddleware)


def configure_app(application: FastAPI, redis_client: RedisClient) -> None:
    """
    Build the ingestion services on top of a Redis client and attach them to the app.

    Args:
        application: FastAPI application
        redis_client: Initialized Redis client
    """
    queue = ReviewQueue(
        redis_client,
        max_retries=settings.queue_max_retries,
        retry_base_delay=settings.queue_retry_base_delay,
        retry_max_delay=settings.queue_retry_max_delay,
    )
    status_service = ReviewStatusService(redis_client)

    application.state.redis = redis_client
    application.state.queue = queue
    application.state.status_service = status_service
    application.state.gateway = WebhookGateway(
        validator=SignatureValidator(settings.webhook_secret),
        deduplicator=Deduplicator(redis_client, ttl_seconds=settings.dedup_ttl_seconds),
        rate_limiter=RateLimiter(
            redis_client,
            limit=settings.rate_limit_per_window,
            window_ms=settings.rate_limit_window_ms,
        ),
        queue=queue,
        status_service=status_service,
    )


@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint reporting Redis connectivity and queue depth."""
    redis_client = getattr(request.app.state, "redis", None)
    queue = getattr(request.app.state, "queue", None)

    try:
        if redis_client is None or queue is None:
            raise RedisConnectionError("Redis client not configured")
        await redis_client.ping()
        queue_stats = await queue.stats()
    except (RedisError, RedisConnectionError) as e:
        logger.warning(f"Health check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "version": __version__, "redis": "unavailable"},
        )

    return {"status": "healthy", "version": __version__, "redis": "ok", "queue": queue_stats}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "PR Review Bot API",
        "version": __version__,
        "docs": "/docs",
        "webhook": "/webhooks/github",
    }


# Include API routers
app.include_router(webhooks.router)
app.include_router(reviews.router)


@app.on_event("startup")
async def startup_event():
    """Initialize services on application startup."""
    logger.info("Starting PR Review Bot API")

    redis_client = get_redis_client()
    try:
        await redis_client.initialize()
        logger.info("Redis client initialized")
    except RedisConnectionError as e:
        # Stay up so /health can report the outage
        logger.error(f"Redis unavailable at startup: {e}")

    configure_app(app, redis_client)


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup services on application shutdown."""
    logger.info("Shutting down PR Review Bot API")

    redis_client = getattr(app.state, "redis", None)
    if redis_client:
        await redis_client.close()
        logger.info("Redis client closed")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
