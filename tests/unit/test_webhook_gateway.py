"""
Unit tests for webhook ingestion.
"""

import json
from unittest.mock import AsyncMock

import pytest

from reviewbot.models.api_response import GatewayStatus
from reviewbot.models.status import ReviewState
from reviewbot.services.deduplicator import Deduplicator
from reviewbot.services.rate_limiter import RateLimiter
from reviewbot.services.redis_client import RedisClient, RedisConnectionError
from reviewbot.services.review_queue import ReviewQueue
from reviewbot.services.review_status import ReviewStatusService
from reviewbot.services.signature import SignatureValidator, compute_signature
from reviewbot.services.webhook_gateway import EnqueueError, WebhookGateway


SECRET = "gateway_secret"


def pr_payload(action: str = "opened", draft: bool = False, **overrides) -> dict:
    payload = {
        "action": action,
        "number": 42,
        "pull_request": {"number": 42, "draft": draft, "head": {"sha": "abc123"}},
        "repository": {"full_name": "octo/widgets"},
        "installation": {"id": 7},
    }
    payload.update(overrides)
    return payload


def signed(payload) -> tuple[bytes, str]:
    body = json.dumps(payload).encode()
    return body, compute_signature(body, SECRET)


@pytest.fixture
def queue(redis_client: RedisClient) -> ReviewQueue:
    return ReviewQueue(redis_client)


@pytest.fixture
def gateway(redis_client: RedisClient, queue: ReviewQueue) -> WebhookGateway:
    return WebhookGateway(
        validator=SignatureValidator(SECRET),
        deduplicator=Deduplicator(redis_client),
        rate_limiter=RateLimiter(redis_client, limit=2, clock=lambda: 0),
        queue=queue,
        status_service=ReviewStatusService(redis_client),
    )


@pytest.mark.asyncio
async def test_valid_event_is_queued(gateway, queue, redis_client):
    body, signature = signed(pr_payload())

    result = await gateway.handle(body, "pull_request", "d-1", signature)

    assert result.status is GatewayStatus.ACCEPTED
    assert result.message == "Review queued"
    message = await queue.receive(timeout=0)
    assert message.task.repository_full_name == "octo/widgets"
    assert message.task.pr_number == 42
    assert message.task.installation_id == 7
    assert message.task.head_sha == "abc123"
    assert message.task.event_id == "d-1"
    assert await Deduplicator(redis_client).is_duplicate("octo/widgets", 42, "d-1") is True
    status = await ReviewStatusService(redis_client).get_status("octo/widgets", 42)
    assert status.status is ReviewState.PENDING


@pytest.mark.asyncio
async def test_bad_signature_has_no_side_effects(gateway, queue, redis_client):
    body, _ = signed(pr_payload())

    result = await gateway.handle(body, "pull_request", "d-1", "sha256=" + "0" * 64)

    assert result.status is GatewayStatus.UNAUTHORIZED
    assert await queue.stats() == {"pending": 0, "delayed": 0, "dead_letter": 0}
    assert await redis_client.list_keys("dedup:") == []
    assert await redis_client.list_keys("rate:") == []


@pytest.mark.asyncio
async def test_missing_delivery_id_is_generated(gateway):
    body, signature = signed(pr_payload())

    result = await gateway.handle(body, "pull_request", None, signature)

    assert result.status is GatewayStatus.ACCEPTED
    assert result.delivery_id
    assert result.task.event_id == result.delivery_id


@pytest.mark.asyncio
@pytest.mark.parametrize("event_type, action", [
    ("push", "opened"),
    ("pull_request", "closed"),
    ("pull_request", "labeled"),
    ("issues", "opened"),
])
async def test_non_reviewable_events_are_ignored(gateway, queue, event_type, action):
    body, signature = signed(pr_payload(action=action))

    result = await gateway.handle(body, event_type, "d-1", signature)

    assert result.status is GatewayStatus.IGNORED
    assert await queue.stats() == {"pending": 0, "delayed": 0, "dead_letter": 0}


@pytest.mark.asyncio
@pytest.mark.parametrize("action", ["opened", "synchronize", "edited", "ready_for_review"])
async def test_reviewable_actions(gateway, action):
    body, signature = signed(pr_payload(action=action))

    result = await gateway.handle(body, "pull_request", f"d-{action}", signature)

    assert result.status is GatewayStatus.ACCEPTED
    assert result.task.action == action


@pytest.mark.asyncio
async def test_draft_is_ignored(gateway, queue):
    body, signature = signed(pr_payload(draft=True))

    result = await gateway.handle(body, "pull_request", "d-1", signature)

    assert result.status is GatewayStatus.IGNORED
    assert await queue.receive(timeout=0) is None


@pytest.mark.asyncio
async def test_malformed_json_is_invalid(gateway):
    body = b"{not json"

    result = await gateway.handle(body, "pull_request", "d-1", compute_signature(body, SECRET))

    assert result.status is GatewayStatus.INVALID


@pytest.mark.asyncio
async def test_incomplete_payload_is_invalid(gateway):
    payload = pr_payload()
    del payload["pull_request"]["head"]
    body, signature = signed(payload)

    result = await gateway.handle(body, "pull_request", "d-1", signature)

    assert result.status is GatewayStatus.INVALID


@pytest.mark.asyncio
async def test_duplicate_delivery(gateway, queue):
    body, signature = signed(pr_payload())

    first = await gateway.handle(body, "pull_request", "d-1", signature)
    second = await gateway.handle(body, "pull_request", "d-1", signature)

    assert first.status is GatewayStatus.ACCEPTED
    assert second.status is GatewayStatus.DUPLICATE
    assert (await queue.stats())["pending"] == 1


@pytest.mark.asyncio
async def test_rate_limit_per_installation(gateway, queue):
    body, signature = signed(pr_payload())

    results = [await gateway.handle(body, "pull_request", f"d-{i}", signature) for i in range(3)]

    assert [r.status for r in results] == [
        GatewayStatus.ACCEPTED, GatewayStatus.ACCEPTED, GatewayStatus.RATE_LIMITED
    ]
    assert (await queue.stats())["pending"] == 2


@pytest.mark.asyncio
async def test_missing_installation_defaults_to_zero(gateway):
    payload = pr_payload()
    del payload["installation"]
    body, signature = signed(payload)

    result = await gateway.handle(body, "pull_request", "d-1", signature)

    assert result.task.installation_id == 0


@pytest.mark.asyncio
async def test_enqueue_failure_does_not_mark_processed(redis_client):
    queue = AsyncMock()
    queue.send.side_effect = RedisConnectionError("down")
    deduplicator = Deduplicator(redis_client)
    gateway = WebhookGateway(
        validator=SignatureValidator(SECRET),
        deduplicator=deduplicator,
        rate_limiter=RateLimiter(redis_client),
        queue=queue,
    )
    body, signature = signed(pr_payload())

    with pytest.raises(EnqueueError):
        await gateway.handle(body, "pull_request", "d-1", signature)

    assert await deduplicator.is_duplicate("octo/widgets", 42, "d-1") is False


@pytest.mark.asyncio
async def test_worker_status_is_not_overwritten_by_pending(redis_client):
    status_service = ReviewStatusService(redis_client)
    queue = AsyncMock()

    async def fast_worker(task):
        await status_service.set_status(task, ReviewState.PROCESSING)

    queue.send.side_effect = fast_worker
    gateway = WebhookGateway(
        validator=SignatureValidator(SECRET),
        deduplicator=Deduplicator(redis_client),
        rate_limiter=RateLimiter(redis_client),
        queue=queue,
        status_service=status_service,
    )
    body, signature = signed(pr_payload())

    result = await gateway.handle(body, "pull_request", "d-1", signature)

    assert result.status is GatewayStatus.ACCEPTED
    status = await status_service.get_status("octo/widgets", 42)
    assert status.status is ReviewState.PROCESSING


@pytest.mark.asyncio
async def test_enqueue_failure_records_failed_status(redis_client):
    status_service = ReviewStatusService(redis_client)
    queue = AsyncMock()
    queue.send.side_effect = RedisConnectionError("down")
    gateway = WebhookGateway(
        validator=SignatureValidator(SECRET),
        deduplicator=Deduplicator(redis_client),
        rate_limiter=RateLimiter(redis_client),
        queue=queue,
        status_service=status_service,
    )
    body, signature = signed(pr_payload())

    with pytest.raises(EnqueueError):
        await gateway.handle(body, "pull_request", "d-1", signature)

    status = await status_service.get_status("octo/widgets", 42)
    assert status.status is ReviewState.FAILED
    assert status.error == "Failed to enqueue review task"
