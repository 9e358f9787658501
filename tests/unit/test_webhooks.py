"""
Unit tests for webhook and review status endpoints.
"""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

# Skip tests if fastapi is not installed
pytest.importorskip("fastapi")

from fastapi.testclient import TestClient

from reviewbot.main import app
from reviewbot.models.api_response import GatewayResult, GatewayStatus
from reviewbot.models.status import ReviewState, ReviewStatus
from reviewbot.services.redis_client import RedisConnectionError
from reviewbot.services.webhook_gateway import EnqueueError


@pytest.fixture
def gateway():
    """Mock webhook gateway attached to the app."""
    mock = AsyncMock()
    app.state.gateway = mock
    yield mock
    del app.state.gateway


@pytest.fixture
def status_service():
    """Mock review status service attached to the app."""
    mock = AsyncMock()
    app.state.status_service = mock
    yield mock
    del app.state.status_service


@pytest.fixture
def client():
    """Create test client."""
    return TestClient(app)


def post_webhook(client, payload=None, headers=None):
    default_headers = {
        "X-GitHub-Event": "pull_request",
        "X-GitHub-Delivery": "d-1",
        "X-Hub-Signature-256": "sha256=abc",
        "Content-Type": "application/json",
    }
    default_headers.update(headers or {})
    return client.post(
        "/webhooks/github",
        content=json.dumps(payload or {"action": "opened"}),
        headers=default_headers,
    )


def result(status: GatewayStatus, message: str = "ok") -> GatewayResult:
    return GatewayResult(status=status, delivery_id="d-1", message=message)


class TestWebhookEndpoint:

    def test_accepted(self, client, gateway):
        gateway.handle.return_value = result(GatewayStatus.ACCEPTED, "Review queued")

        response = post_webhook(client)

        assert response.status_code == 200
        assert response.json() == {"message": "Review queued", "deliveryId": "d-1"}
        body, event_type, delivery_id, signature = gateway.handle.await_args.args
        assert json.loads(body) == {"action": "opened"}
        assert event_type == "pull_request"
        assert delivery_id == "d-1"
        assert signature == "sha256=abc"

    @pytest.mark.parametrize("status", [GatewayStatus.IGNORED, GatewayStatus.DUPLICATE])
    def test_ignored_and_duplicate_return_200(self, client, gateway, status):
        gateway.handle.return_value = result(status, "skipped")

        response = post_webhook(client)

        assert response.status_code == 200
        assert response.json()["message"] == "skipped"

    def test_invalid_signature(self, client, gateway):
        gateway.handle.return_value = result(GatewayStatus.UNAUTHORIZED)

        response = post_webhook(client)

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid signature"}

    def test_rate_limited(self, client, gateway):
        gateway.handle.return_value = result(GatewayStatus.RATE_LIMITED)

        response = post_webhook(client)

        assert response.status_code == 429
        assert response.json() == {"error": "Rate limit exceeded", "deliveryId": "d-1"}

    def test_invalid_payload(self, client, gateway):
        gateway.handle.return_value = result(GatewayStatus.INVALID, "Malformed JSON payload")

        response = post_webhook(client)

        assert response.status_code == 400
        assert response.json()["error"] == "Malformed JSON payload"

    def test_enqueue_failure(self, client, gateway):
        gateway.handle.side_effect = EnqueueError("down")

        response = post_webhook(client)

        assert response.status_code == 503
        assert response.json() == {"error": "Failed to enqueue review", "deliveryId": "d-1"}

    def test_missing_delivery_header_gets_generated_id(self, client, gateway):
        gateway.handle.return_value = result(GatewayStatus.IGNORED)

        response = post_webhook(client, headers={"X-GitHub-Delivery": ""})

        delivery_id = gateway.handle.await_args.args[2]
        assert delivery_id
        assert response.json()["deliveryId"] == delivery_id

    def test_request_id_header(self, client, gateway):
        gateway.handle.return_value = result(GatewayStatus.ACCEPTED)

        response = post_webhook(client, headers={"X-Request-ID": "req-1"})

        assert response.headers["X-Request-ID"] == "req-1"


class TestReviewStatusEndpoint:

    def test_status_found(self, client, status_service):
        status_service.get_status.return_value = ReviewStatus(
            repository="octo/widgets",
            pr_number=42,
            head_sha="abc123",
            status=ReviewState.COMPLETED,
            completed_at=datetime.now(timezone.utc),
        )

        response = client.get("/reviews/octo/widgets/42/status")

        assert response.status_code == 200
        assert response.json()["status"] == "completed"
        status_service.get_status.assert_awaited_once_with("octo/widgets", 42)

    def test_status_not_found(self, client, status_service):
        status_service.get_status.return_value = None

        response = client.get("/reviews/octo/widgets/42/status")

        assert response.status_code == 404

    def test_status_store_unavailable(self, client, status_service):
        status_service.get_status.side_effect = RedisConnectionError("down")

        response = client.get("/reviews/octo/widgets/42/status")

        assert response.status_code == 503
