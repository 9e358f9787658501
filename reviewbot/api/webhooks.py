"""
Webhook endpoints for GitHub App deliveries.
"""

import uuid

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from reviewbot.models.api_response import ErrorResponse, GatewayStatus, WebhookResponse
from reviewbot.services.webhook_gateway import EnqueueError, WebhookGateway
from reviewbot.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def get_gateway(request: Request) -> WebhookGateway:
    """Webhook gateway built at application startup."""
    return request.app.state.gateway


@router.post(
    "/github",
    response_model=WebhookResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse},
               429: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def handle_github_webhook(
    request: Request,
    gateway: WebhookGateway = Depends(get_gateway),
    x_github_event: str = Header(None, alias="X-GitHub-Event"),
    x_github_delivery: str = Header(None, alias="X-GitHub-Delivery"),
    x_hub_signature_256: str = Header(None, alias="X-Hub-Signature-256"),
):
    """
    Receive a GitHub webhook delivery.

    This endpoint:
    1. Verifies the HMAC-SHA256 signature over the raw body
    2. Filters to reviewable pull request events
    3. Drops duplicate and rate-limited deliveries
    4. Enqueues a review task and returns immediately

    Returns:
        200 for accepted, ignored and duplicate deliveries; 401 for a bad
        signature; 400 for an invalid payload; 429 when rate limited; 503
        when the task could not be enqueued
    """
    delivery_id = x_github_delivery or str(uuid.uuid4())
    body = await request.body()

    try:
        result = await gateway.handle(body, x_github_event, delivery_id, x_hub_signature_256)
    except EnqueueError:
        return JSONResponse(
            status_code=503,
            content=ErrorResponse(error="Failed to enqueue review", deliveryId=delivery_id).model_dump(),
        )

    if result.status is GatewayStatus.UNAUTHORIZED:
        return JSONResponse(status_code=401, content={"error": "Invalid signature"})

    if result.status is GatewayStatus.RATE_LIMITED:
        return JSONResponse(
            status_code=429,
            content=ErrorResponse(error="Rate limit exceeded", deliveryId=delivery_id).model_dump(),
        )

    if result.status is GatewayStatus.INVALID:
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(error=result.message, deliveryId=delivery_id).model_dump(),
        )

    return WebhookResponse(message=result.message, deliveryId=delivery_id)
