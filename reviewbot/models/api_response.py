"""API response data models."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel

from .review_task import ReviewTask


class GatewayStatus(str, Enum):
    """Outcome of webhook ingestion."""

    ACCEPTED = "accepted"
    IGNORED = "ignored"
    DUPLICATE = "duplicate"
    RATE_LIMITED = "rate_limited"
    UNAUTHORIZED = "unauthorized"
    INVALID = "invalid"


class GatewayResult(BaseModel):
    """Result of handling one inbound webhook."""

    status: GatewayStatus
    delivery_id: str
    message: str
    task: Optional[ReviewTask] = None


class WebhookResponse(BaseModel):
    """Response body for accepted, ignored and duplicate webhooks."""

    message: str
    deliveryId: str


class ErrorResponse(BaseModel):
    """Response body for rejected webhooks."""

    error: str
    deliveryId: Optional[str] = None
