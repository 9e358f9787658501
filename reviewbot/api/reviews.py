"""
Review status REST API endpoints.
"""

from fastapi import APIRouter, Depends, HTTPException, Request

from redis.exceptions import RedisError

from reviewbot.models.status import ReviewStatus
from reviewbot.services.redis_client import RedisConnectionError
from reviewbot.services.review_status import ReviewStatusService

router = APIRouter(prefix="/reviews", tags=["reviews"])


def get_status_service(request: Request) -> ReviewStatusService:
    """Review status service built at application startup."""
    return request.app.state.status_service


@router.get("/{owner}/{repo}/{pr_number}/status", response_model=ReviewStatus)
async def get_review_status(
    owner: str,
    repo: str,
    pr_number: int,
    status_service: ReviewStatusService = Depends(get_status_service),
) -> ReviewStatus:
    """
    Get the review status of a pull request.

    Raises:
        HTTPException: 404 if no review has been requested recently, 503 if Redis is down
    """
    try:
        status = await status_service.get_status(f"{owner}/{repo}", pr_number)
    except (RedisError, RedisConnectionError):
        raise HTTPException(status_code=503, detail="Review status store unavailable")

    if status is None:
        raise HTTPException(status_code=404, detail="No review status found")
    return status
