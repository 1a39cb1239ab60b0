"""Health check endpoint."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from shipdesk.api.deps import get_rate_limiter
from shipdesk.services.ratelimit import TokenBucketLimiter

router = APIRouter()


class HealthResponse(BaseModel):
    """Service health response."""

    status: str
    rate_limiter: str


@router.get("", response_model=HealthResponse)
async def health(
    limiter: TokenBucketLimiter = Depends(get_rate_limiter),
) -> HealthResponse:
    """Liveness plus which rate-limit store is active."""
    return HealthResponse(status="ok", rate_limiter=limiter.store.name)
