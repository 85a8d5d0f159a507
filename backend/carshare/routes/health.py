"""
Health check endpoint for load balancer probes.
"""

from datetime import datetime, timezone
import logging

from fastapi import APIRouter
from pydantic import BaseModel

from ..core.config import settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

SERVICE_NAME = "carshare-api"


class HealthResponse(BaseModel):
    status: str
    service: str
    environment: str
    timestamp: str


@router.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(
        status="healthy",
        service=SERVICE_NAME,
        environment=settings.environment,
        timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    )
