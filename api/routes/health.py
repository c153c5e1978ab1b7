"""
api/routes/health.py -- Liveness endpoint.

Not part of the auth contract and never authenticated, so load balancers and
monitors can always reach it.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter

from api.models import HealthResponse, iso_timestamp
from core.config import get_settings

router = APIRouter()


@router.get("/", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Return service liveness, name and current server time."""
    return HealthResponse(
        service=get_settings().service_name,
        timestamp=iso_timestamp(datetime.now(timezone.utc)),
    )
