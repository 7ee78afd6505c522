"""Health check endpoint."""

import datetime as dt
from typing import Any

from fastapi import APIRouter

from commerce_api import __version__

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    summary="Health check",
    description="Liveness probe. Does not touch DynamoDB or the payment provider.",
)
async def health() -> dict[str, Any]:
    return {
        "status": "healthy",
        "version": __version__,
        "timestamp": dt.datetime.now(dt.UTC).isoformat(),
    }
