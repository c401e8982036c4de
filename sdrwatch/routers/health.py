"""Health check endpoint."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from sdrwatch.dependencies import AppSettings, Coordinator

router = APIRouter(tags=["system"])
logger = logging.getLogger("sdrwatch.health")


@router.get("/health")
async def health_check(coordinator: Coordinator, settings: AppSettings) -> dict:
    """Liveness check. Returns 200 if the API process is up.

    Also reports how many partitions currently hold data.
    """
    partitions = coordinator.store.partitions()
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "live_fetch": settings.live_fetch_enabled,
        "partitions": len(partitions),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
