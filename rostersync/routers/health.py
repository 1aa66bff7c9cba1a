"""Health check endpoint."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from rostersync.config import get_settings
from rostersync.dependencies import RecordStore

router = APIRouter(tags=["system"])
logger = logging.getLogger("rostersync.health")


@router.get("/health")
async def health_check(store: RecordStore) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Also reports whether the record store answers a status query.
    """
    settings = get_settings()
    store_status = await store.status()
    if not store_status.reachable:
        logger.warning("Health check: record store unreachable")

    return {
        "status": "healthy" if store_status.reachable else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "store": type(store).__name__,
        "database": "connected" if store_status.reachable else "unreachable",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
