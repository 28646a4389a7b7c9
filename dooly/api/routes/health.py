"""Health check endpoints."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from dooly.config import settings
from dooly.realtime.hub import get_sync_hub

router = APIRouter()


@router.get("/health")
async def health_check() -> dict[str, str]:
    """Basic health check."""
    return {
        "status": "ok",
        "service": settings.app_name,
        "version": settings.app_version,
    }


@router.get("/health/full")
async def full_health_check() -> dict[str, Any]:
    """
    Full health check including realtime state.

    Reports:
    - Connected sync clients
    - Song documents held in memory
    - Whether a playlist has been established
    """
    hub = get_sync_hub()
    return {
        "status": "ok",
        "service": settings.app_name,
        "version": settings.app_version,
        "connections": hub.broadcaster.connection_count,
        "documents": hub.documents.store.count,
        "playlistEstablished": hub.playback.state is not None,
    }
