"""Read-only view of the playback timeline."""
from __future__ import annotations

from fastapi import APIRouter

from dooly.playback.state import PlaybackSnapshot
from dooly.realtime.hub import get_sync_hub

router = APIRouter()


@router.get("/playback/state", response_model=PlaybackSnapshot, response_model_by_alias=True)
async def playback_state() -> PlaybackSnapshot:
    """Current canonical timeline, the same payload ``playback.state`` carries."""
    return get_sync_hub().playback.snapshot()
