"""API route modules."""
from __future__ import annotations

from dooly.api.routes import documents, health, playback, sync, timesync

__all__ = ["documents", "health", "playback", "sync", "timesync"]
