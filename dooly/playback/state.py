"""Playlist state owned by the playback timeline authority."""
from __future__ import annotations

from dataclasses import dataclass, field

from dooly.models.base import CamelModel


@dataclass
class PlaylistState:
    """
    Canonical playlist.

    Invariants:
        - ``order`` holds unique refs.
        - ``base_index`` is a valid index whenever ``order`` is non-empty.
        - ``paused_at`` is set exactly when ``paused`` is true.
    """

    order: list[str]
    base_timestamp: int
    base_index: int = 0
    playback_rate: float = 1.0
    paused: bool = False
    paused_at: int | None = None
    duration_cache: dict[str, float] = field(default_factory=dict)
    pending_queue: list[str] = field(default_factory=list)

    @property
    def current_ref(self) -> str | None:
        if not self.order:
            return None
        return self.order[self.base_index]

    def elapsed_ms(self, now_ms: int) -> float:
        """Media milliseconds played since ``base_timestamp``; frozen while paused."""
        reference = self.paused_at if self.paused and self.paused_at is not None else now_ms
        return max(0, reference - self.base_timestamp) * self.playback_rate


class PlaybackSnapshot(CamelModel):
    """What followers need to replay the timeline; the ``playback.state`` payload."""

    ref: str | None = None
    base_index: int = 0
    base_timestamp: int = 0
    playback_rate: float = 1.0
    is_playing: bool = False
    paused_at: int | None = None
    queue_length: int = 0
