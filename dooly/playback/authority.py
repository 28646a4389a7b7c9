"""
Playback Timeline Authority.

Single source of truth for the shared video timeline.  Followers never
decide anything: they report what they observe (order, durations, end of
item) and replay whatever ``snapshot()`` says.

Key design:
    - First-writer-wins bootstrap: the first reported order becomes canonical,
      later reports are ignored.
    - The authority advances on its own 1 Hz ``tick()`` once the cached
      duration of the current item has elapsed, and on ``request_advance()``
      when a viewer reports the item ended.
    - The forced-play queue preempts natural rotation.
    - Every externally supplied ref is validated; bad input is dropped.

Mutating methods return ``True`` when canonical state changed so the caller
knows to broadcast.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable

from dooly.config import PLAYBACK_RATE_MAX, PLAYBACK_RATE_MIN
from dooly.playback.state import PlaybackSnapshot, PlaylistState
from dooly.playback.video_ref import filter_refs, is_valid_ref
from dooly.realtime.clock import Clock

logger = logging.getLogger(__name__)


class PlaybackAuthority:
    """Owns the canonical ``PlaylistState`` (created lazily)."""

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._state: PlaylistState | None = None

    @property
    def state(self) -> PlaylistState | None:
        return self._state

    # ── Viewer reports ───────────────────────────────────────────────────

    def report_order(self, order: Iterable[object]) -> bool:
        """Bootstrap the playlist from the first viewer that reports one."""
        if self._state is not None and self._state.order:
            logger.debug("Ignoring reported order: playlist already established")
            return False
        refs = filter_refs(order)
        if not refs:
            logger.debug("Ignoring reported order: no valid refs")
            return False
        state = self._ensure_state()
        state.order = refs
        state.base_index = 0
        state.base_timestamp = self._clock.now_ms()
        state.playback_rate = 1.0
        state.paused = False
        state.paused_at = None
        logger.info(f"Playlist established with {len(refs)} item(s), starting at {refs[0]}")
        return True

    def report_duration(self, ref: object, seconds: object) -> bool:
        """Cache a duration learned by a viewer's player. Never broadcasts."""
        if self._state is None or not is_valid_ref(ref):
            return False
        if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
            return False
        if not math.isfinite(seconds) or seconds <= 0:
            return False
        self._state.duration_cache[ref] = float(seconds)
        return False

    def request_advance(self, ref: str | None = None) -> bool:
        """
        Advance because a viewer saw the current item end.

        When ``ref`` is given it must be the current canonical ref; reports for
        anything else are stale duplicates and are dropped.
        """
        state = self._state
        if state is None:
            return False
        if ref is not None and ref != state.current_ref:
            logger.debug(f"Ignoring ended report for {ref!r} (current {state.current_ref!r})")
            return False
        return self._advance()

    # ── Privileged controls ──────────────────────────────────────────────

    def set_video(self, ref: object) -> bool:
        """Play ``ref`` now, moving it to the front of the order."""
        if not is_valid_ref(ref):
            return False
        state = self._ensure_state()
        self._play_at_front(state, ref)
        logger.info(f"Video set to {ref}")
        return True

    def skip(self) -> bool:
        return self._advance()

    def enqueue(self, refs: Iterable[object]) -> bool:
        """Append refs to the forced-play queue; starts playback if nothing is playing."""
        queued = self._state.pending_queue if self._state is not None else []
        valid = [r for r in filter_refs(refs) if r not in queued]
        if not valid:
            return False
        state = self._ensure_state()
        state.pending_queue.extend(valid)
        logger.info(f"Enqueued {len(valid)} item(s), queue length {len(state.pending_queue)}")
        if not state.order:
            self._advance()
        return True

    def clear_queue(self) -> bool:
        if self._state is None or not self._state.pending_queue:
            return False
        self._state.pending_queue.clear()
        return True

    def set_paused(self, paused: bool) -> bool:
        """Pause/resume. Resuming shifts ``base_timestamp`` by the paused span."""
        state = self._state
        if state is None or not state.order or paused == state.paused:
            return False
        now = self._clock.now_ms()
        if paused:
            state.paused = True
            state.paused_at = now
        else:
            paused_at = state.paused_at if state.paused_at is not None else now
            state.base_timestamp += now - paused_at
            state.paused = False
            state.paused_at = None
        return True

    def set_rate(self, rate: object) -> bool:
        """Change the playback rate, rebasing so the position is continuous."""
        state = self._state
        if state is None or isinstance(rate, bool) or not isinstance(rate, (int, float)):
            return False
        if not math.isfinite(rate):
            return False
        new_rate = max(PLAYBACK_RATE_MIN, min(PLAYBACK_RATE_MAX, float(rate)))
        if new_rate == state.playback_rate:
            return False
        now = self._clock.now_ms()
        reference = state.paused_at if state.paused and state.paused_at is not None else now
        elapsed = state.elapsed_ms(now)
        state.base_timestamp = int(round(reference - elapsed / new_rate))
        state.playback_rate = new_rate
        return True

    # ── Schedule ─────────────────────────────────────────────────────────

    def tick(self, now_ms: int | None = None) -> bool:
        """Advance if the current item's cached duration has fully elapsed."""
        state = self._state
        if state is None or not state.order or state.paused:
            return False
        duration = state.duration_cache.get(state.current_ref)
        if duration is None:
            return False
        now = self._clock.now_ms() if now_ms is None else now_ms
        if state.elapsed_ms(now) >= duration * 1000:
            return self._advance(now)
        return False

    def snapshot(self) -> PlaybackSnapshot:
        state = self._state
        if state is None:
            return PlaybackSnapshot()
        return PlaybackSnapshot(
            ref=state.current_ref,
            base_index=state.base_index,
            base_timestamp=state.base_timestamp,
            playback_rate=state.playback_rate,
            is_playing=bool(state.order) and not state.paused,
            paused_at=state.paused_at,
            queue_length=len(state.pending_queue),
        )

    # ── Internals ────────────────────────────────────────────────────────

    def _ensure_state(self) -> PlaylistState:
        if self._state is None:
            self._state = PlaylistState(order=[], base_timestamp=self._clock.now_ms())
        return self._state

    def _play_at_front(self, state: PlaylistState, ref: str, now_ms: int | None = None) -> None:
        state.order = [ref] + [r for r in state.order if r != ref]
        state.base_index = 0
        state.base_timestamp = self._clock.now_ms() if now_ms is None else now_ms
        state.paused = False
        state.paused_at = None

    def _advance(self, now_ms: int | None = None) -> bool:
        state = self._state
        if state is None:
            return False
        now = self._clock.now_ms() if now_ms is None else now_ms
        if state.pending_queue:
            ref = state.pending_queue.pop(0)
            self._play_at_front(state, ref, now)
            logger.info(f"Advanced to queued item {ref}")
            return True
        if not state.order:
            return False
        state.base_index = (state.base_index + 1) % len(state.order)
        state.base_timestamp = now
        if state.paused:
            state.paused_at = now
        logger.info(f"Advanced to index {state.base_index} ({state.current_ref})")
        return True
