"""
Playback Follower (client library).

Replays the authority's timeline onto a local player.  Never authoritative:
it only reads the server clock estimate and the last ``playback.state``.

Per cadence step (250 ms by default):
    1. Different item than canonical → load it at the canonical position.
    2. Match pause state and rate.
    3. Hard-seek when local position drifts more than the threshold.
    4. Stall watchdog: a freshly loaded item that has not started playing
       within the stall timeout triggers a state request.
    5. Re-request state on a fixed interval regardless.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Protocol

from dooly.config import settings
from dooly.playback.state import PlaybackSnapshot
from dooly.protocol.emitter import build_frame
from dooly.realtime.clock import Clock, server_elapsed_seconds

logger = logging.getLogger(__name__)


class Player(Protocol):
    """The handful of controls the follower drives on a media player."""

    def current_ref(self) -> str | None: ...

    def position_seconds(self) -> float: ...

    def is_playing(self) -> bool: ...

    def is_paused(self) -> bool: ...

    def rate(self) -> float: ...

    def load(self, ref: str, position_seconds: float) -> None: ...

    def seek(self, position_seconds: float) -> None: ...

    def set_paused(self, paused: bool) -> None: ...

    def set_rate(self, rate: float) -> None: ...


class PlaybackFollower:
    """Keeps one local ``Player`` aligned with the canonical timeline."""

    def __init__(
        self,
        player: Player,
        clock: Clock,
        request_state: Callable[[], None],
        *,
        cadence_seconds: float | None = None,
        drift_threshold_ms: float | None = None,
        state_request_interval_seconds: float | None = None,
        stall_timeout_seconds: float | None = None,
    ) -> None:
        self._player = player
        self._clock = clock
        self._request_state = request_state
        self.cadence_seconds = (
            settings.follower_cadence_seconds if cadence_seconds is None else cadence_seconds
        )
        self.drift_threshold_ms = (
            settings.drift_threshold_ms if drift_threshold_ms is None else drift_threshold_ms
        )
        interval = (
            settings.state_request_interval_seconds
            if state_request_interval_seconds is None
            else state_request_interval_seconds
        )
        stall = settings.stall_timeout_seconds if stall_timeout_seconds is None else stall_timeout_seconds
        self._request_interval_ms = int(interval * 1000)
        self._stall_timeout_ms = int(stall * 1000)

        self._snapshot: PlaybackSnapshot | None = None
        self._loaded_at: int | None = None
        self._last_request_at: int | None = None

    @property
    def snapshot(self) -> PlaybackSnapshot | None:
        return self._snapshot

    def on_snapshot(self, snapshot: PlaybackSnapshot | Mapping[str, object]) -> str | None:
        """Adopt a new ``playback.state`` and correct immediately."""
        if not isinstance(snapshot, PlaybackSnapshot):
            snapshot = PlaybackSnapshot.model_validate(snapshot)
        self._snapshot = snapshot
        return self.correct()

    def canonical_position_seconds(self) -> float:
        """Where the canonical timeline is right now, in media seconds."""
        snap = self._snapshot
        if snap is None:
            return 0.0
        elapsed = server_elapsed_seconds(self._clock, snap.base_timestamp, at_ms=snap.paused_at)
        return elapsed * snap.playback_rate

    def correct(self) -> str | None:
        """
        One correction pass.

        Returns ``"load"`` when the item was switched, ``"seek"`` when the
        position was corrected, ``None`` when the player was already aligned.
        """
        snap = self._snapshot
        if snap is None or snap.ref is None:
            return None
        target = self.canonical_position_seconds()
        paused = not snap.is_playing

        if self._player.current_ref() != snap.ref:
            logger.debug(f"Switching item to {snap.ref} at {target:.2f}s")
            self._player.load(snap.ref, target)
            self._player.set_rate(snap.playback_rate)
            self._player.set_paused(paused)
            self._loaded_at = None if paused else self._clock.now_ms()
            return "load"

        if self._player.rate() != snap.playback_rate:
            self._player.set_rate(snap.playback_rate)
        if self._player.is_paused() != paused:
            self._player.set_paused(paused)

        drift_ms = abs(self._player.position_seconds() - target) * 1000
        if drift_ms > self.drift_threshold_ms:
            logger.debug(f"Drift {drift_ms:.0f} ms, seeking to {target:.2f}s")
            self._player.seek(target)
            return "seek"
        return None

    def check_stall(self) -> bool:
        """Request state when a loaded item has not started within the stall timeout."""
        if self._loaded_at is None:
            return False
        if self._player.is_playing():
            self._loaded_at = None
            return False
        now = self._clock.now_ms()
        if now - self._loaded_at < self._stall_timeout_ms:
            return False
        logger.debug("Player stalled, requesting state")
        self._loaded_at = now
        self._request(now)
        return True

    def maybe_request_state(self) -> bool:
        """Periodic re-request so a missed broadcast heals on its own."""
        now = self._clock.now_ms()
        if self._last_request_at is not None and now - self._last_request_at < self._request_interval_ms:
            return False
        self._request(now)
        return True

    def step(self) -> None:
        self.maybe_request_state()
        self.correct()
        self.check_stall()

    async def run(self) -> None:
        """Drive ``step()`` on the local cadence until cancelled."""
        while True:
            try:
                self.step()
            except Exception:
                logger.exception("Playback follower step failed")
            await asyncio.sleep(self.cadence_seconds)

    def _request(self, now: int) -> None:
        self._last_request_at = now
        self._request_state()


# ── Client report helpers ────────────────────────────────────────────────────


def request_state_frame() -> dict[str, object]:
    return build_frame("playback.requestState", {})


def report_duration_frame(ref: str, seconds: float) -> dict[str, object]:
    """Sent once the local player learns the current item's duration."""
    return build_frame("playback.reportDuration", {"ref": ref, "seconds": seconds})


def ended_frame(ref: str) -> dict[str, object]:
    """Sent when the local player reaches the end of ``ref``."""
    return build_frame("playback.ended", {"ref": ref})
