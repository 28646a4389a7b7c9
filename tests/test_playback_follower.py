"""
Tests for the PlaybackFollower client library.

A FakePlayer records every command so the tests can assert how the
follower drives a player: item switches, drift seeks, pause/rate matching,
the stall watchdog and the periodic state request.
"""
from __future__ import annotations

import asyncio

import pytest

from dooly.playback.follower import (
    PlaybackFollower,
    ended_frame,
    report_duration_frame,
    request_state_frame,
)
from dooly.playback.state import PlaybackSnapshot
from dooly.realtime.clock import ManualClock

A = "aaaaaaaaaaa"
B = "bbbbbbbbbbb"


class FakePlayer:
    """In-memory player whose position advances only when told to."""

    def __init__(self) -> None:
        self.ref: str | None = None
        self.position = 0.0
        self.playing = False
        self.paused = False
        self.playback_rate = 1.0
        self.calls: list[tuple] = []

    def current_ref(self) -> str | None:
        return self.ref

    def position_seconds(self) -> float:
        return self.position

    def is_playing(self) -> bool:
        return self.playing

    def is_paused(self) -> bool:
        return self.paused

    def rate(self) -> float:
        return self.playback_rate

    def load(self, ref: str, position_seconds: float) -> None:
        self.calls.append(("load", ref, position_seconds))
        self.ref = ref
        self.position = position_seconds

    def seek(self, position_seconds: float) -> None:
        self.calls.append(("seek", position_seconds))
        self.position = position_seconds

    def set_paused(self, paused: bool) -> None:
        self.calls.append(("set_paused", paused))
        self.paused = paused

    def set_rate(self, rate: float) -> None:
        self.calls.append(("set_rate", rate))
        self.playback_rate = rate


@pytest.fixture
def player() -> FakePlayer:
    return FakePlayer()


@pytest.fixture
def requests() -> list[int]:
    return []


@pytest.fixture
def follower(player: FakePlayer, clock: ManualClock, requests: list[int]) -> PlaybackFollower:
    return PlaybackFollower(
        player,
        clock,
        lambda: requests.append(clock.now_ms()),
        cadence_seconds=0.25,
        drift_threshold_ms=150,
        state_request_interval_seconds=15,
        stall_timeout_seconds=5,
    )


def _state(clock: ManualClock, ref: str = A, offset_ms: int = 0, **overrides: object) -> PlaybackSnapshot:
    fields = {
        "ref": ref,
        "base_timestamp": clock.now_ms() - offset_ms,
        "is_playing": True,
    }
    fields.update(overrides)
    return PlaybackSnapshot(**fields)


# =============================================================================
# Corrections
# =============================================================================


class TestCorrections:
    """Item switching and drift handling."""

    def test_no_state_no_action(self, follower: PlaybackFollower, player: FakePlayer) -> None:
        assert follower.correct() is None
        assert player.calls == []

    def test_loads_canonical_item_at_position(
        self, follower: PlaybackFollower, player: FakePlayer, clock: ManualClock
    ) -> None:
        assert follower.on_snapshot(_state(clock, offset_ms=12_500)) == "load"
        assert player.calls[0] == ("load", A, pytest.approx(12.5))
        assert player.paused is False

    def test_accepts_wire_payload(
        self, follower: PlaybackFollower, player: FakePlayer, clock: ManualClock
    ) -> None:
        wire = _state(clock, ref=B).to_wire()
        assert follower.on_snapshot(wire) == "load"
        assert player.ref == B

    def test_small_drift_tolerated(
        self, follower: PlaybackFollower, player: FakePlayer, clock: ManualClock
    ) -> None:
        follower.on_snapshot(_state(clock))
        clock.advance(1_000)
        player.position = 1.1
        assert follower.correct() is None

    def test_large_drift_seeks(
        self, follower: PlaybackFollower, player: FakePlayer, clock: ManualClock
    ) -> None:
        follower.on_snapshot(_state(clock))
        clock.advance(1_000)
        player.position = 0.5
        assert follower.correct() == "seek"
        assert player.position == pytest.approx(1.0)

    def test_matches_pause_and_rate(
        self, follower: PlaybackFollower, player: FakePlayer, clock: ManualClock
    ) -> None:
        follower.on_snapshot(_state(clock))
        follower.on_snapshot(
            _state(clock, is_playing=False, paused_at=clock.now_ms(), playback_rate=1.5)
        )
        assert player.paused is True
        assert player.playback_rate == 1.5

    def test_paused_position_frozen(self, follower: PlaybackFollower, clock: ManualClock) -> None:
        follower.on_snapshot(
            _state(clock, offset_ms=4_000, is_playing=False, paused_at=clock.now_ms())
        )
        clock.advance(10_000)
        assert follower.canonical_position_seconds() == pytest.approx(4.0)

    def test_rate_scales_position(self, follower: PlaybackFollower, clock: ManualClock) -> None:
        follower.on_snapshot(_state(clock, offset_ms=2_000, playback_rate=2.0))
        assert follower.canonical_position_seconds() == pytest.approx(4.0)


# =============================================================================
# Watchdogs
# =============================================================================


class TestWatchdogs:
    """Stall detection and periodic state requests."""

    def test_stall_requests_state(
        self, follower: PlaybackFollower, player: FakePlayer, clock: ManualClock, requests: list[int]
    ) -> None:
        follower.on_snapshot(_state(clock))
        clock.advance(4_999)
        assert follower.check_stall() is False
        clock.advance(1)
        assert follower.check_stall() is True
        assert requests == [clock.now_ms()]

    def test_playing_player_clears_stall(
        self, follower: PlaybackFollower, player: FakePlayer, clock: ManualClock, requests: list[int]
    ) -> None:
        follower.on_snapshot(_state(clock))
        player.playing = True
        clock.advance(10_000)
        assert follower.check_stall() is False
        assert requests == []

    def test_periodic_request(
        self, follower: PlaybackFollower, clock: ManualClock, requests: list[int]
    ) -> None:
        assert follower.maybe_request_state() is True
        clock.advance(14_999)
        assert follower.maybe_request_state() is False
        clock.advance(1)
        assert follower.maybe_request_state() is True
        assert len(requests) == 2

    async def test_run_survives_step_errors(
        self, follower: PlaybackFollower, player: FakePlayer, clock: ManualClock, caplog: pytest.LogCaptureFixture
    ) -> None:
        def broken_position() -> float:
            raise RuntimeError("player gone")

        follower.on_snapshot(_state(clock))
        player.position_seconds = broken_position  # type: ignore[method-assign]
        follower.cadence_seconds = 0
        task = asyncio.create_task(follower.run())
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert "Playback follower step failed" in caplog.text


# =============================================================================
# Frames
# =============================================================================


class TestReportFrames:
    """Outbound helper frames."""

    def test_frames(self) -> None:
        assert request_state_frame() == {"channel": "playback.requestState", "payload": {}}
        assert report_duration_frame(A, 212.5)["payload"] == {"ref": A, "seconds": 212.5}
        assert ended_frame(A) == {"channel": "playback.ended", "payload": {"ref": A}}
