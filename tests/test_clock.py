"""Tests for the clock reference helpers."""
from __future__ import annotations

import pytest

from dooly.realtime.clock import ManualClock, OffsetClock, SystemClock, server_elapsed_seconds


class TestManualClock:

    def test_advance_and_set(self) -> None:
        clock = ManualClock(start_ms=1_000)
        assert clock.advance(250) == 1_250
        clock.set(5)
        assert clock.now_ms() == 5


class TestSystemClock:

    def test_epoch_milliseconds(self) -> None:
        assert SystemClock().now_ms() > 1_600_000_000_000


class TestOffsetClock:
    """NTP-style offset estimation."""

    def test_unsynced_reads_local(self) -> None:
        local = ManualClock(start_ms=10_000)
        clock = OffsetClock(local)
        assert clock.synced is False
        assert clock.now_ms() == 10_000

    def test_midpoint_offset(self) -> None:
        local = ManualClock(start_ms=10_000)
        clock = OffsetClock(local)
        sample = clock.add_sample(sent_ms=9_900, server_ms=20_000, received_ms=10_000)
        assert sample is not None
        assert sample.offset_ms == pytest.approx(10_050)
        assert clock.now_ms() == 20_050

    def test_lowest_round_trip_wins(self) -> None:
        clock = OffsetClock(ManualClock(start_ms=0))
        clock.add_sample(0, 1_000, 400)
        clock.add_sample(1_000, 1_510, 1_020)
        assert clock.offset_ms == pytest.approx(500)

    def test_negative_round_trip_ignored(self) -> None:
        clock = OffsetClock(ManualClock(start_ms=0))
        assert clock.add_sample(100, 500, 50) is None
        assert clock.synced is False

    def test_window_drops_old_samples(self) -> None:
        clock = OffsetClock(ManualClock(start_ms=0), window=2)
        clock.add_sample(0, 100, 0)
        clock.add_sample(0, 200, 10)
        clock.add_sample(0, 300, 4)
        assert clock.offset_ms == pytest.approx(298)


class TestServerElapsed:

    def test_elapsed(self) -> None:
        clock = ManualClock(start_ms=5_000)
        assert server_elapsed_seconds(clock, 3_500) == pytest.approx(1.5)

    @pytest.mark.parametrize("base", [None, 0])
    def test_no_base(self, base: int | None) -> None:
        assert server_elapsed_seconds(ManualClock(), base) == 0.0

    def test_explicit_reference(self) -> None:
        clock = ManualClock(start_ms=9_000)
        assert server_elapsed_seconds(clock, 3_500, at_ms=5_000) == pytest.approx(1.5)

    def test_future_base_clamped(self) -> None:
        clock = ManualClock(start_ms=1_000)
        assert server_elapsed_seconds(clock, 2_000) == 0.0
