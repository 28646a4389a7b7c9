"""
Clock reference.

All timestamps on the wire are Unix epoch milliseconds in the server's
timebase.  The server reads ``SystemClock``; clients read an ``OffsetClock``
that estimates the server's timebase from round-trip samples (the same
scheme the ``timesync`` browser client uses against ``POST /timesync``).

Tests inject ``ManualClock`` so no behaviour depends on real time.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


class Clock(Protocol):
    """Anything that can report the current time in epoch milliseconds."""

    def now_ms(self) -> int: ...


class SystemClock:
    """Wall clock of this process."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)


class ManualClock:
    """Deterministic clock for tests; time only moves when told to."""

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self._now = start_ms

    def now_ms(self) -> int:
        return self._now

    def advance(self, ms: int) -> int:
        self._now += ms
        return self._now

    def set(self, ms: int) -> None:
        self._now = ms


@dataclass(frozen=True)
class ClockSample:
    """One request/response exchange with the clock reference service."""

    offset_ms: float
    round_trip_ms: float


class OffsetClock:
    """
    NTP-style estimate of the server clock.

    Each sample is ``(sent, server_time, received)`` in local/server/local
    milliseconds.  The server time is assumed to have been read at the
    midpoint of the round trip.  Among the most recent ``window`` samples the
    one with the smallest round trip wins, since queueing delay only ever
    inflates the error.
    """

    def __init__(self, local: Clock | None = None, window: int = 8) -> None:
        self._local: Clock = local or SystemClock()
        self._samples: deque[ClockSample] = deque(maxlen=window)

    def add_sample(self, sent_ms: int, server_ms: int, received_ms: int) -> ClockSample | None:
        """Record a sample. Returns ``None`` for samples with a negative round trip."""
        round_trip = received_ms - sent_ms
        if round_trip < 0:
            logger.debug(f"Ignoring clock sample with negative round trip ({round_trip} ms)")
            return None
        sample = ClockSample(
            offset_ms=server_ms - (sent_ms + received_ms) / 2,
            round_trip_ms=round_trip,
        )
        self._samples.append(sample)
        return sample

    @property
    def offset_ms(self) -> float:
        """Best current estimate of ``server - local``; 0 before any sample."""
        if not self._samples:
            return 0.0
        best = min(self._samples, key=lambda s: s.round_trip_ms)
        return best.offset_ms

    @property
    def synced(self) -> bool:
        return bool(self._samples)

    def now_ms(self) -> int:
        return int(round(self._local.now_ms() + self.offset_ms))


def server_elapsed_seconds(
    clock: Clock, base_timestamp_ms: int | None, at_ms: int | None = None
) -> float:
    """Seconds elapsed from ``base_timestamp_ms`` to ``at_ms``; never negative.

    ``at_ms`` defaults to ``clock.now_ms()``.  A missing base timestamp means
    "no timeline yet" and reads as 0.
    """
    if not base_timestamp_ms:
        return 0.0
    reference = clock.now_ms() if at_ms is None else at_ms
    return max(0, reference - base_timestamp_ms) / 1000
