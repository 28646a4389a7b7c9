"""
Tests for the pending edit state machine and tracker.

Covers valid and invalid transitions, terminal states, TTL restart on a
newer local edit, and tracker resolution against authoritative values.
"""
from __future__ import annotations

import pytest

from dooly.document.pending import PendingEditTracker
from dooly.document.pending_state import (
    TERMINAL_STATES,
    InvalidTransitionError,
    PendingStatus,
    assert_transition,
    is_terminal,
)


# =============================================================================
# Transitions
# =============================================================================


class TestTransitions:
    """Allowed and forbidden transitions."""

    @pytest.mark.parametrize("target", list(PendingStatus))
    def test_unconfirmed_can_go_anywhere(self, target: PendingStatus) -> None:
        assert_transition(PendingStatus.UNCONFIRMED, target)

    @pytest.mark.parametrize("source", sorted(TERMINAL_STATES, key=lambda s: s.value))
    @pytest.mark.parametrize("target", list(PendingStatus))
    def test_terminal_states_are_final(self, source: PendingStatus, target: PendingStatus) -> None:
        with pytest.raises(InvalidTransitionError) as exc_info:
            assert_transition(source, target)
        assert exc_info.value.from_state == source
        assert exc_info.value.to_state == target

    def test_error_message_names_both_states(self) -> None:
        with pytest.raises(InvalidTransitionError, match="confirmed → unconfirmed"):
            assert_transition(PendingStatus.CONFIRMED, PendingStatus.UNCONFIRMED)

    def test_is_terminal(self) -> None:
        assert not is_terminal(PendingStatus.UNCONFIRMED)
        assert is_terminal(PendingStatus.CONFIRMED)
        assert is_terminal(PendingStatus.ABANDONED)


# =============================================================================
# Tracker
# =============================================================================


class TestTracker:
    """Per-field records resolved against authoritative state."""

    def test_confirm_drops_field(self) -> None:
        tracker = PendingEditTracker(ttl_ms=5000)
        pending = tracker.record("clip:c1", "start_step", 10, now_ms=0)
        assert tracker.resolve(pending, 10, now_ms=100) == PendingStatus.CONFIRMED
        assert len(tracker) == 0
        assert tracker.get("clip:c1") is None

    def test_young_mismatch_kept(self) -> None:
        tracker = PendingEditTracker(ttl_ms=5000)
        pending = tracker.record("clip:c1", "start_step", 10, now_ms=0)
        assert tracker.resolve(pending, 5, now_ms=4999) == PendingStatus.UNCONFIRMED
        assert tracker.is_pending("clip:c1", "start_step")

    def test_old_mismatch_abandoned(self) -> None:
        tracker = PendingEditTracker(ttl_ms=5000)
        pending = tracker.record("clip:c1", "start_step", 10, now_ms=0)
        assert tracker.resolve(pending, 5, now_ms=5000) == PendingStatus.ABANDONED
        assert len(tracker) == 0

    def test_newer_edit_restarts_ttl(self) -> None:
        tracker = PendingEditTracker(ttl_ms=5000)
        tracker.record("clip:c1", "start_step", 10, now_ms=0)
        pending = tracker.record("clip:c1", "start_step", 12, now_ms=4000)
        assert pending.desired == 12
        assert tracker.resolve(pending, 5, now_ms=8000) == PendingStatus.UNCONFIRMED

    def test_terminal_field_cannot_be_resolved_again(self) -> None:
        tracker = PendingEditTracker(ttl_ms=5000)
        pending = tracker.record("song", "tempo", 100, now_ms=0)
        tracker.resolve(pending, 100, now_ms=1)
        with pytest.raises(InvalidTransitionError):
            pending.transition_to(PendingStatus.ABANDONED)

    def test_entity_keeps_other_fields(self) -> None:
        tracker = PendingEditTracker(ttl_ms=5000)
        start = tracker.record("clip:c1", "start_step", 10, now_ms=0)
        tracker.record("clip:c1", "track", 2, now_ms=50)
        tracker.resolve(start, 10, now_ms=100)
        edit = tracker.get("clip:c1")
        assert edit is not None
        assert list(edit.fields) == ["track"]
        assert edit.timestamp == 50
