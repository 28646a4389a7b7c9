"""
Pending Edit State Machine.

Explicit state transitions for a single locally-edited field on the client.
Never mutate a pending field's status directly: always go through
assert_transition().

States:
    UNCONFIRMED: Applied locally and sent; authority has not echoed it yet
    CONFIRMED  : Authority state now holds the locally desired value
    ABANDONED  : TTL elapsed without confirmation; authority value accepted

Invariants:
    1. While UNCONFIRMED, the local value wins over any authoritative value.
    2. A newer local edit of the same field restarts the TTL (stays UNCONFIRMED).
    3. Terminal states (CONFIRMED/ABANDONED) are final; the entry is dropped.
"""

from __future__ import annotations

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class PendingStatus(str, Enum):
    """Lifecycle states of one pending field."""

    UNCONFIRMED = "unconfirmed"
    CONFIRMED = "confirmed"
    ABANDONED = "abandoned"


# Terminal states: no further transitions allowed.
TERMINAL_STATES: frozenset[PendingStatus] = frozenset({
    PendingStatus.CONFIRMED,
    PendingStatus.ABANDONED,
})

# Allowed transitions: from_state -> set of valid to_states.
_TRANSITIONS: dict[PendingStatus, frozenset[PendingStatus]] = {
    PendingStatus.UNCONFIRMED: frozenset({
        PendingStatus.UNCONFIRMED,
        PendingStatus.CONFIRMED,
        PendingStatus.ABANDONED,
    }),
    PendingStatus.CONFIRMED: frozenset(),
    PendingStatus.ABANDONED: frozenset(),
}


class InvalidTransitionError(Exception):
    """Raised when a state transition violates the state machine."""

    def __init__(self, from_state: PendingStatus, to_state: PendingStatus):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid transition: {from_state.value} → {to_state.value}"
        )


def assert_transition(
    from_state: PendingStatus,
    to_state: PendingStatus,
) -> None:
    """
    Validate that a state transition is allowed.

    Raises InvalidTransitionError if the transition violates the state machine.
    """
    allowed = _TRANSITIONS.get(from_state, frozenset())
    if to_state not in allowed:
        raise InvalidTransitionError(from_state, to_state)


def is_terminal(status: PendingStatus) -> bool:
    """Check if a status is terminal (no further transitions)."""
    return status in TERMINAL_STATES
