"""
Pending edit tracking for the client reconciler.

A ``PendingEdit`` groups the unconfirmed fields of one entity (a note, a
clip, a grid cell, the song header...).  Each field moves through the
``pending_state`` machine independently; the entity entry disappears once
every field reached a terminal state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from dooly.document.pending_state import PendingStatus, assert_transition

logger = logging.getLogger(__name__)


@dataclass
class PendingField:
    """One locally desired value waiting for the authority to agree."""

    entity_key: str
    name: str
    desired: object
    since_ms: int
    status: PendingStatus = PendingStatus.UNCONFIRMED

    def transition_to(self, new_status: PendingStatus) -> None:
        """
        Transition to a new status with state machine validation.

        Raises InvalidTransitionError if the transition is not allowed.
        """
        assert_transition(self.status, new_status)
        self.status = new_status

    def age_ms(self, now_ms: int) -> int:
        return now_ms - self.since_ms


@dataclass
class PendingEdit:
    """Unconfirmed fields of a single entity.

    ``template`` holds the full wire form of an optimistically added entity
    so it can be re-inserted into authoritative state that has not caught
    up with the add yet.
    """

    entity_key: str
    fields: dict[str, PendingField] = field(default_factory=dict)
    template: dict[str, object] | None = None

    @property
    def timestamp(self) -> int:
        """Most recent local edit time across the entity's fields."""
        return max((f.since_ms for f in self.fields.values()), default=0)


class PendingEditTracker:
    """entity key → PendingEdit, with TTL-based resolution."""

    def __init__(self, ttl_ms: int) -> None:
        self.ttl_ms = ttl_ms
        self._edits: dict[str, PendingEdit] = {}

    def record(
        self,
        entity_key: str,
        name: str,
        desired: object,
        now_ms: int,
        template: dict[str, object] | None = None,
    ) -> PendingField:
        """Record (or refresh) a locally desired value; restarts the field's TTL."""
        edit = self._edits.setdefault(entity_key, PendingEdit(entity_key=entity_key))
        if template is not None:
            edit.template = template
        existing = edit.fields.get(name)
        if existing is not None:
            existing.transition_to(PendingStatus.UNCONFIRMED)
            existing.desired = desired
            existing.since_ms = now_ms
            return existing
        pending = PendingField(entity_key=entity_key, name=name, desired=desired, since_ms=now_ms)
        edit.fields[name] = pending
        return pending

    def resolve(self, pending: PendingField, authoritative: object, now_ms: int) -> PendingStatus:
        """
        Compare a pending field against authoritative state.

        CONFIRMED when the authority holds the desired value, ABANDONED when
        the TTL elapsed first, otherwise stays UNCONFIRMED.  Terminal fields
        are removed from the tracker.
        """
        if authoritative == pending.desired:
            pending.transition_to(PendingStatus.CONFIRMED)
        elif pending.age_ms(now_ms) >= self.ttl_ms:
            pending.transition_to(PendingStatus.ABANDONED)
            logger.debug(
                f"Abandoned pending {pending.entity_key}.{pending.name} "
                f"after {pending.age_ms(now_ms)} ms"
            )
        else:
            return pending.status
        self._discard(pending)
        return pending.status

    def _discard(self, pending: PendingField) -> None:
        edit = self._edits.get(pending.entity_key)
        if edit is None:
            return
        edit.fields.pop(pending.name, None)
        if not edit.fields:
            del self._edits[pending.entity_key]

    def get(self, entity_key: str) -> PendingEdit | None:
        return self._edits.get(entity_key)

    def is_pending(self, entity_key: str, name: str) -> bool:
        edit = self._edits.get(entity_key)
        return edit is not None and name in edit.fields

    def edits(self) -> list[PendingEdit]:
        return list(self._edits.values())

    def fields(self) -> list[PendingField]:
        return [f for edit in self._edits.values() for f in edit.fields.values()]

    def clear(self) -> None:
        self._edits.clear()

    def __len__(self) -> int:
        return sum(len(edit.fields) for edit in self._edits.values())
