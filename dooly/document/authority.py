"""
Document Revision Authority.

The only code path that changes a canonical song document.

Contract:
    apply_ops(document_id, client_revision, operations) -> AppliedBatch | None

    - A stale ``client_revision`` is never a reason to reject.  The batch is
      clamped against the *current* document and the result is rebroadcast
      to everyone (including the stale sender), so replicas converge by
      repeated deterministic clamping rather than causal ordering.
    - Concurrent edits to the same field resolve last-applied-wins.
    - Malformed operations are dropped individually.  A batch with no
      well-formed operation is a no-op: no revision bump, no broadcast.
    - Every accepted batch bumps the revision by exactly one.
    - Batches containing a structural operation are flagged so the caller
      also broadcasts a full snapshot.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from dooly.document.operations import apply_operations, assign_missing_ids
from dooly.document.store import DocumentStore
from dooly.models.operations import Operation, is_structural, parse_operations
from dooly.models.song import SongDocument, Transport
from dooly.realtime.clock import Clock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppliedBatch:
    """Outcome of an accepted ``apply_ops`` call."""

    document: SongDocument
    operations: list[Operation]
    structural: bool

    @property
    def revision(self) -> int:
        return self.document.revision

    @property
    def document_id(self) -> str:
        return self.document.id


class DocumentAuthority:
    """Owns revisions and mutation of every song document in a ``DocumentStore``."""

    def __init__(self, store: DocumentStore, clock: Clock) -> None:
        self._store = store
        self._clock = clock

    @property
    def store(self) -> DocumentStore:
        return self._store

    def snapshot(self, document_id: str) -> SongDocument:
        """Current canonical document; creates the default song on first reference."""
        return self._store.get_or_create(document_id)

    def apply_ops(
        self,
        document_id: str,
        client_revision: int | None,
        raw_operations: Iterable[object],
    ) -> AppliedBatch | None:
        """Validate, clamp and apply a batch. Returns ``None`` when nothing was accepted."""
        operations = assign_missing_ids(parse_operations(raw_operations))
        if not operations:
            logger.debug(f"Empty or malformed batch for '{document_id}', ignoring")
            return None

        current = self._store.get_or_create(document_id)
        if client_revision is not None and client_revision != current.revision:
            logger.debug(
                f"Accepting batch for '{document_id}' from revision {client_revision} "
                f"(current {current.revision})"
            )

        updated = apply_operations(current, operations)
        updated.revision = current.revision + 1
        self._store.replace(updated)

        structural = any(is_structural(op) for op in operations)
        logger.debug(
            f"Applied {len(operations)} op(s) to '{document_id}' "
            f"→ rev {updated.revision}{' (structural)' if structural else ''}"
        )
        return AppliedBatch(document=updated, operations=operations, structural=structural)

    def set_transport(
        self,
        document_id: str,
        playing: bool,
        position_bars: float,
    ) -> SongDocument:
        """Re-anchor the shared transport at ``position_bars`` as of now."""
        current = self._store.get_or_create(document_id)
        updated = current.model_copy(deep=True)
        updated.transport = Transport(
            playing=playing,
            base_bar=position_bars % updated.bars,
            base_timestamp=self._clock.now_ms(),
        )
        updated.revision = current.revision + 1
        self._store.replace(updated)
        logger.debug(
            f"Transport for '{document_id}': playing={playing} "
            f"bar={updated.transport.base_bar:.2f} → rev {updated.revision}"
        )
        return updated
