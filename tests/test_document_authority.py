"""
Tests for the Document Revision Authority and the in-memory store.

Covers revision bumps per batch, stale-revision acceptance, malformed
batches, structural flagging, server-assigned ids and the shared transport.
"""
from __future__ import annotations

import pytest

from dooly.document.authority import DocumentAuthority
from dooly.document.store import DocumentStore, get_document_store, reset_document_store
from dooly.realtime.clock import ManualClock


@pytest.fixture
def authority(clock: ManualClock) -> DocumentAuthority:
    return DocumentAuthority(DocumentStore(), clock)


# =============================================================================
# Store
# =============================================================================


class TestDocumentStore:
    """Lazy creation and singleton handling."""

    def test_get_or_create_builds_default_song(self) -> None:
        store = DocumentStore()
        doc = store.get_or_create("jam")
        assert doc.revision == 0
        assert doc.active_pattern_id == "p1"
        assert [p.id for p in doc.patterns] == ["p1"]
        assert all(len(row) == doc.total_steps for row in doc.grid)
        assert store.count == 1

    def test_get_does_not_create(self) -> None:
        assert DocumentStore().get("jam") is None

    def test_singleton_reset(self) -> None:
        get_document_store().get_or_create("jam")
        reset_document_store()
        assert get_document_store().count == 0


# =============================================================================
# apply_ops
# =============================================================================


class TestApplyOps:
    """Revision bumps, tolerance and rebroadcast payload."""

    def test_one_bump_per_batch(self, authority: DocumentAuthority) -> None:
        batch = authority.apply_ops("d", 0, [
            {"type": "toggle_step", "lane": 0, "step": 0},
            {"type": "toggle_step", "lane": 1, "step": 1},
            {"type": "set_tempo", "tempo": 100},
        ])
        assert batch is not None
        assert batch.revision == 1
        assert len(batch.operations) == 3
        assert authority.snapshot("d").revision == 1

    def test_revision_strictly_increases(self, authority: DocumentAuthority) -> None:
        revisions = []
        for step in range(5):
            batch = authority.apply_ops("d", None, [{"type": "toggle_step", "lane": 0, "step": step}])
            revisions.append(batch.revision)
        assert revisions == [1, 2, 3, 4, 5]

    def test_stale_revision_accepted(self, authority: DocumentAuthority) -> None:
        authority.apply_ops("d", 0, [{"type": "set_tempo", "tempo": 100}])
        authority.apply_ops("d", 1, [{"type": "set_tempo", "tempo": 110}])
        batch = authority.apply_ops("d", 0, [{"type": "set_tempo", "tempo": 90}])
        assert batch is not None
        assert batch.revision == 3
        assert batch.document.tempo == 90

    def test_empty_batch_is_noop(self, authority: DocumentAuthority) -> None:
        assert authority.apply_ops("d", 0, []) is None
        assert authority.snapshot("d").revision == 0

    def test_fully_malformed_batch_is_noop(self, authority: DocumentAuthority) -> None:
        assert authority.apply_ops("d", 0, [{"type": "nope"}, {"lane": 1}]) is None
        assert authority.snapshot("d").revision == 0

    def test_partially_malformed_batch_applies_valid_ops(self, authority: DocumentAuthority) -> None:
        batch = authority.apply_ops("d", 0, [{"type": "nope"}, {"type": "set_tempo", "tempo": 77}])
        assert batch is not None
        assert [op.type for op in batch.operations] == ["set_tempo"]
        assert batch.document.tempo == 77

    def test_missing_entity_still_bumps(self, authority: DocumentAuthority) -> None:
        batch = authority.apply_ops("d", 0, [{"type": "clip_delete", "id": "ghost"}])
        assert batch is not None
        assert batch.revision == 1

    def test_previous_snapshot_not_mutated(self, authority: DocumentAuthority) -> None:
        before = authority.snapshot("d")
        authority.apply_ops("d", 0, [{"type": "toggle_step", "lane": 0, "step": 0}])
        assert before.grid[0][0] is False
        assert before.revision == 0


class TestStructuralAndIds:
    """Structural flags and server-assigned ids."""

    def test_toggle_is_not_structural(self, authority: DocumentAuthority) -> None:
        batch = authority.apply_ops("d", 0, [{"type": "toggle_step", "lane": 0, "step": 0}])
        assert batch.structural is False

    @pytest.mark.parametrize("op", [
        {"type": "clip_add"},
        {"type": "pattern_select", "id": "p1"},
        {"type": "sfx_delete", "id": "x"},
        {"type": "set_bars", "bars": 2},
    ])
    def test_structural_ops_flagged(self, authority: DocumentAuthority, op: dict) -> None:
        batch = authority.apply_ops("d", 0, [{"type": "set_tempo", "tempo": 100}, op])
        assert batch.structural is True

    def test_add_without_id_gets_server_id(self, authority: DocumentAuthority) -> None:
        batch = authority.apply_ops("d", 0, [{"type": "clip_add", "startStep": 4}])
        op = batch.operations[0]
        assert op.id
        assert [c.id for c in batch.document.clips] == [op.id]
        assert op.to_wire()["id"] == op.id


# =============================================================================
# Transport
# =============================================================================


class TestTransport:
    """set_transport re-anchors the shared transport and bumps the revision."""

    def test_anchor_and_wrap(self, authority: DocumentAuthority, clock: ManualClock) -> None:
        doc = authority.set_transport("d", True, 5.5)
        assert doc.transport.playing is True
        assert doc.transport.base_bar == pytest.approx(1.5)
        assert doc.transport.base_timestamp == clock.now_ms()
        assert doc.revision == 1

    def test_stop(self, authority: DocumentAuthority) -> None:
        authority.set_transport("d", True, 0)
        doc = authority.set_transport("d", False, 2)
        assert doc.transport.playing is False
        assert doc.revision == 2
