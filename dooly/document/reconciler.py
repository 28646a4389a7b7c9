"""
Client-side Document Reconciler.

Keeps two layers per song document:

    mirror: authority-derived state.  Deltas are replayed onto it with the
             same ``apply_operations()`` the authority uses; snapshots replace
             it wholesale.  Local edits never touch it.
    view  : mirror overlaid with every still-unconfirmed local field, then
             re-clamped.  This is what a UI renders.

Local edits are tracked per field (``PendingEditTracker``).  Whenever the
mirror changes each pending field is compared with it:

    equal to the desired value     → CONFIRMED, dropped
    differs, younger than the TTL  → kept, overrides the mirror in the view
    differs, TTL elapsed           → ABANDONED, the mirror wins

Because the mirror is never touched by local edits, two reconcilers that see
the same ordered deltas hold identical mirrors regardless of what their
users did locally.

The authority bumps the revision by exactly one per delta or transport
frame.  A frame that skips a revision means one was dropped on the way;
the mirror stops accepting frames and asks for a fresh snapshot
(``request_snapshot``) until one arrives.

Fields are addressed as ``(entity_key, field)``:

    ("song", "tempo" | "bars" | "active_pattern_id")
    ("loop", "enabled" | "start_step" | "length_steps")
    ("grid:<lane>:<step>", "on")
    ("pattern:<id>", "exists" | "name" | "bars")
    ("note:<id>", "exists" | "pattern" | <note field>)
    ("clip:<id>", "exists" | <clip field>)
    ("sfx:<id>", "exists" | <sfx field>)
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping

from dooly.config import settings
from dooly.document.operations import (
    apply_operations,
    assign_missing_ids,
    clamp_document,
    find_note,
    resize_document,
)
from dooly.document.pending import PendingEditTracker
from dooly.models.operations import parse_operations
from dooly.models.song import Clip, Note, Pattern, SfxEvent, SongDocument, Transport
from dooly.protocol.emitter import build_frame
from dooly.realtime.clock import Clock

logger = logging.getLogger(__name__)

FieldKey = tuple[str, str]

_MISSING = object()

_SONG_FIELDS = ("tempo", "bars", "active_pattern_id")
_LOOP_FIELDS = ("enabled", "start_step", "length_steps")
_PATTERN_FIELDS = ("name", "bars")
_NOTE_FIELDS = ("start_step", "length_steps", "pitch", "velocity", "synth")
_CLIP_FIELDS = ("track", "start_step", "length_steps", "pattern_id")
_SFX_FIELDS = ("track", "start_step", "length_steps", "source_ref", "gain", "pan", "offset_ms")


def flatten_document(doc: SongDocument) -> dict[FieldKey, object]:
    """Every reconcilable field of ``doc`` keyed by ``(entity_key, field)``."""
    flat: dict[FieldKey, object] = {}
    for name in _SONG_FIELDS:
        flat[("song", name)] = getattr(doc, name)
    for name in _LOOP_FIELDS:
        flat[("loop", name)] = getattr(doc.loop, name)
    for lane, row in enumerate(doc.grid):
        for step, on in enumerate(row):
            flat[(f"grid:{lane}:{step}", "on")] = on

    for pattern in doc.patterns:
        key = f"pattern:{pattern.id}"
        flat[(key, "exists")] = True
        for name in _PATTERN_FIELDS:
            flat[(key, name)] = getattr(pattern, name)
        for note in pattern.notes:
            _flatten_note(flat, note, pattern.id)
    for note in doc.notes:
        _flatten_note(flat, note, None)

    for clip in doc.clips:
        _flatten_entity(flat, f"clip:{clip.id}", clip, _CLIP_FIELDS)
    for sfx in doc.sfx_events:
        _flatten_entity(flat, f"sfx:{sfx.id}", sfx, _SFX_FIELDS)
    return flat


def _flatten_note(flat: dict[FieldKey, object], note: Note, pattern_id: str | None) -> None:
    key = f"note:{note.id}"
    _flatten_entity(flat, key, note, _NOTE_FIELDS)
    flat[(key, "pattern")] = pattern_id


def _flatten_entity(
    flat: dict[FieldKey, object],
    key: str,
    entity: Note | Clip | SfxEvent,
    names: Iterable[str],
) -> None:
    flat[(key, "exists")] = True
    for name in names:
        flat[(key, name)] = getattr(entity, name)


def _authoritative(flat: Mapping[FieldKey, object], key: FieldKey) -> object:
    if key[1] == "exists":
        return flat.get(key, False)
    return flat.get(key, _MISSING)


def _entity_template(doc: SongDocument, entity_key: str) -> dict[str, object] | None:
    """Snapshot of a freshly added entity, used to re-insert it into the view."""
    kind, _, entity_id = entity_key.partition(":")
    if kind == "note":
        found = find_note(doc, entity_id)
        if found is None:
            return None
        note, _, pattern = found
        return {"note": note.model_dump(), "pattern": pattern.id if pattern else None}
    if kind == "pattern":
        pattern = doc.find_pattern(entity_id)
        return pattern.model_dump(exclude={"notes"}) if pattern else None
    if kind == "clip":
        clip = next((c for c in doc.clips if c.id == entity_id), None)
        return clip.model_dump() if clip else None
    if kind == "sfx":
        sfx = next((s for s in doc.sfx_events if s.id == entity_id), None)
        return sfx.model_dump() if sfx else None
    return None


class DocumentReconciler:
    """Mirror + pending edits + merged view for one song document."""

    def __init__(
        self,
        document_id: str,
        clock: Clock,
        ttl_seconds: float | None = None,
        *,
        request_snapshot: Callable[[], None] | None = None,
    ) -> None:
        ttl = settings.pending_edit_ttl_seconds if ttl_seconds is None else ttl_seconds
        self.document_id = document_id
        self._clock = clock
        self._request_snapshot = request_snapshot
        self._mirror: SongDocument | None = None
        self._needs_resync = False
        self._pending = PendingEditTracker(ttl_ms=int(ttl * 1000))

    # ── Accessors ─────────────────────────────────────────────────────────

    @property
    def mirror(self) -> SongDocument | None:
        return self._mirror

    @property
    def revision(self) -> int | None:
        return self._mirror.revision if self._mirror is not None else None

    @property
    def joined(self) -> bool:
        return self._mirror is not None

    @property
    def needs_resync(self) -> bool:
        """``True`` after a revision gap, until the next accepted snapshot."""
        return self._needs_resync

    def join_frame(self) -> dict[str, object]:
        """The ``doc.join`` frame that (re)fetches this document's snapshot."""
        return build_frame("doc.join", {"documentId": self.document_id})

    @property
    def pending(self) -> PendingEditTracker:
        return self._pending

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def view(self) -> SongDocument | None:
        """Mirror overlaid with unconfirmed local fields, re-clamped."""
        if self._mirror is None:
            return None
        self._reconcile()
        return self._overlay(self._mirror)

    # ── Authoritative input ──────────────────────────────────────────────

    def on_snapshot(self, document: SongDocument | Mapping[str, object]) -> bool:
        """Replace the mirror with a full snapshot. Older snapshots are ignored."""
        snapshot = (
            document.model_copy(deep=True)
            if isinstance(document, SongDocument)
            else SongDocument.model_validate(document)
        )
        if snapshot.id != self.document_id:
            logger.debug(f"Ignoring snapshot for '{snapshot.id}' on reconciler '{self.document_id}'")
            return False
        if self._mirror is not None and snapshot.revision < self._mirror.revision:
            logger.debug(
                f"Ignoring stale snapshot rev {snapshot.revision} "
                f"(mirror at {self._mirror.revision})"
            )
            return False
        self._mirror = snapshot
        self._needs_resync = False
        self._reconcile()
        return True

    def on_delta(self, raw_operations: Iterable[object], revision: int) -> bool:
        """
        Replay an authority delta onto the mirror and adopt its revision.

        A delta at or below the mirror's revision is already contained in the
        mirror (it arrived after the snapshot of the same batch) and is
        skipped; replaying it would double-apply toggles.  A delta more than
        one revision ahead is not applied and triggers a resync.
        """
        if self._mirror is None:
            logger.debug(f"Delta rev {revision} before first snapshot of '{self.document_id}'")
            return False
        if revision <= self._mirror.revision:
            logger.debug(f"Skipping delta rev {revision} (mirror at {self._mirror.revision})")
            return False
        if self._gap(revision):
            return False
        updated = apply_operations(self._mirror, parse_operations(raw_operations))
        updated.revision = revision
        self._mirror = updated
        self._reconcile()
        return True

    def on_transport(
        self,
        playing: bool,
        base_bar: float,
        base_timestamp: int,
        revision: int,
        tempo: int | None = None,
    ) -> bool:
        if self._mirror is None or revision < self._mirror.revision:
            return False
        if self._gap(revision):
            return False
        self._mirror.transport = Transport(
            playing=playing, base_bar=base_bar, base_timestamp=base_timestamp
        )
        if tempo is not None:
            self._mirror.tempo = tempo
        self._mirror.revision = revision
        self._reconcile()
        return True

    # ── Local edits ──────────────────────────────────────────────────────

    def apply_local(self, raw_operations: Iterable[object]) -> dict[str, object] | None:
        """
        Apply a local edit optimistically.

        Every field the batch changes in the view is recorded as pending
        *before* the outbound ``doc.applyOps`` payload is returned.  Returns
        ``None`` when the batch is empty/malformed or no snapshot arrived yet.
        """
        if self._mirror is None:
            logger.debug(f"Local edit before joining '{self.document_id}', dropped")
            return None
        operations = assign_missing_ids(parse_operations(raw_operations))
        if not operations:
            return None

        self._reconcile()
        before = self._overlay(self._mirror)
        after = clamp_document(apply_operations(before, operations))
        now = self._clock.now_ms()

        before_flat = flatten_document(before)
        after_flat = flatten_document(after)
        for key, value in after_flat.items():
            if before_flat.get(key, _MISSING) == value:
                continue
            entity_key, name = key
            template = None
            if name == "exists" and value is True:
                template = _entity_template(after, entity_key)
            self._pending.record(entity_key, name, value, now, template=template)
        for key in before_flat.keys() - after_flat.keys():
            entity_key, name = key
            if name == "exists":
                self._pending.record(entity_key, name, False, now)

        return {
            "documentId": self.document_id,
            "clientRevision": self._mirror.revision,
            "operations": [op.to_wire() for op in operations],
        }

    def expire(self) -> int:
        """Resolve pending fields against the mirror now; returns how many remain."""
        self._reconcile()
        return len(self._pending)

    # ── Internals ────────────────────────────────────────────────────────

    def _gap(self, revision: int) -> bool:
        """Flag a resync when ``revision`` skips past the mirror's next one."""
        if self._needs_resync:
            return True
        if revision <= self._mirror.revision + 1:
            return False
        logger.info(
            f"Revision gap on '{self.document_id}': got {revision}, "
            f"mirror at {self._mirror.revision}; requesting snapshot"
        )
        self._needs_resync = True
        if self._request_snapshot is not None:
            self._request_snapshot()
        return True

    def _reconcile(self) -> None:
        if self._mirror is None:
            return
        flat = flatten_document(self._mirror)
        now = self._clock.now_ms()
        for pending in self._pending.fields():
            key = (pending.entity_key, pending.name)
            self._pending.resolve(pending, _authoritative(flat, key), now)

    def _desired(self, entity_key: str, name: str) -> object:
        edit = self._pending.get(entity_key)
        if edit is None or name not in edit.fields:
            return _MISSING
        return edit.fields[name].desired

    def _overlay(self, mirror: SongDocument) -> SongDocument:
        view = mirror.model_copy(deep=True)

        bars = self._desired("song", "bars")
        if bars is not _MISSING:
            resize_document(view, bars)
        for name in ("tempo", "active_pattern_id"):
            value = self._desired("song", name)
            if value is not _MISSING:
                setattr(view, name, value)
        for name in _LOOP_FIELDS:
            value = self._desired("loop", name)
            if value is not _MISSING:
                setattr(view.loop, name, value)

        edits = self._pending.edits()
        for edit in edits:
            if edit.entity_key.startswith("pattern:"):
                self._overlay_pattern(view, edit.entity_key, edit.template)
        for edit in edits:
            kind = edit.entity_key.partition(":")[0]
            if kind == "note":
                self._overlay_note(view, edit.entity_key, edit.template)
            elif kind == "clip":
                self._overlay_placement(view.clips, Clip, edit.entity_key, edit.template)
            elif kind == "sfx":
                self._overlay_placement(view.sfx_events, SfxEvent, edit.entity_key, edit.template)
            elif kind == "grid":
                self._overlay_cell(view, edit.entity_key)
        return clamp_document(view)

    def _overlay_pattern(
        self, view: SongDocument, entity_key: str, template: dict[str, object] | None
    ) -> None:
        entity_id = entity_key.partition(":")[2]
        exists = self._desired(entity_key, "exists")
        pattern = view.find_pattern(entity_id)
        if exists is False:
            view.patterns = [p for p in view.patterns if p.id != entity_id]
            return
        if pattern is None and exists is True and template is not None:
            pattern = Pattern(**template)
            view.patterns.append(pattern)
        if pattern is None:
            return
        for name in _PATTERN_FIELDS:
            value = self._desired(entity_key, name)
            if value is not _MISSING:
                setattr(pattern, name, value)

    def _overlay_note(
        self, view: SongDocument, entity_key: str, template: dict[str, object] | None
    ) -> None:
        entity_id = entity_key.partition(":")[2]
        exists = self._desired(entity_key, "exists")
        if exists is False:
            for pattern in view.patterns:
                pattern.notes = [n for n in pattern.notes if n.id != entity_id]
            view.notes = [n for n in view.notes if n.id != entity_id]
            return
        found = find_note(view, entity_id)
        if found is None and exists is True and template is not None:
            note = Note(**template["note"])
            owner = view.find_pattern(template["pattern"])
            (owner.notes if owner is not None else view.notes).append(note)
            found = find_note(view, entity_id)
        if found is None:
            return
        note = found[0]
        for name in _NOTE_FIELDS:
            value = self._desired(entity_key, name)
            if value is not _MISSING:
                setattr(note, name, value)

    def _overlay_placement(
        self,
        items: list,
        model: type[Clip] | type[SfxEvent],
        entity_key: str,
        template: dict[str, object] | None,
    ) -> None:
        entity_id = entity_key.partition(":")[2]
        exists = self._desired(entity_key, "exists")
        if exists is False:
            items[:] = [item for item in items if item.id != entity_id]
            return
        item = next((i for i in items if i.id == entity_id), None)
        if item is None and exists is True and template is not None:
            item = model(**template)
            items.append(item)
        if item is None:
            return
        names = _CLIP_FIELDS if model is Clip else _SFX_FIELDS
        for name in names:
            value = self._desired(entity_key, name)
            if value is not _MISSING:
                setattr(item, name, value)

    def _overlay_cell(self, view: SongDocument, entity_key: str) -> None:
        on = self._desired(entity_key, "on")
        if on is _MISSING:
            return
        _, lane, step = entity_key.split(":")
        lane_index, step_index = int(lane), int(step)
        if lane_index < len(view.grid) and step_index < len(view.grid[lane_index]):
            view.grid[lane_index][step_index] = bool(on)
