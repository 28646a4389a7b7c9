"""
Deterministic operation application for song documents.

This module is the single definition of how an operation changes a song.
The server authority and the client reconciler both call
``apply_operations()``, so two replicas that apply the same ordered batches
to the same starting document end up identical.

Rules:
    - Out-of-range numbers are rounded and clamped, never rejected.
    - Operations that reference a missing entity are no-ops.
    - Adds with an id that already exists are no-ops.
    - ``apply_operations`` never mutates its input; the revision is left
      untouched (the authority owns revision bumps).
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable, Sequence

from dooly.config import (
    ARRANGEMENT_TRACKS,
    BARS_MAX,
    BARS_MIN,
    DEFAULT_BARS,
    DEFAULT_SYNTH,
    DEFAULT_VELOCITY,
    GAIN_MAX,
    GAIN_MIN,
    NAME_MAX_LENGTH,
    OFFSET_MS_MAX,
    PAN_MAX,
    PAN_MIN,
    PITCH_MAX,
    PITCH_MIN,
    TEMPO_MAX,
    TEMPO_MIN,
    VELOCITY_MAX,
    VELOCITY_MIN,
)
from dooly.models.operations import (
    ADD_TYPES,
    BaseOperation,
    ClipAddOp,
    ClipDeleteOp,
    ClipUpdateOp,
    NoteAddOp,
    NoteDeleteOp,
    NoteUpdateOp,
    Operation,
    PatternAddOp,
    PatternDeleteOp,
    PatternSelectOp,
    PatternUpdateOp,
    SetBarsOp,
    SetLoopOp,
    SetTempoOp,
    SfxAddOp,
    SfxDeleteOp,
    SfxUpdateOp,
    ToggleStepOp,
)
from dooly.models.song import Clip, Note, Pattern, SfxEvent, SongDocument

logger = logging.getLogger(__name__)

SOURCE_REF_MAX_LENGTH = 512


# ── Clamping primitives ───────────────────────────────────────────────────────


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def clamp_int(value: float, low: int, high: int) -> int:
    return int(clamp(round(value), low, high))


def clamp_span(start: float, length: float, total: int) -> tuple[int, int]:
    """Fit ``[start, start + length)`` inside ``[0, total)`` with length >= 1."""
    start_step = clamp_int(start, 0, total - 1)
    length_steps = clamp_int(length, 1, total - start_step)
    return start_step, length_steps


def _clamp_note(note: Note, total: int) -> None:
    note.start_step, note.length_steps = clamp_span(note.start_step, note.length_steps, total)
    note.pitch = clamp_int(note.pitch, PITCH_MIN, PITCH_MAX)
    note.velocity = float(clamp(note.velocity, VELOCITY_MIN, VELOCITY_MAX))


def _clamp_placement(item: Clip | SfxEvent, total: int) -> None:
    item.track = clamp_int(item.track, 0, ARRANGEMENT_TRACKS - 1)
    item.start_step, item.length_steps = clamp_span(item.start_step, item.length_steps, total)


def clamp_document(doc: SongDocument) -> SongDocument:
    """Re-establish every bounding invariant of ``doc`` in place.

    Used after a resize and by the client reconciler after it overlays
    unconfirmed local values onto authoritative state.
    """
    total = doc.total_steps
    lane_count = len(doc.lanes)
    rows = doc.grid[:lane_count]
    rows += [[] for _ in range(lane_count - len(rows))]
    doc.grid = [(row + [False] * total)[:total] for row in rows]

    for pattern in doc.patterns:
        pattern.bars = clamp_int(pattern.bars, BARS_MIN, doc.bars)
        pattern_total = doc.pattern_steps(pattern)
        for note in pattern.notes:
            _clamp_note(note, pattern_total)
    for note in doc.notes:
        _clamp_note(note, total)
    for clip in doc.clips:
        _clamp_placement(clip, total)
    for sfx in doc.sfx_events:
        _clamp_placement(sfx, total)
        sfx.gain = float(clamp(sfx.gain, GAIN_MIN, GAIN_MAX))
        sfx.pan = float(clamp(sfx.pan, PAN_MIN, PAN_MAX))
        sfx.offset_ms = clamp_int(sfx.offset_ms, 0, OFFSET_MS_MAX)

    doc.loop.start_step, doc.loop.length_steps = clamp_span(
        doc.loop.start_step, doc.loop.length_steps, total
    )
    if doc.find_pattern(doc.active_pattern_id) is None:
        doc.active_pattern_id = doc.patterns[0].id if doc.patterns else None
    return doc


def resize_document(doc: SongDocument, bars: int) -> SongDocument:
    """Change the song length, truncating/zero-padding rows and clamping content."""
    doc.bars = clamp_int(bars, BARS_MIN, BARS_MAX)
    return clamp_document(doc)


# ── Lookups ───────────────────────────────────────────────────────────────────


def find_note(doc: SongDocument, note_id: str) -> tuple[Note, int, Pattern | None] | None:
    """Locate a note: ``(note, bounding step count, owning pattern or None)``."""
    for pattern in doc.patterns:
        for note in pattern.notes:
            if note.id == note_id:
                return note, doc.pattern_steps(pattern), pattern
    for note in doc.notes:
        if note.id == note_id:
            return note, doc.total_steps, None
    return None


def _find_by_id(items: Sequence[Clip | SfxEvent], item_id: str) -> Clip | SfxEvent | None:
    for item in items:
        if item.id == item_id:
            return item
    return None


# ── Operation handlers ────────────────────────────────────────────────────────


def _toggle_step(doc: SongDocument, op: ToggleStepOp) -> None:
    lane = clamp_int(op.lane, 0, len(doc.lanes) - 1)
    step = clamp_int(op.step, 0, doc.total_steps - 1)
    doc.grid[lane][step] = not doc.grid[lane][step]


def _set_tempo(doc: SongDocument, op: SetTempoOp) -> None:
    doc.tempo = clamp_int(op.tempo, TEMPO_MIN, TEMPO_MAX)


def _set_bars(doc: SongDocument, op: SetBarsOp) -> None:
    resize_document(doc, clamp_int(op.bars, BARS_MIN, BARS_MAX))


def _set_loop(doc: SongDocument, op: SetLoopOp) -> None:
    loop = doc.loop
    if op.enabled is not None:
        loop.enabled = op.enabled
    start = op.start_step if op.start_step is not None else loop.start_step
    length = op.length_steps if op.length_steps is not None else loop.length_steps
    loop.start_step, loop.length_steps = clamp_span(start, length, doc.total_steps)


def _note_add(doc: SongDocument, op: NoteAddOp) -> None:
    if op.id is None or find_note(doc, op.id) is not None:
        return
    pattern = doc.find_pattern(op.pattern_id or doc.active_pattern_id)
    total = doc.pattern_steps(pattern) if pattern is not None else doc.total_steps
    start, length = clamp_span(op.start_step, op.length_steps, total)
    note = Note(
        id=op.id,
        start_step=start,
        length_steps=length,
        pitch=clamp_int(op.pitch, PITCH_MIN, PITCH_MAX),
        velocity=float(clamp(op.velocity if op.velocity is not None else DEFAULT_VELOCITY,
                             VELOCITY_MIN, VELOCITY_MAX)),
        synth=op.synth or DEFAULT_SYNTH,
    )
    if pattern is not None:
        pattern.notes.append(note)
    else:
        doc.notes.append(note)


def _note_update(doc: SongDocument, op: NoteUpdateOp) -> None:
    found = find_note(doc, op.id)
    if found is None:
        return
    note, total, _ = found
    start = op.start_step if op.start_step is not None else note.start_step
    length = op.length_steps if op.length_steps is not None else note.length_steps
    note.start_step, note.length_steps = clamp_span(start, length, total)
    if op.pitch is not None:
        note.pitch = clamp_int(op.pitch, PITCH_MIN, PITCH_MAX)
    if op.velocity is not None:
        note.velocity = float(clamp(op.velocity, VELOCITY_MIN, VELOCITY_MAX))
    if op.synth:
        note.synth = op.synth


def _note_delete(doc: SongDocument, op: NoteDeleteOp) -> None:
    for pattern in doc.patterns:
        pattern.notes = [n for n in pattern.notes if n.id != op.id]
    doc.notes = [n for n in doc.notes if n.id != op.id]


def _pattern_add(doc: SongDocument, op: PatternAddOp) -> None:
    if op.id is None:
        return
    if doc.find_pattern(op.id) is None:
        bars = op.bars if op.bars is not None else DEFAULT_BARS
        doc.patterns.append(Pattern(
            id=op.id,
            name=(op.name or f"Pattern {len(doc.patterns) + 1}")[:NAME_MAX_LENGTH],
            bars=clamp_int(bars, BARS_MIN, doc.bars),
        ))
    doc.active_pattern_id = op.id


def _pattern_update(doc: SongDocument, op: PatternUpdateOp) -> None:
    pattern = doc.find_pattern(op.id)
    if pattern is None:
        return
    if op.name is not None:
        pattern.name = op.name
    if op.bars is not None:
        pattern.bars = clamp_int(op.bars, BARS_MIN, doc.bars)
        total = doc.pattern_steps(pattern)
        for note in pattern.notes:
            _clamp_note(note, total)


def _pattern_delete(doc: SongDocument, op: PatternDeleteOp) -> None:
    doc.patterns = [p for p in doc.patterns if p.id != op.id]
    if doc.active_pattern_id == op.id:
        doc.active_pattern_id = doc.patterns[0].id if doc.patterns else None


def _pattern_select(doc: SongDocument, op: PatternSelectOp) -> None:
    if doc.find_pattern(op.id) is not None:
        doc.active_pattern_id = op.id


def _clip_add(doc: SongDocument, op: ClipAddOp) -> None:
    if op.id is None or _find_by_id(doc.clips, op.id) is not None:
        return
    pattern_id = op.pattern_id or doc.active_pattern_id
    pattern = doc.find_pattern(pattern_id)
    default_length = doc.pattern_steps(pattern) if pattern is not None else doc.steps_per_bar * 4
    length = op.length_steps if op.length_steps is not None else default_length
    start, length_steps = clamp_span(op.start_step, length, doc.total_steps)
    doc.clips.append(Clip(
        id=op.id,
        track=clamp_int(op.track, 0, ARRANGEMENT_TRACKS - 1),
        start_step=start,
        length_steps=length_steps,
        pattern_id=pattern_id,
    ))


def _clip_update(doc: SongDocument, op: ClipUpdateOp) -> None:
    clip = _find_by_id(doc.clips, op.id)
    if clip is None:
        return
    if op.track is not None:
        clip.track = clamp_int(op.track, 0, ARRANGEMENT_TRACKS - 1)
    start = op.start_step if op.start_step is not None else clip.start_step
    length = op.length_steps if op.length_steps is not None else clip.length_steps
    clip.start_step, clip.length_steps = clamp_span(start, length, doc.total_steps)
    if op.pattern_id is not None:
        clip.pattern_id = op.pattern_id


def _clip_delete(doc: SongDocument, op: ClipDeleteOp) -> None:
    doc.clips = [c for c in doc.clips if c.id != op.id]


def _sfx_add(doc: SongDocument, op: SfxAddOp) -> None:
    if op.id is None or _find_by_id(doc.sfx_events, op.id) is not None:
        return
    start, length = clamp_span(op.start_step, op.length_steps, doc.total_steps)
    doc.sfx_events.append(SfxEvent(
        id=op.id,
        track=clamp_int(op.track, 0, ARRANGEMENT_TRACKS - 1),
        start_step=start,
        length_steps=length,
        source_ref=op.source_ref[:SOURCE_REF_MAX_LENGTH],
        gain=float(clamp(op.gain, GAIN_MIN, GAIN_MAX)),
        pan=float(clamp(op.pan, PAN_MIN, PAN_MAX)),
        offset_ms=clamp_int(op.offset_ms, 0, OFFSET_MS_MAX),
    ))


def _sfx_update(doc: SongDocument, op: SfxUpdateOp) -> None:
    sfx = _find_by_id(doc.sfx_events, op.id)
    if sfx is None:
        return
    if op.track is not None:
        sfx.track = clamp_int(op.track, 0, ARRANGEMENT_TRACKS - 1)
    start = op.start_step if op.start_step is not None else sfx.start_step
    length = op.length_steps if op.length_steps is not None else sfx.length_steps
    sfx.start_step, sfx.length_steps = clamp_span(start, length, doc.total_steps)
    if op.source_ref is not None:
        sfx.source_ref = op.source_ref[:SOURCE_REF_MAX_LENGTH]
    if op.gain is not None:
        sfx.gain = float(clamp(op.gain, GAIN_MIN, GAIN_MAX))
    if op.pan is not None:
        sfx.pan = float(clamp(op.pan, PAN_MIN, PAN_MAX))
    if op.offset_ms is not None:
        sfx.offset_ms = clamp_int(op.offset_ms, 0, OFFSET_MS_MAX)


def _sfx_delete(doc: SongDocument, op: SfxDeleteOp) -> None:
    doc.sfx_events = [s for s in doc.sfx_events if s.id != op.id]


_HANDLERS: dict[str, Callable[..., None]] = {
    "toggle_step": _toggle_step,
    "set_tempo": _set_tempo,
    "set_bars": _set_bars,
    "set_loop": _set_loop,
    "note_add": _note_add,
    "note_update": _note_update,
    "note_delete": _note_delete,
    "pattern_add": _pattern_add,
    "pattern_update": _pattern_update,
    "pattern_delete": _pattern_delete,
    "pattern_select": _pattern_select,
    "clip_add": _clip_add,
    "clip_update": _clip_update,
    "clip_delete": _clip_delete,
    "sfx_add": _sfx_add,
    "sfx_update": _sfx_update,
    "sfx_delete": _sfx_delete,
}


def apply_operation(doc: SongDocument, op: BaseOperation) -> None:
    """Apply one operation to ``doc`` in place."""
    _HANDLERS[op.type](doc, op)


def apply_operations(doc: SongDocument, ops: Iterable[BaseOperation]) -> SongDocument:
    """Return a new document with ``ops`` applied in order; ``doc`` is untouched."""
    result = doc.model_copy(deep=True)
    for op in ops:
        apply_operation(result, op)
    return result


def new_entity_id() -> str:
    return uuid.uuid4().hex[:12]


def assign_missing_ids(
    ops: Iterable[Operation],
    id_factory: Callable[[], str] = new_entity_id,
) -> list[Operation]:
    """Give every add-operation an id so replicas create identical entities."""
    result: list[Operation] = []
    for op in ops:
        if op.type in ADD_TYPES and getattr(op, "id", None) is None:
            op = op.model_copy(update={"id": id_factory()})
        result.append(op)
    return result
