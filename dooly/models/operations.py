"""Document operations: the tagged variant every song mutation travels as.

Each operation carries only the fields relevant to its ``type``.  Update
operations treat an omitted field as "unchanged"; that is why operations are
serialized with ``exclude_none=True``.

Numeric fields are parsed as finite floats and rounded/clamped by the reducer
(``dooly.document.operations``), never rejected for being out of range.
Wrong types, NaN/inf, or unknown ``type`` tags make the operation malformed.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Annotated, Literal, Union

from pydantic import ConfigDict, Field, FiniteFloat, TypeAdapter, ValidationError

from dooly.config import NAME_MAX_LENGTH
from dooly.models.base import CamelModel

logger = logging.getLogger(__name__)

EntityId = Annotated[str, Field(min_length=1, max_length=NAME_MAX_LENGTH)]
Name = Annotated[str, Field(max_length=NAME_MAX_LENGTH)]


class BaseOperation(CamelModel):
    """Common base; extra keys from older clients are ignored."""

    model_config = ConfigDict(extra="ignore")

    type: str

    def to_wire(self) -> dict[str, object]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ── Drum grid / song ───────────────────────────────────────────────────────────


class ToggleStepOp(BaseOperation):
    type: Literal["toggle_step"] = "toggle_step"
    lane: FiniteFloat
    step: FiniteFloat


class SetTempoOp(BaseOperation):
    type: Literal["set_tempo"] = "set_tempo"
    tempo: FiniteFloat


class SetBarsOp(BaseOperation):
    type: Literal["set_bars"] = "set_bars"
    bars: FiniteFloat


class SetLoopOp(BaseOperation):
    type: Literal["set_loop"] = "set_loop"
    enabled: bool | None = None
    start_step: FiniteFloat | None = None
    length_steps: FiniteFloat | None = None


# ── Notes ─────────────────────────────────────────────────────────────────────


class NoteAddOp(BaseOperation):
    """Add a note to ``pattern_id`` (default: active pattern, else legacy notes)."""

    type: Literal["note_add"] = "note_add"
    id: EntityId | None = None
    pattern_id: EntityId | None = None
    start_step: FiniteFloat = 0
    length_steps: FiniteFloat = 1
    pitch: FiniteFloat = 60
    velocity: FiniteFloat | None = None
    synth: Name | None = None


class NoteUpdateOp(BaseOperation):
    type: Literal["note_update"] = "note_update"
    id: EntityId
    start_step: FiniteFloat | None = None
    length_steps: FiniteFloat | None = None
    pitch: FiniteFloat | None = None
    velocity: FiniteFloat | None = None
    synth: Name | None = None


class NoteDeleteOp(BaseOperation):
    type: Literal["note_delete"] = "note_delete"
    id: EntityId


# ── Patterns ──────────────────────────────────────────────────────────────────


class PatternAddOp(BaseOperation):
    type: Literal["pattern_add"] = "pattern_add"
    id: EntityId | None = None
    name: Name | None = None
    bars: FiniteFloat | None = None


class PatternUpdateOp(BaseOperation):
    type: Literal["pattern_update"] = "pattern_update"
    id: EntityId
    name: Name | None = None
    bars: FiniteFloat | None = None


class PatternDeleteOp(BaseOperation):
    type: Literal["pattern_delete"] = "pattern_delete"
    id: EntityId


class PatternSelectOp(BaseOperation):
    type: Literal["pattern_select"] = "pattern_select"
    id: EntityId


# ── Arrangement clips ─────────────────────────────────────────────────────────


class ClipAddOp(BaseOperation):
    type: Literal["clip_add"] = "clip_add"
    id: EntityId | None = None
    track: FiniteFloat = 0
    start_step: FiniteFloat = 0
    length_steps: FiniteFloat | None = None
    pattern_id: EntityId | None = None


class ClipUpdateOp(BaseOperation):
    type: Literal["clip_update"] = "clip_update"
    id: EntityId
    track: FiniteFloat | None = None
    start_step: FiniteFloat | None = None
    length_steps: FiniteFloat | None = None
    pattern_id: EntityId | None = None


class ClipDeleteOp(BaseOperation):
    type: Literal["clip_delete"] = "clip_delete"
    id: EntityId


# ── Sample (sfx) events ───────────────────────────────────────────────────────


class SfxAddOp(BaseOperation):
    type: Literal["sfx_add"] = "sfx_add"
    id: EntityId | None = None
    track: FiniteFloat = 0
    start_step: FiniteFloat = 0
    length_steps: FiniteFloat = 1
    source_ref: str = ""
    gain: FiniteFloat = 1.0
    pan: FiniteFloat = 0.0
    offset_ms: FiniteFloat = 0


class SfxUpdateOp(BaseOperation):
    type: Literal["sfx_update"] = "sfx_update"
    id: EntityId
    track: FiniteFloat | None = None
    start_step: FiniteFloat | None = None
    length_steps: FiniteFloat | None = None
    source_ref: str | None = None
    gain: FiniteFloat | None = None
    pan: FiniteFloat | None = None
    offset_ms: FiniteFloat | None = None


class SfxDeleteOp(BaseOperation):
    type: Literal["sfx_delete"] = "sfx_delete"
    id: EntityId


Operation = Annotated[
    Union[
        ToggleStepOp,
        SetTempoOp,
        SetBarsOp,
        SetLoopOp,
        NoteAddOp,
        NoteUpdateOp,
        NoteDeleteOp,
        PatternAddOp,
        PatternUpdateOp,
        PatternDeleteOp,
        PatternSelectOp,
        ClipAddOp,
        ClipUpdateOp,
        ClipDeleteOp,
        SfxAddOp,
        SfxUpdateOp,
        SfxDeleteOp,
    ],
    Field(discriminator="type"),
]

OPERATION_ADAPTER: TypeAdapter[Operation] = TypeAdapter(Operation)

# Operations whose effect a client cannot safely derive from the diff alone;
# the authority follows them with a full snapshot.
STRUCTURAL_TYPES: frozenset[str] = frozenset({
    "pattern_add",
    "pattern_update",
    "pattern_delete",
    "pattern_select",
    "clip_add",
    "clip_update",
    "clip_delete",
    "sfx_add",
    "sfx_update",
    "sfx_delete",
    "set_bars",
})

ADD_TYPES: frozenset[str] = frozenset({"note_add", "pattern_add", "clip_add", "sfx_add"})


def is_structural(op: BaseOperation) -> bool:
    """True when ``op`` requires a snapshot broadcast alongside the delta."""
    return op.type in STRUCTURAL_TYPES


def parse_operation(raw: object) -> Operation | None:
    """Validate one raw operation. Returns ``None`` for malformed input."""
    try:
        return OPERATION_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        logger.debug(f"Dropping malformed operation: {exc.error_count()} error(s)")
        return None


def parse_operations(raw_ops: Iterable[object]) -> list[Operation]:
    """Validate a batch, silently dropping malformed entries."""
    parsed: list[Operation] = []
    for raw in raw_ops:
        op = parse_operation(raw)
        if op is not None:
            parsed.append(op)
    return parsed
