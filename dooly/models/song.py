"""Song document models: the canonical shape of a collaborative sequencer song.

The same models back the server-side authority and the client-side mirror.
Wire format is camelCase (``CamelModel``); ``model_copy(deep=True)`` is the
only way state is duplicated before a batch is applied.
"""
from __future__ import annotations

from pydantic import Field

from dooly.config import (
    DEFAULT_BARS,
    DEFAULT_PATTERN_ID,
    DEFAULT_SYNTH,
    DEFAULT_TEMPO,
    DEFAULT_VELOCITY,
    DRUM_LANES,
    STEPS_PER_BAR,
)
from dooly.models.base import CamelModel


class Note(CamelModel):
    """A piano-roll note. Steps are sixteenth-note grid positions."""

    id: str
    start_step: int = 0
    length_steps: int = 1
    pitch: int = 60
    velocity: float = DEFAULT_VELOCITY
    synth: str = DEFAULT_SYNTH


class Pattern(CamelModel):
    """A named, reusable block of notes placed on the arrangement by clips."""

    id: str
    name: str = "Pattern"
    bars: int = DEFAULT_BARS
    notes: list[Note] = Field(default_factory=list)


class Clip(CamelModel):
    """Placement of a pattern on an arrangement track."""

    id: str
    track: int = 0
    start_step: int = 0
    length_steps: int = 1
    pattern_id: str | None = None


class SfxEvent(CamelModel):
    """A one-shot sample placed on an arrangement track."""

    id: str
    track: int = 0
    start_step: int = 0
    length_steps: int = 1
    source_ref: str = ""
    gain: float = 1.0
    pan: float = 0.0
    offset_ms: int = 0


class LoopRegion(CamelModel):
    """Loop brace over the song timeline."""

    enabled: bool = False
    start_step: int = 0
    length_steps: int = STEPS_PER_BAR


class Transport(CamelModel):
    """Shared transport anchor: position ``base_bar`` at ``base_timestamp`` (epoch ms)."""

    playing: bool = False
    base_bar: float = 0.0
    base_timestamp: int = 0


class SongDocument(CamelModel):
    """Canonical collaborative song.

    ``grid`` is indexed ``[lane][step]`` with one row per entry of ``lanes``
    and exactly ``bars * steps_per_bar`` cells per row.
    """

    id: str
    tempo: int = DEFAULT_TEMPO
    bars: int = DEFAULT_BARS
    steps_per_bar: int = STEPS_PER_BAR
    lanes: list[str] = Field(default_factory=lambda: list(DRUM_LANES))
    grid: list[list[bool]] = Field(default_factory=list)
    notes: list[Note] = Field(default_factory=list)
    patterns: list[Pattern] = Field(default_factory=list)
    active_pattern_id: str | None = None
    clips: list[Clip] = Field(default_factory=list)
    sfx_events: list[SfxEvent] = Field(default_factory=list)
    loop: LoopRegion = Field(default_factory=LoopRegion)
    transport: Transport = Field(default_factory=Transport)
    revision: int = 0

    @property
    def total_steps(self) -> int:
        return self.bars * self.steps_per_bar

    def pattern_steps(self, pattern: Pattern) -> int:
        return pattern.bars * self.steps_per_bar

    def find_pattern(self, pattern_id: str | None) -> Pattern | None:
        if pattern_id is None:
            return None
        for pattern in self.patterns:
            if pattern.id == pattern_id:
                return pattern
        return None


def new_song_document(document_id: str) -> SongDocument:
    """Build the document a first reference to ``document_id`` creates."""
    total = DEFAULT_BARS * STEPS_PER_BAR
    return SongDocument(
        id=document_id,
        grid=[[False] * total for _ in DRUM_LANES],
        patterns=[Pattern(id=DEFAULT_PATTERN_ID, name="Pattern 1", bars=DEFAULT_BARS)],
        active_pattern_id=DEFAULT_PATTERN_ID,
    )
