"""Inbound frame validation.

Clients send ``{"channel": str, "payload": object}``.  Each known channel has
a payload model; ``parse_inbound()`` returns ``None`` for anything that does
not validate, so the hub can drop it without surfacing an error.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ConfigDict, Field, FiniteFloat, ValidationError, field_validator

from dooly.config import ARRANGEMENT_TRACKS, NAME_MAX_LENGTH, TYPING_TEXT_MAX_LENGTH, settings
from dooly.models.base import CamelModel

logger = logging.getLogger(__name__)


def _default_document_id() -> str:
    return settings.default_document_id


class InboundPayload(CamelModel):
    """Base for client payloads; unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")


class EmptyPayload(InboundPayload):
    pass


# ── Session ──────────────────────────────────────────────────────────────────


class IdentifyPayload(InboundPayload):
    is_admin: bool = False
    protocol_version: str | None = Field(default=None, max_length=NAME_MAX_LENGTH)


# ── Playback ─────────────────────────────────────────────────────────────────


class ReportOrderPayload(InboundPayload):
    order: list[Any]


class ReportDurationPayload(InboundPayload):
    ref: str
    seconds: FiniteFloat


class EndedPayload(InboundPayload):
    ref: str


class SetVideoPayload(InboundPayload):
    ref: str


class EnqueuePayload(InboundPayload):
    refs: list[Any]


class SetPausedPayload(InboundPayload):
    paused: bool


class SetRatePayload(InboundPayload):
    rate: FiniteFloat


# ── Documents ────────────────────────────────────────────────────────────────


class DocumentPayload(InboundPayload):
    document_id: str = Field(default_factory=_default_document_id, min_length=1, max_length=NAME_MAX_LENGTH)


class ApplyOpsPayload(DocumentPayload):
    client_revision: int | None = None
    operations: list[Any]


class TransportPayload(DocumentPayload):
    playing: bool
    position_bars: FiniteFloat = 0.0


def _unit(value: float | None) -> float | None:
    return None if value is None else max(0.0, min(1.0, value))


class Cursor(InboundPayload):
    """Normalised pointer position; page-level (nx/ny) or section-level (sx/sy)."""

    sect: str | None = Field(default=None, max_length=32)
    nx: FiniteFloat | None = None
    ny: FiniteFloat | None = None
    sx: FiniteFloat | None = None
    sy: FiniteFloat | None = None
    track: int | None = None
    ty: FiniteFloat | None = None

    @field_validator("nx", "ny", "sx", "sy", "ty")
    @classmethod
    def _clamp_unit(cls, value: float | None) -> float | None:
        return _unit(value)

    @field_validator("track")
    @classmethod
    def _clamp_track(cls, value: int | None) -> int | None:
        return None if value is None else max(0, min(ARRANGEMENT_TRACKS - 1, value))


class CursorPayload(DocumentPayload):
    cursor: Cursor


class TypingPayload(DocumentPayload):
    text: str = ""
    nx: FiniteFloat = 0.5
    ny: FiniteFloat = 0.5

    @field_validator("text")
    @classmethod
    def _truncate(cls, value: str) -> str:
        return value[:TYPING_TEXT_MAX_LENGTH]

    @field_validator("nx", "ny")
    @classmethod
    def _clamp_unit(cls, value: float) -> float:
        return max(0.0, min(1.0, value))


INBOUND_PAYLOADS: dict[str, type[InboundPayload]] = {
    "session.identify": IdentifyPayload,
    "playback.join": EmptyPayload,
    "playback.leave": EmptyPayload,
    "playback.reportOrder": ReportOrderPayload,
    "playback.reportDuration": ReportDurationPayload,
    "playback.ended": EndedPayload,
    "playback.requestState": EmptyPayload,
    "playback.setVideo": SetVideoPayload,
    "playback.skip": EmptyPayload,
    "playback.enqueue": EnqueuePayload,
    "playback.clearQueue": EmptyPayload,
    "playback.setPaused": SetPausedPayload,
    "playback.setRate": SetRatePayload,
    "doc.join": DocumentPayload,
    "doc.leave": DocumentPayload,
    "doc.applyOps": ApplyOpsPayload,
    "doc.transport": TransportPayload,
    "doc.cursor": CursorPayload,
    "doc.typing": TypingPayload,
}

PRIVILEGED_CHANNELS: frozenset[str] = frozenset({
    "playback.setVideo",
    "playback.skip",
    "playback.enqueue",
    "playback.clearQueue",
    "playback.setPaused",
    "playback.setRate",
})

ALL_INBOUND_CHANNELS: frozenset[str] = frozenset(INBOUND_PAYLOADS.keys())


def parse_inbound(raw: str | bytes | Mapping[str, object]) -> tuple[str, InboundPayload] | None:
    """Decode and validate one client frame. Returns ``None`` when malformed."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.debug("Dropping frame: invalid JSON")
            return None
    if not isinstance(raw, Mapping):
        logger.debug("Dropping frame: not an object")
        return None

    channel = raw.get("channel")
    model = INBOUND_PAYLOADS.get(channel) if isinstance(channel, str) else None
    if model is None:
        logger.debug(f"Dropping frame on unknown channel {channel!r}")
        return None

    payload = raw.get("payload")
    if payload is None:
        payload = {}
    try:
        return channel, model.model_validate(payload)
    except ValidationError as exc:
        logger.debug(f"Dropping malformed '{channel}' frame: {exc.error_count()} error(s)")
        return None
