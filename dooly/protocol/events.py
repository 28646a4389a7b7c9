"""Sync protocol event models: single source of truth for the outbound wire format.

Every frame the server sends is an instance of a ``SyncEvent`` subclass.
Raw dicts are forbidden.  ``emit()`` validates and serializes through these
models, guaranteeing wire-format consistency.

Wire format rules:
  - Frames are ``{"channel": str, "payload": object}``
  - Payload keys are camelCase (via CamelModel alias_generator)
  - ``channel`` is carried by the frame, not repeated inside the payload

Extra fields policy:
  - Events use extra="forbid" (strict outbound contract).
  - Inbound payloads (``dooly.protocol.inbound``) use extra="ignore".
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import ConfigDict, Field

from dooly.models.base import CamelModel
from dooly.models.song import SongDocument
from dooly.playback.state import PlaybackSnapshot
from dooly.protocol.inbound import Cursor
from dooly.protocol.version import DOOLY_PROTOCOL_VERSION


class SyncEvent(CamelModel):
    """Base class for all outbound events. Subclasses pin ``channel``."""

    model_config = ConfigDict(extra="forbid")

    channel: str


# ═══════════════════════════════════════════════════════════════════════
# Session
# ═══════════════════════════════════════════════════════════════════════


class SessionWelcomeEvent(SyncEvent):
    """First frame on every connection."""

    channel: Literal["session.welcome"] = "session.welcome"
    connection_id: str
    server_time: int
    protocol_version: str = DOOLY_PROTOCOL_VERSION


class SessionAdminsEvent(SyncEvent):
    """Connections currently asserting admin privilege."""

    channel: Literal["session.admins"] = "session.admins"
    ids: list[str]


class PresenceUpdateEvent(SyncEvent):
    """Membership of a topic group changed."""

    channel: Literal["presence.update"] = "presence.update"
    topic: str
    ids: list[str]


# ═══════════════════════════════════════════════════════════════════════
# Playback timeline
# ═══════════════════════════════════════════════════════════════════════


class PlaybackStateEvent(SyncEvent):
    """Canonical timeline; broadcast every tick and after every change."""

    channel: Literal["playback.state"] = "playback.state"
    ref: str | None = None
    base_index: int = 0
    base_timestamp: int = 0
    playback_rate: float = 1.0
    is_playing: bool = False
    paused_at: int | None = None
    queue_length: int = 0

    @classmethod
    def from_snapshot(cls, snapshot: PlaybackSnapshot) -> PlaybackStateEvent:
        return cls(**snapshot.model_dump())


# ═══════════════════════════════════════════════════════════════════════
# Song documents
# ═══════════════════════════════════════════════════════════════════════


class DocSnapshotEvent(SyncEvent):
    """Full canonical document."""

    channel: Literal["doc.snapshot"] = "doc.snapshot"
    document_id: str
    document: SongDocument
    revision: int


class DocDeltaEvent(SyncEvent):
    """An accepted batch: id-filled, already-validated operations plus the new revision."""

    channel: Literal["doc.delta"] = "doc.delta"
    document_id: str
    operations: list[dict[str, Any]]
    revision: int


class DocTransportEvent(SyncEvent):
    channel: Literal["doc.transport"] = "doc.transport"
    document_id: str
    playing: bool
    base_bar: float
    base_timestamp: int
    tempo: int
    revision: int


class DocCursorEvent(SyncEvent):
    """Ephemeral pointer position of another collaborator."""

    channel: Literal["doc.cursor"] = "doc.cursor"
    document_id: str
    sender: str = Field(alias="from")
    cursor: Cursor
    ts: int


class DocTypingEvent(SyncEvent):
    """Ephemeral typing preview of another collaborator."""

    channel: Literal["doc.typing"] = "doc.typing"
    document_id: str
    sender: str = Field(alias="from")
    text: str
    nx: float
    ny: float
    ts: int
