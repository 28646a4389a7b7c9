"""Event registry: canonical mapping of channel strings to event model classes.

Invariants:
  - Every event the server can send has an entry.
  - Unknown channels cannot be emitted (emitter rejects them).
  - Registry is frozen at import time. No runtime mutation.
"""

from __future__ import annotations

from typing import Type

from dooly.protocol.events import (
    DocCursorEvent,
    DocDeltaEvent,
    DocSnapshotEvent,
    DocTransportEvent,
    DocTypingEvent,
    PlaybackStateEvent,
    PresenceUpdateEvent,
    SessionAdminsEvent,
    SessionWelcomeEvent,
    SyncEvent,
)

EVENT_REGISTRY: dict[str, Type[SyncEvent]] = {
    "session.welcome": SessionWelcomeEvent,
    "session.admins": SessionAdminsEvent,
    "presence.update": PresenceUpdateEvent,
    "playback.state": PlaybackStateEvent,
    "doc.snapshot": DocSnapshotEvent,
    "doc.delta": DocDeltaEvent,
    "doc.transport": DocTransportEvent,
    "doc.cursor": DocCursorEvent,
    "doc.typing": DocTypingEvent,
}

ALL_EVENT_CHANNELS: frozenset[str] = frozenset(EVENT_REGISTRY.keys())


def get_event_class(channel: str) -> Type[SyncEvent]:
    """Look up the model class for a channel. Raises KeyError for unknown channels."""
    return EVENT_REGISTRY[channel]


def is_known_event(channel: str) -> bool:
    """Return ``True`` when ``channel`` is a registered outbound channel."""
    return channel in EVENT_REGISTRY
