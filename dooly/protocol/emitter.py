"""Typed frame emitter and parser: protocol-enforced serialization.

Every frame the server sends passes through ``emit()``.
Two entry points:

  ``emit(SyncEvent)``     : serialize a typed event to a wire frame
                             ``{"channel": ..., "payload": {...}}``.
  ``parse_event(dict)``   : deserialize a wire frame back into the correct
                             SyncEvent subclass (inverse of ``emit``).  Used by
                             tests and client code that wants typed access.

Handlers construct typed SyncEvent subclasses directly: raw-dict emission is
forbidden.  Type safety is enforced at construction time by Pydantic model
validation, not at serialization time.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from dooly.protocol.events import SyncEvent
from dooly.protocol.registry import get_event_class, is_known_event

logger = logging.getLogger(__name__)

Frame = dict[str, object]


class ProtocolSerializationError(Exception):
    """Raised when an event cannot be emitted or a frame cannot be parsed."""


def emit(event: SyncEvent) -> Frame:
    """Serialize a SyncEvent to a wire frame.

    Raises ProtocolSerializationError for non-SyncEvent arguments and
    unregistered channels.
    """
    if not isinstance(event, SyncEvent):
        raise ProtocolSerializationError(
            f"emit() requires a SyncEvent, got {type(event).__name__}."
        )

    channel = event.channel
    if not is_known_event(channel):
        raise ProtocolSerializationError(
            f"Unknown channel '{channel}'. Register it in dooly/protocol/registry.py."
        )

    payload = event.model_dump(by_alias=True, mode="json", exclude={"channel"})
    return {"channel": channel, "payload": payload}


def build_frame(channel: str, payload: Mapping[str, object]) -> Frame:
    """Client-side frame for an inbound channel."""
    return {"channel": channel, "payload": dict(payload)}


def parse_event(frame: Mapping[str, object]) -> SyncEvent:
    """Deserialize a wire frame back into the correct SyncEvent subclass.

    Raises ``ProtocolSerializationError`` for unknown or malformed frames.
    """
    channel = frame.get("channel")
    if not isinstance(channel, str):
        raise ProtocolSerializationError("Frame missing 'channel' field")

    if not is_known_event(channel):
        raise ProtocolSerializationError(
            f"Unknown channel '{channel}'. Cannot deserialize."
        )

    payload = frame.get("payload")
    if not isinstance(payload, Mapping):
        raise ProtocolSerializationError(f"Frame '{channel}' has no payload object")

    model_class = get_event_class(channel)
    try:
        return model_class.model_validate({**payload, "channel": channel})
    except Exception as exc:
        raise ProtocolSerializationError(
            f"Frame '{channel}' failed deserialization: {exc}"
        ) from exc
