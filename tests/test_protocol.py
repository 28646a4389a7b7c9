"""
Tests for the sync wire protocol.

Covers typed emission, the registry contract, inbound validation and
normalisation, the protocol hash and version helpers.
"""
from __future__ import annotations

import json

import pytest
from pydantic import BaseModel, ValidationError

from dooly.models.song import new_song_document
from dooly.playback.state import PlaybackSnapshot
from dooly.protocol.emitter import ProtocolSerializationError, emit, parse_event
from dooly.protocol.events import (
    DocCursorEvent,
    DocSnapshotEvent,
    DocTypingEvent,
    PlaybackStateEvent,
    SessionWelcomeEvent,
    SyncEvent,
)
from dooly.protocol.hash import compute_protocol_hash, compute_protocol_hash_short
from dooly.protocol.inbound import (
    ALL_INBOUND_CHANNELS,
    PRIVILEGED_CHANNELS,
    ApplyOpsPayload,
    Cursor,
    CursorPayload,
    TypingPayload,
    parse_inbound,
)
from dooly.protocol.registry import ALL_EVENT_CHANNELS, EVENT_REGISTRY, get_event_class, is_known_event
from dooly.protocol.version import DOOLY_VERSION_MAJOR, is_compatible


# =============================================================================
# Outbound
# =============================================================================


class TestEmit:
    """Typed events → wire frames."""

    def test_frame_shape(self) -> None:
        frame = emit(SessionWelcomeEvent(connection_id="abc", server_time=1))
        assert frame["channel"] == "session.welcome"
        assert frame["payload"]["connectionId"] == "abc"
        assert frame["payload"]["serverTime"] == 1
        assert "channel" not in frame["payload"]

    def test_rejects_non_event(self) -> None:
        with pytest.raises(ProtocolSerializationError, match="requires a SyncEvent"):
            emit({"channel": "session.welcome"})  # type: ignore[arg-type]

    def test_rejects_unregistered_channel(self) -> None:
        with pytest.raises(ProtocolSerializationError, match="Unknown channel"):
            emit(SyncEvent(channel="made.up"))

    def test_events_forbid_extra_fields(self) -> None:
        with pytest.raises(ValidationError):
            SessionWelcomeEvent(connection_id="a", server_time=1, bogus=True)

    def test_cursor_uses_from_key(self) -> None:
        event = DocCursorEvent(document_id="d", sender="c1", cursor=Cursor(nx=0.5), ts=5)
        payload = emit(event)["payload"]
        assert payload["from"] == "c1"
        assert payload["documentId"] == "d"
        assert payload["cursor"]["nx"] == 0.5

    def test_snapshot_document_is_camel_case(self) -> None:
        doc = new_song_document("d")
        payload = emit(DocSnapshotEvent(document_id="d", document=doc, revision=0))["payload"]
        assert payload["document"]["activePatternId"] == "p1"
        assert payload["document"]["stepsPerBar"] == 16

    def test_playback_state_from_snapshot(self) -> None:
        snap = PlaybackSnapshot(ref="aaaaaaaaaaa", base_timestamp=10, is_playing=True)
        payload = emit(PlaybackStateEvent.from_snapshot(snap))["payload"]
        assert payload == snap.to_wire()

    def test_parse_event_inverts_emit(self) -> None:
        event = DocTypingEvent(document_id="d", sender="c1", text="hi", nx=0.1, ny=0.9, ts=3)
        parsed = parse_event(emit(event))
        assert isinstance(parsed, DocTypingEvent)
        assert parsed == event

    @pytest.mark.parametrize("frame", [
        {"payload": {}},
        {"channel": "made.up", "payload": {}},
        {"channel": "session.welcome"},
        {"channel": "session.welcome", "payload": {"connectionId": 1}},
    ])
    def test_parse_event_rejects(self, frame: dict) -> None:
        with pytest.raises(ProtocolSerializationError):
            parse_event(frame)


class TestRegistry:
    """Registry contract."""

    def test_every_entry_pins_its_channel(self) -> None:
        for channel, model in EVENT_REGISTRY.items():
            assert model.model_fields["channel"].default == channel

    def test_every_event_is_a_sync_event(self) -> None:
        for model in EVENT_REGISTRY.values():
            assert issubclass(model, SyncEvent)
            assert issubclass(model, BaseModel)

    def test_lookup(self) -> None:
        assert get_event_class("doc.delta").__name__ == "DocDeltaEvent"
        assert is_known_event("presence.update")
        assert not is_known_event("doc.applyOps")
        with pytest.raises(KeyError):
            get_event_class("nope")

    def test_channel_sets(self) -> None:
        assert len(ALL_EVENT_CHANNELS) == 9
        assert PRIVILEGED_CHANNELS <= ALL_INBOUND_CHANNELS
        assert "playback.reportOrder" not in PRIVILEGED_CHANNELS


# =============================================================================
# Inbound
# =============================================================================


class TestParseInbound:
    """Client frame validation."""

    def test_valid_text_frame(self) -> None:
        parsed = parse_inbound(json.dumps({"channel": "playback.setRate", "payload": {"rate": 1.5}}))
        assert parsed is not None
        channel, payload = parsed
        assert channel == "playback.setRate"
        assert payload.rate == 1.5

    def test_missing_payload_is_empty(self) -> None:
        assert parse_inbound({"channel": "playback.skip"}) is not None

    @pytest.mark.parametrize("raw", [
        "not json",
        b"\xff\xfe",
        "[1, 2]",
        {"channel": "unknown.channel", "payload": {}},
        {"channel": 7, "payload": {}},
        {"channel": "playback.setRate", "payload": {"rate": "fast"}},
        {"channel": "playback.setPaused", "payload": {}},
        {"channel": "doc.join", "payload": {"documentId": ""}},
        {"channel": "doc.join", "payload": {"documentId": "x" * 65}},
    ])
    def test_malformed_dropped(self, raw: object) -> None:
        assert parse_inbound(raw) is None

    def test_unknown_keys_ignored(self) -> None:
        parsed = parse_inbound({"channel": "playback.ended", "payload": {"ref": "aaaaaaaaaaa", "x": 1}})
        assert parsed is not None

    def test_default_document_id(self) -> None:
        _, payload = parse_inbound({"channel": "doc.join", "payload": {}})
        assert payload.document_id == "default"

    def test_apply_ops_camel_case(self) -> None:
        payload = ApplyOpsPayload.model_validate(
            {"documentId": "d", "clientRevision": 3, "operations": [{"type": "set_tempo"}]}
        )
        assert payload.client_revision == 3
        assert payload.operations == [{"type": "set_tempo"}]


class TestNormalisation:
    """Ephemeral payload clamping."""

    def test_cursor_clamped(self) -> None:
        payload = CursorPayload.model_validate(
            {"cursor": {"nx": 2, "ny": -1, "sx": 0.5, "track": 9, "sect": "arrange"}}
        )
        cursor = payload.cursor
        assert (cursor.nx, cursor.ny, cursor.sx) == (1.0, 0.0, 0.5)
        assert cursor.track == 3
        assert cursor.sect == "arrange"

    def test_cursor_rejects_long_section(self) -> None:
        with pytest.raises(ValidationError):
            Cursor(sect="s" * 33)

    def test_typing_truncated(self) -> None:
        payload = TypingPayload.model_validate({"text": "y" * 500, "nx": 5})
        assert len(payload.text) == 140
        assert payload.nx == 1.0


# =============================================================================
# Hash and version
# =============================================================================


class TestHashAndVersion:

    def test_hash_is_stable(self) -> None:
        assert compute_protocol_hash() == compute_protocol_hash()
        assert len(compute_protocol_hash()) == 64
        assert compute_protocol_hash().startswith(compute_protocol_hash_short())

    def test_compatibility(self) -> None:
        assert is_compatible(f"{DOOLY_VERSION_MAJOR}.9.9")
        assert not is_compatible(f"{DOOLY_VERSION_MAJOR + 1}.0.0")
        assert not is_compatible("garbage")
