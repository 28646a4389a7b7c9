"""
Sync Hub: the single writer.

Every inbound frame, connection event and timer tick goes through one inbox
and is handled by one task.  Handlers are synchronous and run to completion,
so each sees a consistent view of the playback timeline, the song documents,
topic membership and the admin set.

Flow:
    WebSocket reader → submit(conn, raw) → inbox → run() → handler
        → TopicBroadcaster → outbound queues → WebSocket writers
    ticker → submit_tick() → inbox → run() → tick()

Error policy:
    - Malformed frames and unauthorised privileged frames are dropped (debug).
    - A handler that raises is logged with ``logger.exception``; the hub keeps
      running.  Canonical documents are only replaced after a batch fully
      applied to a copy, so a crash never leaves half-applied state.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

from dooly.config import PLAYBACK_TOPIC, settings
from dooly.document.authority import DocumentAuthority
from dooly.document.store import get_document_store
from dooly.playback.authority import PlaybackAuthority
from dooly.protocol.emitter import emit
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
)
from dooly.protocol.inbound import (
    PRIVILEGED_CHANNELS,
    ApplyOpsPayload,
    CursorPayload,
    DocumentPayload,
    EndedPayload,
    EnqueuePayload,
    IdentifyPayload,
    InboundPayload,
    ReportDurationPayload,
    ReportOrderPayload,
    SetPausedPayload,
    SetRatePayload,
    SetVideoPayload,
    TransportPayload,
    TypingPayload,
    parse_inbound,
)
from dooly.protocol.version import DOOLY_PROTOCOL_VERSION, is_compatible
from dooly.realtime.broadcaster import OutboundQueue, TopicBroadcaster, get_broadcaster
from dooly.realtime.clock import Clock, SystemClock
from dooly.realtime.privilege import AdminRegistry

logger = logging.getLogger(__name__)


def document_topic(document_id: str) -> str:
    return f"doc:{document_id}"


@dataclass(frozen=True)
class HubMessage:
    """One unit of work for the hub."""

    kind: Literal["frame", "disconnect", "tick"]
    connection_id: str = ""
    raw: str | bytes | None = None


class SyncHub:
    """Owns all mutable realtime state and processes the inbox sequentially."""

    def __init__(
        self,
        broadcaster: TopicBroadcaster | None = None,
        documents: DocumentAuthority | None = None,
        playback: PlaybackAuthority | None = None,
        clock: Clock | None = None,
        inbox_size: int | None = None,
    ) -> None:
        self.clock: Clock = clock or SystemClock()
        self.broadcaster = broadcaster or get_broadcaster()
        self.documents = documents or DocumentAuthority(get_document_store(), self.clock)
        self.playback = playback or PlaybackAuthority(self.clock)
        self.admins = AdminRegistry()
        self._inbox: asyncio.Queue[HubMessage] = asyncio.Queue(
            maxsize=settings.hub_inbox_size if inbox_size is None else inbox_size
        )
        self._tasks: list[asyncio.Task[None]] = []
        self._handlers: dict[str, Callable[[str, InboundPayload], None]] = {
            "session.identify": self._on_identify,
            "playback.join": self._on_playback_join,
            "playback.leave": self._on_playback_leave,
            "playback.reportOrder": self._on_report_order,
            "playback.reportDuration": self._on_report_duration,
            "playback.ended": self._on_ended,
            "playback.requestState": self._on_request_state,
            "playback.setVideo": self._on_set_video,
            "playback.skip": self._on_skip,
            "playback.enqueue": self._on_enqueue,
            "playback.clearQueue": self._on_clear_queue,
            "playback.setPaused": self._on_set_paused,
            "playback.setRate": self._on_set_rate,
            "doc.join": self._on_doc_join,
            "doc.leave": self._on_doc_leave,
            "doc.applyOps": self._on_apply_ops,
            "doc.transport": self._on_transport,
            "doc.cursor": self._on_cursor,
            "doc.typing": self._on_typing,
        }

    # ── Connection lifecycle (called from the WebSocket route) ────────────

    def connect(self, connection_id: str) -> OutboundQueue:
        """Register a connection and queue its welcome frame."""
        queue = self.broadcaster.register(connection_id)
        self.broadcaster.send(connection_id, emit(SessionWelcomeEvent(
            connection_id=connection_id,
            server_time=self.clock.now_ms(),
        )))
        logger.info(f"Sync client connected: {connection_id[:8]}")
        return queue

    def submit(self, connection_id: str, raw: str | bytes) -> bool:
        """Queue an inbound frame. Returns ``False`` when the inbox is full."""
        return self._put(HubMessage(kind="frame", connection_id=connection_id, raw=raw))

    def disconnect(self, connection_id: str) -> None:
        """Queue a disconnect. Never dropped: a full inbox handles it inline."""
        message = HubMessage(kind="disconnect", connection_id=connection_id)
        try:
            self._inbox.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(f"Hub inbox full, handling disconnect of {connection_id[:8]} inline")
            self.process(message)

    def submit_tick(self) -> bool:
        return self._put(HubMessage(kind="tick"))

    def _put(self, message: HubMessage) -> bool:
        try:
            self._inbox.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(f"Hub inbox full, dropping {message.kind} message")
            return False
        return True

    # ── Task management ──────────────────────────────────────────────────

    def start(self) -> None:
        """Start the consumer and ticker tasks on the running loop."""
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self.run(), name="sync-hub"),
            asyncio.create_task(self.run_ticker(), name="sync-hub-ticker"),
        ]
        logger.info("Sync hub started")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        logger.info("Sync hub stopped")

    async def run(self) -> None:
        """Drain the inbox forever, one message at a time."""
        while True:
            message = await self._inbox.get()
            self.process(message)

    async def run_ticker(self, interval_seconds: float | None = None) -> None:
        interval = settings.timeline_tick_seconds if interval_seconds is None else interval_seconds
        while True:
            await asyncio.sleep(interval)
            self.submit_tick()

    def drain(self) -> int:
        """Process everything currently queued (for testing). Returns the count."""
        processed = 0
        while not self._inbox.empty():
            self.process(self._inbox.get_nowait())
            processed += 1
        return processed

    # ── Dispatch ─────────────────────────────────────────────────────────

    def process(self, message: HubMessage) -> None:
        try:
            if message.kind == "tick":
                self.tick()
            elif message.kind == "disconnect":
                self.handle_disconnect(message.connection_id)
            elif message.raw is not None:
                self.handle_frame(message.connection_id, message.raw)
        except Exception:
            logger.exception(f"Hub handler failed for {message.kind} message")

    def handle_frame(self, connection_id: str, raw: str | bytes) -> None:
        if not self.broadcaster.is_registered(connection_id):
            return
        parsed = parse_inbound(raw)
        if parsed is None:
            return
        channel, payload = parsed
        if channel in PRIVILEGED_CHANNELS and not self.admins.is_admin(connection_id):
            logger.debug(f"Ignoring privileged '{channel}' from non-admin {connection_id[:8]}")
            return
        self._handlers[channel](connection_id, payload)

    def handle_disconnect(self, connection_id: str) -> None:
        topics = self.broadcaster.unregister(connection_id)
        if self.admins.remove(connection_id):
            self._broadcast_admins()
        for topic in topics:
            self._broadcast_presence(topic)
        logger.info(f"Sync client disconnected: {connection_id[:8]}")

    def tick(self) -> None:
        """1 Hz: advance the timeline if due, then broadcast its state regardless."""
        self.playback.tick()
        self._broadcast_playback()

    # ── Session ──────────────────────────────────────────────────────────

    def _on_identify(self, connection_id: str, payload: IdentifyPayload) -> None:
        if payload.protocol_version is not None and not is_compatible(payload.protocol_version):
            logger.warning(
                f"Client {connection_id[:8]} speaks protocol {payload.protocol_version}, "
                f"server is {DOOLY_PROTOCOL_VERSION}"
            )
        if self.admins.identify(connection_id, payload.is_admin):
            self._broadcast_admins()
        else:
            self.broadcaster.send(connection_id, emit(SessionAdminsEvent(ids=self.admins.ids())))

    def _broadcast_admins(self) -> None:
        self.broadcaster.publish_all(emit(SessionAdminsEvent(ids=self.admins.ids())))

    def _broadcast_presence(self, topic: str) -> None:
        self.broadcaster.publish(topic, emit(PresenceUpdateEvent(
            topic=topic,
            ids=self.broadcaster.members(topic),
        )))

    # ── Playback ─────────────────────────────────────────────────────────

    def _playback_frame(self) -> dict[str, object]:
        return emit(PlaybackStateEvent.from_snapshot(self.playback.snapshot()))

    def _broadcast_playback(self) -> None:
        self.broadcaster.publish(PLAYBACK_TOPIC, self._playback_frame())

    def _on_playback_join(self, connection_id: str, payload: InboundPayload) -> None:
        if self.broadcaster.join(connection_id, PLAYBACK_TOPIC):
            self._broadcast_presence(PLAYBACK_TOPIC)
        self.broadcaster.send(connection_id, self._playback_frame())

    def _on_playback_leave(self, connection_id: str, payload: InboundPayload) -> None:
        if self.broadcaster.leave(connection_id, PLAYBACK_TOPIC):
            self._broadcast_presence(PLAYBACK_TOPIC)

    def _on_report_order(self, connection_id: str, payload: ReportOrderPayload) -> None:
        if self.playback.report_order(payload.order):
            self._broadcast_playback()

    def _on_report_duration(self, connection_id: str, payload: ReportDurationPayload) -> None:
        self.playback.report_duration(payload.ref, payload.seconds)

    def _on_ended(self, connection_id: str, payload: EndedPayload) -> None:
        if self.playback.request_advance(payload.ref):
            self._broadcast_playback()

    def _on_request_state(self, connection_id: str, payload: InboundPayload) -> None:
        self.broadcaster.send(connection_id, self._playback_frame())

    def _on_set_video(self, connection_id: str, payload: SetVideoPayload) -> None:
        if self.playback.set_video(payload.ref):
            self._broadcast_playback()

    def _on_skip(self, connection_id: str, payload: InboundPayload) -> None:
        if self.playback.skip():
            self._broadcast_playback()

    def _on_enqueue(self, connection_id: str, payload: EnqueuePayload) -> None:
        if self.playback.enqueue(payload.refs):
            self._broadcast_playback()

    def _on_clear_queue(self, connection_id: str, payload: InboundPayload) -> None:
        if self.playback.clear_queue():
            self._broadcast_playback()

    def _on_set_paused(self, connection_id: str, payload: SetPausedPayload) -> None:
        if self.playback.set_paused(payload.paused):
            self._broadcast_playback()

    def _on_set_rate(self, connection_id: str, payload: SetRatePayload) -> None:
        if self.playback.set_rate(payload.rate):
            self._broadcast_playback()

    # ── Documents ────────────────────────────────────────────────────────

    def _snapshot_frame(self, document_id: str) -> dict[str, object]:
        document = self.documents.snapshot(document_id)
        return emit(DocSnapshotEvent(
            document_id=document_id,
            document=document,
            revision=document.revision,
        ))

    def _publish_document(self, connection_id: str, document_id: str, frame: dict[str, object]) -> None:
        """Publish to the document's group, making sure the sender gets it too."""
        topic = document_topic(document_id)
        self.broadcaster.publish(topic, frame)
        if connection_id not in self.broadcaster.members(topic):
            self.broadcaster.send(connection_id, frame)

    def _on_doc_join(self, connection_id: str, payload: DocumentPayload) -> None:
        topic = document_topic(payload.document_id)
        if self.broadcaster.join(connection_id, topic):
            self._broadcast_presence(topic)
        self.broadcaster.send(connection_id, self._snapshot_frame(payload.document_id))

    def _on_doc_leave(self, connection_id: str, payload: DocumentPayload) -> None:
        topic = document_topic(payload.document_id)
        if self.broadcaster.leave(connection_id, topic):
            self._broadcast_presence(topic)

    def _on_apply_ops(self, connection_id: str, payload: ApplyOpsPayload) -> None:
        batch = self.documents.apply_ops(
            payload.document_id, payload.client_revision, payload.operations
        )
        if batch is None:
            return
        self._publish_document(connection_id, batch.document_id, emit(DocDeltaEvent(
            document_id=batch.document_id,
            operations=[op.to_wire() for op in batch.operations],
            revision=batch.revision,
        )))
        if batch.structural:
            self._publish_document(
                connection_id, batch.document_id, self._snapshot_frame(batch.document_id)
            )

    def _on_transport(self, connection_id: str, payload: TransportPayload) -> None:
        document = self.documents.set_transport(
            payload.document_id, payload.playing, payload.position_bars
        )
        self._publish_document(connection_id, document.id, emit(DocTransportEvent(
            document_id=document.id,
            playing=document.transport.playing,
            base_bar=document.transport.base_bar,
            base_timestamp=document.transport.base_timestamp,
            tempo=document.tempo,
            revision=document.revision,
        )))

    def _on_cursor(self, connection_id: str, payload: CursorPayload) -> None:
        self.broadcaster.publish(
            document_topic(payload.document_id),
            emit(DocCursorEvent(
                document_id=payload.document_id,
                sender=connection_id,
                cursor=payload.cursor,
                ts=self.clock.now_ms(),
            )),
            exclude=(connection_id,),
        )

    def _on_typing(self, connection_id: str, payload: TypingPayload) -> None:
        self.broadcaster.publish(
            document_topic(payload.document_id),
            emit(DocTypingEvent(
                document_id=payload.document_id,
                sender=connection_id,
                text=payload.text,
                nx=payload.nx,
                ny=payload.ny,
                ts=self.clock.now_ms(),
            )),
            exclude=(connection_id,),
        )


# Singleton instance
_hub: SyncHub | None = None


def get_sync_hub() -> SyncHub:
    """Get the singleton SyncHub instance."""
    global _hub
    if _hub is None:
        _hub = SyncHub()
    return _hub


def reset_sync_hub() -> None:
    """Reset the singleton (for testing). Running tasks are not awaited."""
    global _hub
    if _hub is not None:
        for task in _hub._tasks:
            task.cancel()
    _hub = None
