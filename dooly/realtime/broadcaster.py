"""
Topic Broadcaster for sync connections.

Manages per-connection outbound queues and topic membership, and fans
frames out to every member of a topic.

Architecture:
    SyncHub → publish(topic, frame) → TopicBroadcaster → outbound queues
            → per-connection writer task → WebSocket

Delivery is fire-and-forget: a full outbound queue drops the frame with a
warning, so nothing waits on a slow client.  Playback state is re-sent in
full on the next 1 Hz tick; a document client sees the revision gap on its
next frame and re-joins for a snapshot.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from dooly.config import settings
from dooly.protocol.emitter import Frame

logger = logging.getLogger(__name__)

OutboundQueue = asyncio.Queue[Frame | None]


class TopicBroadcaster:
    """
    Owns one bounded outbound queue per connection plus topic → members.

    A ``None`` sentinel on a queue signals its writer task to stop.
    """

    def __init__(self, queue_size: int | None = None) -> None:
        self._queue_size = settings.outbound_queue_size if queue_size is None else queue_size
        # connection_id -> outbound queue
        self._queues: dict[str, OutboundQueue] = {}
        # topic -> member connection ids, in join order
        self._topics: dict[str, dict[str, None]] = {}

    def register(self, connection_id: str) -> OutboundQueue:
        """Create the outbound queue for a new connection."""
        queue: OutboundQueue = asyncio.Queue(maxsize=self._queue_size)
        self._queues[connection_id] = queue
        logger.debug(f"Registered connection {connection_id[:8]}")
        return queue

    def unregister(self, connection_id: str) -> list[str]:
        """
        Drop a connection from every topic and stop its writer.

        Returns the topics it was a member of so presence can be re-broadcast.
        """
        left = [topic for topic, members in self._topics.items() if connection_id in members]
        for topic in left:
            self.leave(connection_id, topic)
        queue = self._queues.pop(connection_id, None)
        if queue is not None:
            try:
                queue.put_nowait(None)
            except asyncio.QueueFull:
                logger.debug(f"Outbound queue full for {connection_id[:8]}, writer stops on disconnect")
        logger.debug(f"Unregistered connection {connection_id[:8]} (left {len(left)} topic(s))")
        return left

    def is_registered(self, connection_id: str) -> bool:
        return connection_id in self._queues

    def join(self, connection_id: str, topic: str) -> bool:
        """Add a connection to a topic. Returns ``False`` if it was already a member."""
        if connection_id not in self._queues:
            return False
        members = self._topics.setdefault(topic, {})
        if connection_id in members:
            return False
        members[connection_id] = None
        return True

    def leave(self, connection_id: str, topic: str) -> bool:
        members = self._topics.get(topic)
        if members is None or connection_id not in members:
            return False
        del members[connection_id]
        if not members:
            del self._topics[topic]
        return True

    def members(self, topic: str) -> list[str]:
        return list(self._topics.get(topic, {}))

    def topics_of(self, connection_id: str) -> list[str]:
        return [topic for topic, members in self._topics.items() if connection_id in members]

    def send(self, connection_id: str, frame: Frame) -> bool:
        """Queue a frame for one connection. Returns ``False`` if dropped."""
        queue = self._queues.get(connection_id)
        if queue is None:
            return False
        try:
            queue.put_nowait(frame)
        except asyncio.QueueFull:
            logger.warning(
                f"Outbound queue full for {connection_id[:8]}, dropping {frame.get('channel')}"
            )
            return False
        return True

    def publish(
        self,
        topic: str,
        frame: Frame,
        exclude: Iterable[str] = (),
    ) -> int:
        """
        Publish a frame to every member of a topic.

        Returns the number of connections that received the frame.
        """
        skipped = set(exclude)
        members = [m for m in self.members(topic) if m not in skipped]
        delivered = sum(1 for member in members if self.send(member, frame))
        logger.debug(
            f"Published {frame.get('channel')} to {delivered}/{len(members)} "
            f"member(s) of '{topic}'"
        )
        return delivered

    def publish_all(self, frame: Frame) -> int:
        """Publish a frame to every registered connection."""
        return sum(1 for connection_id in list(self._queues) if self.send(connection_id, frame))

    def clear(self) -> None:
        """Clear all state (for testing)."""
        self._queues.clear()
        self._topics.clear()

    @property
    def connection_count(self) -> int:
        return len(self._queues)


# Singleton instance
_broadcaster: TopicBroadcaster | None = None


def get_broadcaster() -> TopicBroadcaster:
    """Get the singleton TopicBroadcaster instance."""
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = TopicBroadcaster()
    return _broadcaster


def reset_broadcaster() -> None:
    """Reset the singleton (for testing)."""
    global _broadcaster
    if _broadcaster is not None:
        _broadcaster.clear()
    _broadcaster = None
