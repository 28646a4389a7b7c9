"""
Tests for the TopicBroadcaster.

Covers topic membership, fan-out with exclusion, bounded queues that drop
instead of blocking, and the writer stop sentinel on unregister.
"""
from __future__ import annotations

import asyncio

import pytest

from dooly.realtime.broadcaster import TopicBroadcaster, get_broadcaster, reset_broadcaster


def _drain(queue: asyncio.Queue) -> list:
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


@pytest.fixture
def broadcaster() -> TopicBroadcaster:
    return TopicBroadcaster(queue_size=2)


class TestMembership:
    """join/leave and presence ordering."""

    def test_join_order_preserved(self, broadcaster: TopicBroadcaster) -> None:
        for conn in ("c", "a", "b"):
            broadcaster.register(conn)
            assert broadcaster.join(conn, "tv") is True
        assert broadcaster.members("tv") == ["c", "a", "b"]

    def test_double_join_reports_no_change(self, broadcaster: TopicBroadcaster) -> None:
        broadcaster.register("a")
        broadcaster.join("a", "tv")
        assert broadcaster.join("a", "tv") is False

    def test_unregistered_cannot_join(self, broadcaster: TopicBroadcaster) -> None:
        assert broadcaster.join("ghost", "tv") is False
        assert broadcaster.members("tv") == []

    def test_leave(self, broadcaster: TopicBroadcaster) -> None:
        broadcaster.register("a")
        broadcaster.join("a", "tv")
        assert broadcaster.leave("a", "tv") is True
        assert broadcaster.leave("a", "tv") is False
        assert broadcaster.topics_of("a") == []

    def test_unregister_leaves_all_topics_and_stops_writer(self, broadcaster: TopicBroadcaster) -> None:
        queue = broadcaster.register("a")
        broadcaster.join("a", "tv")
        broadcaster.join("a", "doc:x")
        assert sorted(broadcaster.unregister("a")) == ["doc:x", "tv"]
        assert broadcaster.is_registered("a") is False
        assert _drain(queue) == [None]


class TestFanOut:
    """publish/send semantics."""

    def test_publish_excludes_sender(self, broadcaster: TopicBroadcaster) -> None:
        qa = broadcaster.register("a")
        qb = broadcaster.register("b")
        broadcaster.join("a", "doc:x")
        broadcaster.join("b", "doc:x")
        frame = {"channel": "doc.cursor", "payload": {}}
        assert broadcaster.publish("doc:x", frame, exclude=["a"]) == 1
        assert _drain(qa) == []
        assert _drain(qb) == [frame]

    def test_publish_to_empty_topic(self, broadcaster: TopicBroadcaster) -> None:
        assert broadcaster.publish("nobody", {"channel": "x", "payload": {}}) == 0

    def test_full_queue_drops(self, broadcaster: TopicBroadcaster, caplog: pytest.LogCaptureFixture) -> None:
        queue = broadcaster.register("slow")
        frames = [{"channel": "playback.state", "payload": {"n": i}} for i in range(3)]
        results = [broadcaster.send("slow", f) for f in frames]
        assert results == [True, True, False]
        assert _drain(queue) == frames[:2]
        assert "Outbound queue full" in caplog.text

    def test_slow_member_does_not_block_others(self, broadcaster: TopicBroadcaster) -> None:
        broadcaster.register("slow")
        fast = broadcaster.register("fast")
        broadcaster.join("slow", "tv")
        broadcaster.join("fast", "tv")
        for i in range(3):
            broadcaster.publish("tv", {"channel": "playback.state", "payload": {"n": i}})
            _drain(fast)
        assert broadcaster.publish("tv", {"channel": "playback.state", "payload": {}}) == 1

    def test_publish_all(self, broadcaster: TopicBroadcaster) -> None:
        broadcaster.register("a")
        broadcaster.register("b")
        assert broadcaster.publish_all({"channel": "session.admins", "payload": {"ids": []}}) == 2

    def test_send_to_unknown_connection(self, broadcaster: TopicBroadcaster) -> None:
        assert broadcaster.send("ghost", {"channel": "x", "payload": {}}) is False


class TestSingleton:

    def test_reset(self) -> None:
        first = get_broadcaster()
        first.register("a")
        reset_broadcaster()
        second = get_broadcaster()
        assert second is not first
        assert second.connection_count == 0
