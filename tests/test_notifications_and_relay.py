"""Tests for the notification hub, SSE rendering and the server request relay."""

import asyncio
import json

import pytest

from anyclaw.server.services import NoPendingServerRequestError, Notification, NotificationHub
from anyclaw.server.services.event_stream import (
    PING_FRAME,
    READY_FRAME,
    format_notification_frame,
    stream_notifications,
)
from anyclaw.server.services.server_requests import ServerRequestRelay, is_server_request


class TestNotificationHub:
    """Tests for NotificationHub fan-out."""

    def test_every_subscriber_receives_in_order(self):
        hub = NotificationHub()
        first, second = [], []
        hub.subscribe(first.append)
        hub.subscribe(second.append)

        hub.emit(Notification("a"))
        hub.emit(Notification("b"))

        assert [n.method for n in first] == ["a", "b"]
        assert [n.method for n in second] == ["a", "b"]

    def test_unsubscribe_is_idempotent(self):
        hub = NotificationHub()
        received = []
        unsubscribe = hub.subscribe(received.append)
        unsubscribe()
        unsubscribe()
        hub.emit(Notification("a"))
        assert received == []
        assert hub.subscriber_count == 0

    def test_failing_listener_does_not_block_others(self, caplog):
        hub = NotificationHub()
        received = []

        def broken(notification):
            raise RuntimeError("boom")

        hub.subscribe(broken)
        hub.subscribe(received.append)
        with caplog.at_level("WARNING"):
            hub.emit(Notification("a"))
        assert [n.method for n in received] == ["a"]
        assert "Notification listener failed" in caplog.text

    def test_late_subscriber_misses_earlier_notifications(self):
        hub = NotificationHub()
        hub.emit(Notification("early"))
        received = []
        hub.subscribe(received.append)
        hub.emit(Notification("late"))
        assert [n.method for n in received] == ["late"]

    def test_listener_unsubscribing_during_emit(self):
        hub = NotificationHub()
        received = []
        holder = {}

        def once(notification):
            received.append(notification.method)
            holder["unsubscribe"]()

        holder["unsubscribe"] = hub.subscribe(once)
        hub.emit(Notification("a"))
        hub.emit(Notification("b"))
        assert received == ["a"]


class TestEventStream:
    """Tests for SSE frame rendering."""

    def test_notification_frame(self):
        frame = format_notification_frame(
            Notification("turn/started", {"threadId": "t1"}), at_iso="2024-01-01T00:00:00.000Z"
        )
        assert frame.startswith("data: ")
        assert frame.endswith("\n\n")
        payload = json.loads(frame[len("data: "):])
        assert payload == {
            "method": "turn/started",
            "params": {"threadId": "t1"},
            "atIso": "2024-01-01T00:00:00.000Z",
        }

    @pytest.mark.asyncio
    async def test_ready_then_notifications(self):
        hub = NotificationHub()
        stream = stream_notifications(hub, keepalive_interval=5)
        try:
            assert await stream.__anext__() == READY_FRAME
            assert hub.subscriber_count == 1

            hub.emit(Notification("one", {"n": 1}))
            hub.emit(Notification("two", {"n": 2}))
            first = json.loads((await stream.__anext__())[len("data: "):])
            second = json.loads((await stream.__anext__())[len("data: "):])
            assert [first["method"], second["method"]] == ["one", "two"]
            assert first["atIso"].endswith("Z")
        finally:
            await stream.aclose()
        assert hub.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_keepalive_ping_when_idle(self):
        hub = NotificationHub()
        stream = stream_notifications(hub, keepalive_interval=0.05)
        try:
            await stream.__anext__()
            frame = await asyncio.wait_for(stream.__anext__(), timeout=2)
            assert frame == PING_FRAME
        finally:
            await stream.aclose()

    @pytest.mark.asyncio
    async def test_two_streams_see_the_same_notification(self):
        hub = NotificationHub()
        first = stream_notifications(hub, keepalive_interval=5)
        second = stream_notifications(hub, keepalive_interval=5)
        try:
            await first.__anext__()
            await second.__anext__()
            hub.emit(Notification("shared"))
            for stream in (first, second):
                frame = await stream.__anext__()
                assert json.loads(frame[len("data: "):])["method"] == "shared"
        finally:
            await first.aclose()
            await second.aclose()


class TestServerRequestRelay:
    """Tests for pending server request bookkeeping."""

    def test_register_and_resolve_once(self):
        relay = ServerRequestRelay()
        request = relay.register(5, "item/fileChange/requestApproval", {"threadId": "t1"})
        assert 5 in relay
        assert request.thread_id == "t1"
        assert request.to_dict()["receivedAtIso"] == request.received_at_iso

        assert relay.resolve(5) is request
        with pytest.raises(NoPendingServerRequestError):
            relay.resolve(5)
        assert len(relay) == 0

    def test_thread_id_missing_or_blank(self):
        relay = ServerRequestRelay()
        assert relay.register(1, "m", None).thread_id == ""
        assert relay.register(2, "m", {"threadId": ""}).thread_id == ""
        assert relay.register(3, "m", {"threadId": 7}).thread_id == ""

    def test_list_and_clear(self):
        relay = ServerRequestRelay()
        relay.register(1, "a")
        relay.register(2, "b")
        assert [r.id for r in relay.list()] == [1, 2]
        assert relay.get(2).method == "b"
        relay.clear()
        assert relay.list() == []
        assert relay.get(2) is None

    @pytest.mark.parametrize(
        "message,expected",
        [
            ({"id": 1, "method": "x"}, True),
            ({"id": "1", "method": "x"}, False),
            ({"id": True, "method": "x"}, False),
            ({"id": 1}, False),
            ({"method": "x"}, False),
        ],
    )
    def test_is_server_request(self, message, expected):
        assert is_server_request(message) is expected
