"""Tests for the bridge HTTP client and event stream consumer."""

import asyncio
import json

import httpx
import pytest

from anyclaw.ui.client import BridgeClient, BridgeRequestError, NotificationStream, parse_notification_data
from anyclaw.ui.models import ServerRequestReply


def make_client(handler) -> BridgeClient:
    transport = httpx.MockTransport(handler)
    return BridgeClient("http://bridge.test", client=httpx.AsyncClient(transport=transport))


def rpc_handler(results):
    """Answer /rpc calls from a {method: result or callable} table and log the calls."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/codex-api/rpc"
        body = json.loads(request.content)
        calls.append(body)
        result = results[body["method"]]
        if callable(result):
            result = result(body.get("params"))
        return httpx.Response(200, json={"result": result})

    return handler, calls


class TestBridgeClient:
    """Tests for BridgeClient."""

    @pytest.mark.asyncio
    async def test_thread_pagination_stops_on_repeated_cursor(self):
        pages = {
            None: {"data": [{"id": "a", "cwd": "/p/one", "updatedAt": 2}], "nextCursor": "c1"},
            "c1": {"data": [{"id": "b", "cwd": "/p/two", "updatedAt": 1}], "nextCursor": "c2"},
            "c2": {"data": [{"id": "c", "cwd": "/p/one", "updatedAt": 3}], "nextCursor": "c1"},
        }
        handler, calls = rpc_handler({"thread/list": lambda params: pages[params.get("cursor")]})
        client = make_client(handler)

        groups = await client.list_thread_groups()

        assert [call["params"].get("cursor") for call in calls] == [None, "c1", "c2"]
        assert all(call["params"]["limit"] == 100 for call in calls)
        assert [g.project_name for g in groups] == ["one", "two"]
        assert [t.id for t in groups[0].threads] == ["c", "a"]

    @pytest.mark.asyncio
    async def test_read_thread_messages(self):
        handler, calls = rpc_handler(
            {
                "thread/read": {
                    "thread": {"turns": [{"items": [{"type": "agentMessage", "id": "a1", "text": "hi"}]}]}
                }
            }
        )
        messages = await make_client(handler).read_thread_messages("t1")
        assert calls[0]["params"] == {"threadId": "t1", "includeTurns": True}
        assert [m.text for m in messages] == ["hi"]

    @pytest.mark.asyncio
    async def test_start_thread_and_turn(self):
        handler, calls = rpc_handler(
            {"thread/start": {"thread": {"id": "new-thread"}}, "turn/start": {"turn": {"id": "u1"}}}
        )
        client = make_client(handler)
        assert await client.start_thread("/src/demo", "gpt-x") == "new-thread"
        await client.start_turn("new-thread", "do it", model="gpt-x", effort="high")
        assert calls[0]["params"] == {"cwd": "/src/demo", "model": "gpt-x"}
        assert calls[1]["params"] == {
            "threadId": "new-thread",
            "input": [{"type": "text", "text": "do it"}],
            "model": "gpt-x",
            "effort": "high",
        }

    @pytest.mark.asyncio
    async def test_models_and_config(self):
        handler, _ = rpc_handler(
            {
                "model/list": {"data": [{"id": "m1"}, {"model": "m2"}, {"id": "m1"}, {}]},
                "config/read": {"config": {"model": "m2", "model_reasoning_effort": "low"}},
            }
        )
        client = make_client(handler)
        assert await client.list_model_ids() == ["m1", "m2"]
        config = await client.read_model_config()
        assert (config.model, config.reasoning_effort) == ("m2", "low")

    @pytest.mark.asyncio
    async def test_error_envelope_raises(self):
        def handler(request):
            return httpx.Response(502, json={"error": "codex app-server exited unexpectedly"})

        with pytest.raises(BridgeRequestError) as excinfo:
            await make_client(handler).rpc("thread/list", {})
        assert excinfo.value.message == "codex app-server exited unexpectedly"
        assert excinfo.value.status == 502

    @pytest.mark.asyncio
    async def test_invalid_json_raises(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>")

        with pytest.raises(BridgeRequestError, match="invalid JSON"):
            await make_client(handler).rpc("x")

    @pytest.mark.asyncio
    async def test_unreachable_bridge(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(BridgeRequestError, match="Bridge unreachable"):
            await make_client(handler).rpc("x")

    @pytest.mark.asyncio
    async def test_server_request_endpoints(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path, request.content))
            if request.url.path.endswith("/pending"):
                return httpx.Response(200, json={"data": [{"id": 1, "method": "m"}]})
            return httpx.Response(200, json={"ok": True})

        client = make_client(handler)
        assert await client.list_pending_server_requests() == [{"id": 1, "method": "m"}]
        await client.reply_to_server_request(ServerRequestReply(id=1, result={"decision": "accept"}))
        assert seen[1][:2] == ("POST", "/codex-api/server-requests/respond")
        assert json.loads(seen[1][2]) == {"id": 1, "result": {"decision": "accept"}}


class TestNotificationStream:
    """Tests for SSE parsing."""

    def test_parse_notification_data(self):
        parsed = parse_notification_data('{"method": "turn/started", "params": {"a": 1}, "atIso": "x"}')
        assert (parsed.method, parsed.params, parsed.at_iso) == ("turn/started", {"a": 1}, "x")
        assert parse_notification_data("{oops") is None
        assert parse_notification_data('{"params": {}}') is None

    @pytest.mark.asyncio
    async def test_iter_notifications_skips_ready_and_pings(self):
        body = (
            'event: ready\ndata: {"ok": true}\n\n'
            ": ping\n\n"
            'data: {"method": "turn/started", "params": {"threadId": "t1"}, "atIso": "2024"}\n\n'
            'data: {"method": "turn/completed", "params": {}}\r\n\r\n'
        )

        def handler(request):
            assert request.url.path == "/codex-api/events"
            return httpx.Response(200, content=body.encode(), headers={"content-type": "text/event-stream"})

        stream = NotificationStream(
            "http://bridge.test", client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
        )
        received = [n async for n in stream.iter_notifications()]
        assert [n.method for n in received] == ["turn/started", "turn/completed"]
        assert received[0].at_iso == "2024"
        await stream.close()

    @pytest.mark.asyncio
    async def test_subscribe_delivers_and_stops(self):
        body = 'data: {"method": "thread/started", "params": {}}\n\n'

        def handler(request):
            return httpx.Response(200, content=body.encode())

        stream = NotificationStream(
            "http://bridge.test",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            reconnect_delay=0.01,
        )
        received = []
        stop = stream.subscribe(received.append)
        for _ in range(100):
            if len(received) >= 2:
                break
            await asyncio.sleep(0.01)
        stop()
        await asyncio.sleep(0)
        assert len(received) >= 2
        assert received[0].method == "thread/started"
        await stream.close()
