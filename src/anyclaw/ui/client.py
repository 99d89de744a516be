"""Async HTTP and SSE client for the AnyClaw bridge."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Callable

import httpx

from .models import ModelConfig, RpcNotification, ServerRequestReply, UiMessage, UiProjectGroup
from .normalizers import normalize_thread_groups, normalize_thread_messages

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:3000"
API_PREFIX = "/codex-api"
THREAD_PAGE_SIZE = 100
MAX_THREAD_PAGES = 50


class BridgeRequestError(Exception):
    """A bridge call failed; ``message`` is the bridge's error text."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.message = message
        self.status = status


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, str) and error:
            return error
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
    return f"Request failed with status {response.status_code}"


class BridgeClient:
    """Typed gateway over the bridge's ``/codex-api`` endpoints."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: Base URL of the AnyClaw bridge
            client: Preconfigured httpx client (tests pass one with a mock transport)
        """
        self.base_url = base_url.rstrip("/")
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(30.0, read=None))
        return self._client

    async def close(self):
        """Close the client."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "BridgeClient":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    def _url(self, path: str) -> str:
        return f"{self.base_url}{API_PREFIX}{path}"

    async def _request(self, method: str, path: str, payload: Any = None) -> Any:
        client = await self._get_client()
        try:
            if method == "GET":
                response = await client.get(self._url(path))
            else:
                response = await client.post(self._url(path), json=payload)
        except httpx.HTTPError as exc:
            raise BridgeRequestError(f"Bridge unreachable: {exc}") from exc

        if response.status_code >= 400:
            raise BridgeRequestError(_error_message(response), response.status_code)
        try:
            body = response.json()
        except ValueError as exc:
            raise BridgeRequestError("Bridge returned invalid JSON", response.status_code) from exc
        if isinstance(body, dict) and isinstance(body.get("error"), str):
            raise BridgeRequestError(body["error"], response.status_code)
        return body

    # ------------------------------------------------------------------
    # Raw RPC
    # ------------------------------------------------------------------

    async def rpc(self, method: str, params: Any = None) -> Any:
        body = await self._request("POST", "/rpc", {"method": method, "params": params})
        return body.get("result") if isinstance(body, dict) else None

    # ------------------------------------------------------------------
    # Threads and turns
    # ------------------------------------------------------------------

    async def list_thread_groups(self) -> list[UiProjectGroup]:
        """Fetch every thread page and group the threads by project."""
        rows: list[dict[str, Any]] = []
        cursor: str | None = None
        seen_cursors: set[str] = set()

        for _ in range(MAX_THREAD_PAGES):
            params: dict[str, Any] = {"limit": THREAD_PAGE_SIZE}
            if cursor:
                params["cursor"] = cursor
            result = await self.rpc("thread/list", params) or {}
            data = result.get("data") if isinstance(result, dict) else None
            if isinstance(data, list):
                rows.extend(row for row in data if isinstance(row, dict))

            next_cursor = result.get("nextCursor") if isinstance(result, dict) else None
            if not isinstance(next_cursor, str) or not next_cursor or next_cursor in seen_cursors:
                break
            seen_cursors.add(next_cursor)
            cursor = next_cursor

        return normalize_thread_groups(rows)

    async def read_thread_messages(self, thread_id: str) -> list[UiMessage]:
        result = await self.rpc("thread/read", {"threadId": thread_id, "includeTurns": True})
        return normalize_thread_messages(result if isinstance(result, dict) else {})

    async def resume_thread(self, thread_id: str) -> None:
        await self.rpc("thread/resume", {"threadId": thread_id})

    async def start_thread(self, cwd: str | None = None, model: str | None = None) -> str:
        """Start a thread and return its id ("" if the result has none)."""
        params: dict[str, Any] = {}
        if cwd:
            params["cwd"] = cwd
        if model:
            params["model"] = model
        result = await self.rpc("thread/start", params)
        thread = result.get("thread") if isinstance(result, dict) else None
        thread_id = thread.get("id") if isinstance(thread, dict) else None
        return thread_id if isinstance(thread_id, str) else ""

    async def start_turn(
        self,
        thread_id: str,
        text: str,
        model: str | None = None,
        effort: str | None = None,
    ) -> None:
        params: dict[str, Any] = {
            "threadId": thread_id,
            "input": [{"type": "text", "text": text}],
        }
        if model:
            params["model"] = model
        if effort:
            params["effort"] = effort
        await self.rpc("turn/start", params)

    async def interrupt_turn(self, thread_id: str, turn_id: str | None = None) -> None:
        params: dict[str, Any] = {"threadId": thread_id}
        if turn_id:
            params["turnId"] = turn_id
        await self.rpc("turn/interrupt", params)

    async def archive_thread(self, thread_id: str) -> None:
        await self.rpc("thread/archive", {"threadId": thread_id})

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    async def list_model_ids(self) -> list[str]:
        result = await self.rpc("model/list", {})
        data = result.get("data") if isinstance(result, dict) else None
        ids: list[str] = []
        for row in data if isinstance(data, list) else []:
            model_id = (row.get("id") or row.get("model")) if isinstance(row, dict) else row
            if isinstance(model_id, str) and model_id and model_id not in ids:
                ids.append(model_id)
        return ids

    async def read_model_config(self) -> ModelConfig:
        result = await self.rpc("config/read", {})
        config = result.get("config") if isinstance(result, dict) else None
        if not isinstance(config, dict):
            return ModelConfig()
        model = config.get("model")
        effort = config.get("model_reasoning_effort")
        return ModelConfig(
            model=model if isinstance(model, str) else "",
            reasoning_effort=effort if isinstance(effort, str) else "",
        )

    # ------------------------------------------------------------------
    # Server requests and introspection
    # ------------------------------------------------------------------

    async def list_pending_server_requests(self) -> list[Any]:
        body = await self._request("GET", "/server-requests/pending")
        data = body.get("data") if isinstance(body, dict) else None
        return data if isinstance(data, list) else []

    async def reply_to_server_request(self, reply: ServerRequestReply) -> None:
        await self._request("POST", "/server-requests/respond", reply.to_payload())

    async def list_methods(self) -> list[str]:
        body = await self._request("GET", "/meta/methods")
        return [item for item in body.get("data", []) if isinstance(item, str)]

    async def list_notification_methods(self) -> list[str]:
        body = await self._request("GET", "/meta/notifications")
        return [item for item in body.get("data", []) if isinstance(item, str)]


NotificationCallback = Callable[[RpcNotification], None]


def parse_notification_data(data: str) -> RpcNotification | None:
    """Decode one SSE ``data:`` payload into a notification."""
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        logger.debug("Ignoring malformed event data: %s", data[:200])
        return None
    if not isinstance(payload, dict) or not isinstance(payload.get("method"), str):
        return None
    at_iso = payload.get("atIso")
    return RpcNotification(
        method=payload["method"],
        params=payload.get("params"),
        at_iso=at_iso if isinstance(at_iso, str) else "",
    )


class NotificationStream:
    """Consumes the bridge's ``/events`` stream and reconnects when it drops."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        client: httpx.AsyncClient | None = None,
        reconnect_delay: float = 1.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.reconnect_delay = reconnect_delay
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(30.0, read=None))
        return self._client

    async def iter_notifications(self) -> AsyncIterator[RpcNotification]:
        """Yield notifications from one connection until it closes."""
        client = self._get_client()
        url = f"{self.base_url}{API_PREFIX}/events"

        async with client.stream("GET", url) as response:
            response.raise_for_status()

            buffer = ""
            current_event = ""
            data_lines: list[str] = []

            async for chunk in response.aiter_text():
                buffer += chunk

                while "\n" in buffer:
                    line, buffer = buffer.split("\n", 1)
                    line = line.rstrip("\r")

                    if line.startswith(":"):
                        # Keep-alive comment
                        continue
                    if line.startswith("event:"):
                        current_event = line[6:].strip()
                    elif line.startswith("data:"):
                        data_lines.append(line[5:].strip())
                    elif line == "":
                        if data_lines and current_event in ("", "message"):
                            notification = parse_notification_data("\n".join(data_lines))
                            if notification is not None:
                                yield notification
                        current_event = ""
                        data_lines = []

    def subscribe(self, callback: NotificationCallback) -> Callable[[], None]:
        """Deliver notifications to ``callback`` until the returned stop is called."""
        task = asyncio.ensure_future(self._run(callback))

        def stop() -> None:
            if not task.done():
                task.cancel()

        return stop

    async def _run(self, callback: NotificationCallback) -> None:
        while True:
            try:
                async for notification in self.iter_notifications():
                    try:
                        callback(notification)
                    except Exception:
                        logger.warning(
                            "Notification handler failed for %s", notification.method, exc_info=True
                        )
                logger.debug("Event stream ended, reconnecting")
            except asyncio.CancelledError:
                raise
            except httpx.HTTPError as exc:
                logger.debug("Event stream error: %s", exc)
            await asyncio.sleep(self.reconnect_delay)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
