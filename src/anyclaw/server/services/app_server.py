"""Supervisor and JSON-RPC correlator for the ``codex app-server`` subprocess.

One :class:`AppServerProcess` owns one subprocess at a time together with the
map of outstanding calls and the pending server requests. The FastAPI app
constructs it once and hands it to request handlers through a dependency.
"""

from __future__ import annotations

import asyncio
import logging
import math
import os
import signal
from typing import Any

from anyclaw.util.config import BridgeSettings

from .errors import (
    AppServerExitedError,
    AppServerNotRunningError,
    AppServerStoppedError,
    InvalidServerReplyError,
    NoPendingServerRequestError,
    RpcResponseError,
)
from .framing import LineFramer, encode_message
from .notifications import Notification, NotificationHub, utc_now_iso
from .server_requests import PendingServerRequest, ServerRequestRelay, is_server_request

logger = logging.getLogger(__name__)

_READ_CHUNK_SIZE = 64 * 1024
DEFAULT_REJECT_CODE = -32000
DEFAULT_REJECT_MESSAGE = "Server request rejected by client"


def parse_server_reply(payload: Any) -> tuple[int, dict[str, Any]]:
    """Validate a client reply to a server request.

    Returns:
        Tuple of (request id, JSON-RPC response body without the id)

    Raises:
        InvalidServerReplyError: If the payload is not an object, has a
            non-integer id, or carries neither ``result`` nor ``error``.
    """
    if not isinstance(payload, dict):
        raise InvalidServerReplyError("Invalid response payload: expected object")

    request_id = payload.get("id")
    if not isinstance(request_id, int) or isinstance(request_id, bool):
        raise InvalidServerReplyError('Invalid response payload: "id" must be an integer')

    error = payload.get("error")
    if isinstance(error, dict):
        code = error.get("code")
        if isinstance(code, (int, float)) and not isinstance(code, bool) and math.isfinite(code):
            code = int(code)
        else:
            code = DEFAULT_REJECT_CODE
        message = error.get("message")
        message = message.strip() if isinstance(message, str) else ""
        return request_id, {"error": {"code": code, "message": message or DEFAULT_REJECT_MESSAGE}}

    if "result" not in payload:
        raise InvalidServerReplyError('Invalid response payload: expected "result" or "error"')

    result = payload["result"]
    return request_id, {"result": {} if result is None else result}


class AppServerProcess:
    """Owns the app-server subprocess, its pending calls and server requests."""

    def __init__(self, settings: BridgeSettings | None = None, hub: NotificationHub | None = None):
        self.settings = settings or BridgeSettings.resolve()
        self.hub = hub or NotificationHub()
        self.server_requests = ServerRequestRelay()

        self._framer = LineFramer()
        self._process: asyncio.subprocess.Process | None = None
        self._reader_task: asyncio.Task | None = None
        self._stderr_task: asyncio.Task | None = None
        self._init_task: asyncio.Task | None = None
        self._write_lock: asyncio.Lock | None = None

        self._pending: dict[int, asyncio.Future] = {}
        self._pending_methods: dict[int, str] = {}
        self._next_id = 1
        self._initialized = False
        self._stopping = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def is_initialized(self) -> bool:
        return self._initialized and self.is_running

    @property
    def pid(self) -> int | None:
        return self._process.pid if self.is_running else None

    @property
    def pending_call_count(self) -> int:
        return len(self._pending)

    def list_pending_server_requests(self) -> list[PendingServerRequest]:
        return self.server_requests.list()

    async def rpc(self, method: str, params: Any = None) -> Any:
        """Call an app-server method once the handshake has completed."""
        await self._ensure_initialized()
        return await self._call(method, params)

    async def respond_to_server_request(self, payload: Any) -> PendingServerRequest:
        """Send the client's reply to a pending server request.

        Raises:
            InvalidServerReplyError: If the payload is malformed.
            NoPendingServerRequestError: If the id is unknown or already answered.
        """
        request_id, body = parse_server_reply(payload)
        await self._ensure_initialized()

        request = self.server_requests.resolve(request_id)
        await self._write({"jsonrpc": "2.0", "id": request_id, **body})

        self.hub.emit(
            Notification(
                method="server/request/resolved",
                params={
                    "id": request.id,
                    "method": request.method,
                    "threadId": request.thread_id,
                    "mode": "manual",
                    "resolvedAtIso": utc_now_iso(),
                },
            )
        )
        return request

    async def dispose(self) -> None:
        """Fail outstanding calls and stop the subprocess.

        The process gets SIGTERM and, if still alive after the grace
        period, SIGKILL. A later call starts a fresh subprocess.
        """
        self._stopping = True
        process = self._process
        reader_task, stderr_task = self._reader_task, self._stderr_task
        self._reset_state(AppServerStoppedError())

        if process is None:
            return

        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()
        await self._terminate(process)

        for task in (reader_task, stderr_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def _ensure_initialized(self) -> None:
        if self.is_initialized:
            return
        task = self._init_task
        if task is None:
            task = asyncio.ensure_future(self._start_and_initialize())
            self._init_task = task
            task.add_done_callback(self._forget_init_task)
        # Callers that go away must not cancel the handshake for the others.
        await asyncio.shield(task)

    def _forget_init_task(self, task: asyncio.Task) -> None:
        if self._init_task is task:
            self._init_task = None
        if not task.cancelled() and task.exception() is not None:
            logger.warning("codex app-server initialization failed: %s", task.exception())

    async def _start_and_initialize(self) -> None:
        process = self._process
        if process is None or process.returncode is not None:
            process = await self._spawn()

        await self._call("initialize", {"clientInfo": self.settings.client_info})
        await self._write({"jsonrpc": "2.0", "method": "initialized"})

        if self._process is process:
            self._initialized = True
            logger.info("codex app-server initialized (pid %s)", process.pid)

    async def _spawn(self) -> asyncio.subprocess.Process:
        command = self.settings.app_server_command
        popen_kwargs: dict[str, Any] = {
            "stdin": asyncio.subprocess.PIPE,
            "stdout": asyncio.subprocess.PIPE,
            "stderr": asyncio.subprocess.PIPE,
        }
        if os.name != "nt":
            popen_kwargs["start_new_session"] = True

        self._stopping = False
        self._framer.reset()
        try:
            process = await asyncio.create_subprocess_exec(*command, **popen_kwargs)
        except OSError as exc:
            raise AppServerNotRunningError(f"Failed to start {command[0]}: {exc}") from exc

        self._process = process
        self._write_lock = asyncio.Lock()
        self._reader_task = asyncio.create_task(self._read_loop(process))
        self._stderr_task = asyncio.create_task(self._drain_stderr(process))
        logger.info("Started codex app-server: %s (pid %s)", " ".join(command), process.pid)
        return process

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def _call(self, method: str, params: Any = None) -> Any:
        if not self.is_running:
            raise AppServerNotRunningError()

        request_id = self._next_id
        self._next_id += 1
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        self._pending_methods[request_id] = method

        try:
            await self._write({"jsonrpc": "2.0", "id": request_id, "method": method, "params": params})
            return await future
        finally:
            if self._pending.get(request_id) is future:
                del self._pending[request_id]
                self._pending_methods.pop(request_id, None)

    async def _write(self, message: dict[str, Any]) -> None:
        process = self._process
        if process is None or process.returncode is not None or process.stdin is None:
            raise AppServerNotRunningError()
        if self._write_lock is None:
            self._write_lock = asyncio.Lock()

        async with self._write_lock:
            try:
                process.stdin.write(encode_message(message))
                await process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as exc:
                raise AppServerNotRunningError() from exc

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def _read_loop(self, process: asyncio.subprocess.Process) -> None:
        assert process.stdout is not None
        try:
            while True:
                chunk = await process.stdout.read(_READ_CHUNK_SIZE)
                if not chunk:
                    break
                for message in self._framer.feed(chunk):
                    self._handle_message(message)
            for message in self._framer.flush():
                self._handle_message(message)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.warning("codex app-server read loop failed", exc_info=True)

        returncode = await process.wait()
        self._handle_exit(process, returncode)

    async def _drain_stderr(self, process: asyncio.subprocess.Process) -> None:
        if process.stderr is None:
            return
        try:
            while True:
                line = await process.stderr.readline()
                if not line:
                    break
                text = line.decode("utf-8", errors="replace").rstrip()
                if text:
                    logger.debug("codex app-server stderr: %s", text)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.debug("Failed to read app-server stderr: %s", exc)

    def _handle_message(self, message: dict[str, Any]) -> None:
        has_id = "id" in message
        method = message.get("method")

        if has_id and is_server_request(message):
            self._handle_server_request(message)
        elif isinstance(method, str):
            # A method without an integer id cannot be answered, so it is a notification.
            self.hub.emit(Notification(method=method, params=message.get("params")))
        elif has_id:
            self._handle_response(message)
        else:
            logger.debug("Dropping message with neither id nor method")

    def _handle_response(self, message: dict[str, Any]) -> None:
        request_id = message.get("id")
        future = self._pending.pop(request_id, None) if isinstance(request_id, int) else None
        method = self._pending_methods.pop(request_id, None) if future is not None else None
        if future is None:
            logger.debug("Dropping response for unknown id %r", request_id)
            return
        if future.done():
            return

        error = message.get("error")
        if error is not None:
            if isinstance(error, dict):
                text = error.get("message") or "app-server error"
                code = error.get("code")
                data = error.get("data")
            else:
                text, code, data = str(error), None, None
            logger.debug("Call %s (%s) failed: %s", request_id, method, text)
            future.set_exception(RpcResponseError(str(text), method=method, code=code, data=data))
            return

        future.set_result(message.get("result"))

    def _handle_server_request(self, message: dict[str, Any]) -> None:
        request = self.server_requests.register(
            message["id"], message["method"], message.get("params")
        )
        logger.info("codex app-server request %s: %s", request.id, request.method)
        self.hub.emit(Notification(method="server/request", params=request.to_dict()))

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def _handle_exit(self, process: asyncio.subprocess.Process, returncode: int | None) -> None:
        if self._process is not process:
            return
        if self._stopping:
            error: Exception = AppServerStoppedError()
            logger.info("codex app-server stopped (code %s)", returncode)
        else:
            error = AppServerExitedError(returncode=returncode)
            logger.warning(
                "codex app-server exited unexpectedly (code %s, %d calls outstanding)",
                returncode,
                len(self._pending),
            )
        self._reset_state(error)

    def _reset_state(self, error: Exception) -> None:
        for future in list(self._pending.values()):
            if not future.done():
                future.set_exception(error)
        self._pending.clear()
        self._pending_methods.clear()
        self.server_requests.clear()
        self._framer.reset()
        self._initialized = False
        self._process = None
        self._reader_task = None
        self._stderr_task = None

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        self._send_signal(process, signal.SIGTERM)
        try:
            await asyncio.wait_for(process.wait(), timeout=self.settings.kill_grace_seconds)
            return
        except asyncio.TimeoutError:
            logger.warning(
                "codex app-server ignored SIGTERM for %.1fs, killing pid %s",
                self.settings.kill_grace_seconds,
                process.pid,
            )
        if os.name == "nt":
            process.kill()
        else:
            self._send_signal(process, signal.SIGKILL)
        await process.wait()

    @staticmethod
    def _send_signal(process: asyncio.subprocess.Process, sig: int) -> None:
        try:
            if os.name != "nt":
                # Spawned as a session leader, so the group id equals the pid.
                os.killpg(process.pid, sig)
            else:
                process.send_signal(sig)
        except ProcessLookupError:
            pass
