"""Error types raised by the app-server bridge."""

from __future__ import annotations

from typing import Any


class AppServerError(RuntimeError):
    """Base error for app-server bridge failures."""


class AppServerNotRunningError(AppServerError):
    """Raised when writing to a subprocess that is not running."""

    def __init__(self, message: str = "codex app-server is not running") -> None:
        super().__init__(message)


class AppServerStoppedError(AppServerError):
    """Raised for calls that were outstanding when the bridge was disposed."""

    def __init__(self, message: str = "codex app-server stopped") -> None:
        super().__init__(message)


class AppServerExitedError(AppServerError):
    """Raised for calls that were outstanding when the subprocess died on its own."""

    def __init__(
        self,
        message: str = "codex app-server exited unexpectedly",
        returncode: int | None = None,
    ) -> None:
        super().__init__(message)
        self.returncode = returncode


class RpcResponseError(AppServerError):
    """Raised when the app-server answers a call with an error payload."""

    def __init__(
        self,
        message: str,
        *,
        method: str | None = None,
        code: int | None = None,
        data: Any = None,
    ) -> None:
        super().__init__(message)
        self.method = method
        self.code = code
        self.data = data


class InvalidServerReplyError(ValueError):
    """Raised when a reply to a server request is malformed."""


class NoPendingServerRequestError(KeyError):
    """Raised when replying to a server request that is not pending."""

    def __init__(self, request_id: int) -> None:
        super().__init__(request_id)
        self.request_id = request_id

    def __str__(self) -> str:
        return f"No pending server request found for id {self.request_id}"


class MethodCatalogError(RuntimeError):
    """Raised when the JSON schema for the method catalog cannot be generated."""
