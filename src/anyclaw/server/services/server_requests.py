"""Bookkeeping for requests initiated by the app-server."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .errors import NoPendingServerRequestError
from .notifications import utc_now_iso


@dataclass
class PendingServerRequest:
    """A request from the app-server that is waiting for a client reply."""

    id: int
    method: str
    params: Any = None
    received_at_iso: str = field(default_factory=utc_now_iso)

    @property
    def thread_id(self) -> str:
        """Thread scope of the request, or "" when params carry none."""
        if isinstance(self.params, dict):
            thread_id = self.params.get("threadId")
            if isinstance(thread_id, str) and thread_id:
                return thread_id
        return ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "method": self.method,
            "params": self.params,
            "receivedAtIso": self.received_at_iso,
        }


def is_server_request(message: dict[str, Any]) -> bool:
    """True for messages carrying both an integer id and a string method."""
    request_id = message.get("id")
    return (
        isinstance(request_id, int)
        and not isinstance(request_id, bool)
        and isinstance(message.get("method"), str)
    )


class ServerRequestRelay:
    """Holds server requests until exactly one reply resolves each of them."""

    def __init__(self):
        self._pending: dict[int, PendingServerRequest] = {}

    def register(self, request_id: int, method: str, params: Any = None) -> PendingServerRequest:
        request = PendingServerRequest(id=request_id, method=method, params=params)
        self._pending[request_id] = request
        return request

    def resolve(self, request_id: int) -> PendingServerRequest:
        """Remove and return the pending request.

        Raises:
            NoPendingServerRequestError: If the id was never received or was
                already replied to.
        """
        request = self._pending.pop(request_id, None)
        if request is None:
            raise NoPendingServerRequestError(request_id)
        return request

    def get(self, request_id: int) -> PendingServerRequest | None:
        return self._pending.get(request_id)

    def list(self) -> list[PendingServerRequest]:
        return list(self._pending.values())

    def clear(self) -> None:
        self._pending.clear()

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending
