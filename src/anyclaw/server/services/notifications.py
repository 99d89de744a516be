"""Notification fan-out from the app-server to connected subscribers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class Notification:
    """A message from the app-server that expects no reply."""

    method: str
    params: Any = None
    received_at_iso: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {"method": self.method, "params": self.params}


NotificationListener = Callable[[Notification], None]


class NotificationHub:
    """Delivers every notification to the listeners subscribed at emit time.

    Delivery is synchronous and in emit order. Nothing is buffered, so a
    listener added after a notification fired never sees it.
    """

    def __init__(self):
        self._listeners: list[NotificationListener] = []

    def subscribe(self, listener: NotificationListener) -> Callable[[], None]:
        """Register a listener and return a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, notification: Notification) -> None:
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception:
                logger.warning(
                    "Notification listener failed for %s", notification.method, exc_info=True
                )

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners)
