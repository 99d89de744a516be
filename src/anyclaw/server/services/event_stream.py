"""Server-Sent Events rendering of the notification hub."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator

from .notifications import Notification, NotificationHub, utc_now_iso

logger = logging.getLogger(__name__)

DEFAULT_KEEPALIVE_SECONDS = 15.0
READY_FRAME = 'event: ready\ndata: {"ok": true}\n\n'
PING_FRAME = ": ping\n\n"


def format_notification_frame(notification: Notification, at_iso: str | None = None) -> str:
    """Format a notification as an SSE data frame."""
    payload: dict[str, Any] = {
        "method": notification.method,
        "params": notification.params,
        "atIso": at_iso or utc_now_iso(),
    }
    return f"data: {json.dumps(payload)}\n\n"


async def stream_notifications(
    hub: NotificationHub,
    keepalive_interval: float = DEFAULT_KEEPALIVE_SECONDS,
) -> AsyncIterator[str]:
    """Yield SSE frames for every notification emitted while the stream is open.

    The subscription is taken before the ready frame is yielded, so nothing
    emitted after the client sees ``ready`` is lost. Closing the generator
    (client disconnect) releases the subscription.
    """
    queue: asyncio.Queue[Notification] = asyncio.Queue()
    unsubscribe = hub.subscribe(queue.put_nowait)
    logger.debug("Event stream opened (%d subscribers)", hub.subscriber_count)

    try:
        yield READY_FRAME
        while True:
            try:
                notification = await asyncio.wait_for(queue.get(), timeout=keepalive_interval)
            except asyncio.TimeoutError:
                yield PING_FRAME
                continue
            yield format_notification_frame(notification)
    finally:
        unsubscribe()
        logger.debug("Event stream closed (%d subscribers)", hub.subscriber_count)
