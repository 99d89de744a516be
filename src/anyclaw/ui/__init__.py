"""Client-side state engine for AnyClaw front-ends."""

from .client import BridgeClient, BridgeRequestError, NotificationStream
from .desktop_state import DesktopState
from .models import RpcNotification, ServerRequestReply, UiMessage, UiProjectGroup, UiThread
from .preferences import UiPreferences
from .sync import ResyncScheduler

__all__ = [
    "BridgeClient",
    "BridgeRequestError",
    "DesktopState",
    "NotificationStream",
    "ResyncScheduler",
    "RpcNotification",
    "ServerRequestReply",
    "UiMessage",
    "UiPreferences",
    "UiProjectGroup",
    "UiThread",
]
