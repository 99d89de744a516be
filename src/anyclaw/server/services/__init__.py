"""Services for the AnyClaw bridge."""

from .app_server import AppServerProcess
from .errors import (
    AppServerError,
    AppServerExitedError,
    AppServerNotRunningError,
    AppServerStoppedError,
    InvalidServerReplyError,
    MethodCatalogError,
    NoPendingServerRequestError,
    RpcResponseError,
)
from .method_catalog import MethodCatalog
from .notifications import Notification, NotificationHub

__all__ = [
    "AppServerProcess",
    "AppServerError",
    "AppServerExitedError",
    "AppServerNotRunningError",
    "AppServerStoppedError",
    "InvalidServerReplyError",
    "MethodCatalog",
    "MethodCatalogError",
    "NoPendingServerRequestError",
    "Notification",
    "NotificationHub",
    "RpcResponseError",
]
