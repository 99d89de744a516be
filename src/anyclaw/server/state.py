"""Server state management.

The app-server owner and the method catalog live on ``app.state``; the
functions below hand them to route handlers as FastAPI dependencies.
"""

import time

from fastapi import Request

from anyclaw.server.services import AppServerProcess, MethodCatalog
from anyclaw.util.config import BridgeSettings

# Track server start time for uptime calculation
_start_time: float = 0.0


def init_start_time() -> None:
    """Initialize the server start time."""
    global _start_time
    _start_time = time.time()


def get_uptime() -> float:
    """Get server uptime in seconds."""
    if _start_time == 0.0:
        return 0.0
    return time.time() - _start_time


def get_app_server(request: Request) -> AppServerProcess:
    return request.app.state.app_server


def get_method_catalog(request: Request) -> MethodCatalog:
    return request.app.state.method_catalog


def get_settings(request: Request) -> BridgeSettings:
    return request.app.state.settings


def reset_state() -> None:
    """Reset all global state (for testing)."""
    global _start_time
    _start_time = 0.0
