"""Health and status endpoints."""

from fastapi import APIRouter, Depends

from anyclaw.server import __version__
from anyclaw.server.api.schemas import HealthResponse, StatusResponse
from anyclaw.server.services import AppServerProcess
from anyclaw.server.state import get_app_server, get_uptime

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint.

    Returns server health status, version, and uptime.
    """
    return HealthResponse(
        status="healthy",
        version=__version__,
        uptime_seconds=get_uptime(),
    )


@router.get("/status", response_model=StatusResponse)
async def get_status(app_server: AppServerProcess = Depends(get_app_server)) -> StatusResponse:
    """Status endpoint reporting version and the app-server subprocess state."""
    return StatusResponse(
        version=__version__,
        status="running",
        uptime_seconds=get_uptime(),
        app_server_running=app_server.is_running,
        app_server_pid=app_server.pid,
        codex_bin=app_server.settings.codex_bin,
        pending_calls=app_server.pending_call_count,
        pending_server_requests=len(app_server.list_pending_server_requests()),
    )
