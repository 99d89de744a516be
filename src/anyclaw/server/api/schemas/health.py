"""Health and status schemas."""

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str = Field(description="Health status (healthy/unhealthy)")
    version: str = Field(description="Server version")
    uptime_seconds: float = Field(description="Server uptime in seconds")


class StatusResponse(BaseModel):
    """Response model for status endpoint."""

    version: str = Field(description="Server version")
    status: str = Field(default="running", description="Server status")
    uptime_seconds: float = Field(description="Server uptime in seconds")
    app_server_running: bool = Field(description="Whether the codex app-server subprocess is alive")
    app_server_pid: int | None = Field(default=None, description="PID of the codex app-server")
    codex_bin: str = Field(description="Executable used to launch the app-server")
    pending_calls: int = Field(default=0, description="Calls waiting for an app-server response")
    pending_server_requests: int = Field(
        default=0, description="App-server requests waiting for a client reply"
    )
