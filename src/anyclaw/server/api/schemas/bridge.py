"""Schemas for the app-server bridge endpoints.

Request bodies are validated narrowly in the route handlers because the
app-server method surface is open-ended; these models describe responses.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RpcResponse(BaseModel):
    """Result of a forwarded app-server call."""

    result: Any = Field(default=None, description="The app-server's result value")


class PendingServerRequestModel(BaseModel):
    """A request from the app-server awaiting a client reply."""

    model_config = ConfigDict(populate_by_name=True)

    id: int = Field(description="JSON-RPC id assigned by the app-server")
    method: str = Field(description="Requested method")
    params: Any = Field(default=None, description="Request parameters")
    received_at_iso: str = Field(alias="receivedAtIso", description="When the bridge received it")


class PendingServerRequestList(BaseModel):
    """Response model for listing pending server requests."""

    data: list[PendingServerRequestModel] = Field(default_factory=list)


class OkResponse(BaseModel):
    ok: bool = True


class MethodListResponse(BaseModel):
    """Sorted method names taken from the app-server's JSON schema."""

    data: list[str] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Error envelope returned by every bridge endpoint."""

    error: str = Field(description="Human-readable error message")
