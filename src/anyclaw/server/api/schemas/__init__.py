"""Pydantic schemas for the bridge API."""

from .bridge import (
    ErrorResponse,
    MethodListResponse,
    OkResponse,
    PendingServerRequestList,
    PendingServerRequestModel,
    RpcResponse,
)
from .health import HealthResponse, StatusResponse

__all__ = [
    # Health
    "HealthResponse",
    "StatusResponse",
    # Bridge
    "ErrorResponse",
    "MethodListResponse",
    "OkResponse",
    "PendingServerRequestList",
    "PendingServerRequestModel",
    "RpcResponse",
]
