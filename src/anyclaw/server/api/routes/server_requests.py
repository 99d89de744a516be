"""Endpoints for requests initiated by the app-server."""

from fastapi import APIRouter, Depends, Request

from anyclaw.server.api.request_body import read_json_body
from anyclaw.server.api.schemas import (
    OkResponse,
    PendingServerRequestList,
    PendingServerRequestModel,
)
from anyclaw.server.services import AppServerProcess
from anyclaw.server.state import get_app_server

router = APIRouter()

INVALID_REPLY_BODY = "Invalid response payload: expected object"


@router.post("/respond", response_model=OkResponse)
async def respond_to_server_request(
    request: Request,
    app_server: AppServerProcess = Depends(get_app_server),
) -> OkResponse:
    """Reply to a pending server request with ``{id, result}`` or ``{id, error}``.

    Each request accepts exactly one reply; a second reply for the same id
    gets a 404.
    """
    payload = await read_json_body(request, INVALID_REPLY_BODY)
    await app_server.respond_to_server_request(payload)
    return OkResponse()


@router.get("/pending", response_model=PendingServerRequestList)
async def list_pending_server_requests(
    app_server: AppServerProcess = Depends(get_app_server),
) -> PendingServerRequestList:
    """List server requests still waiting for a reply, oldest first."""
    return PendingServerRequestList(
        data=[
            PendingServerRequestModel(
                id=pending.id,
                method=pending.method,
                params=pending.params,
                received_at_iso=pending.received_at_iso,
            )
            for pending in app_server.list_pending_server_requests()
        ]
    )
