"""Forwarding of arbitrary JSON-RPC calls to the app-server."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from anyclaw.server.api.request_body import read_json_body
from anyclaw.server.api.schemas import RpcResponse
from anyclaw.server.services import AppServerProcess
from anyclaw.server.state import get_app_server

logger = logging.getLogger(__name__)

router = APIRouter()

INVALID_RPC_BODY = "Invalid body: expected { method, params? }"


@router.post("/rpc", response_model=RpcResponse)
async def call_rpc(
    request: Request,
    app_server: AppServerProcess = Depends(get_app_server),
) -> RpcResponse:
    """Call ``method`` on the app-server and return its result.

    App-server failures (error responses, exits, spawn failures) become a
    502 with ``{"error": message}``.
    """
    body = await read_json_body(request, INVALID_RPC_BODY)
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail=INVALID_RPC_BODY)
    method = body.get("method")
    if not isinstance(method, str) or not method:
        raise HTTPException(status_code=400, detail=INVALID_RPC_BODY)

    logger.debug("Forwarding %s", method)
    result = await app_server.rpc(method, body.get("params"))
    return RpcResponse(result=result)
