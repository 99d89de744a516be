"""Server-Sent Events stream of app-server notifications."""

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from anyclaw.server.services import AppServerProcess
from anyclaw.server.services.event_stream import stream_notifications
from anyclaw.server.state import get_app_server

router = APIRouter()


@router.get("/events")
async def stream_events(app_server: AppServerProcess = Depends(get_app_server)):
    """Stream notifications as SSE.

    The first frame is ``event: ready``. Each notification follows as a
    ``data:`` frame carrying ``{method, params, atIso}``, with ``: ping``
    comments whenever the stream has been idle for the keep-alive interval.
    The stream does not start the app-server; use ``/rpc`` for that.
    """
    return StreamingResponse(
        stream_notifications(app_server.hub, app_server.settings.keepalive_seconds),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache, no-transform",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
