"""Introspection of the app-server method surface."""

from fastapi import APIRouter, Depends

from anyclaw.server.api.schemas import MethodListResponse
from anyclaw.server.services import MethodCatalog
from anyclaw.server.state import get_method_catalog

router = APIRouter()


@router.get("/methods", response_model=MethodListResponse)
async def list_methods(catalog: MethodCatalog = Depends(get_method_catalog)) -> MethodListResponse:
    """Client request methods the app-server accepts."""
    return MethodListResponse(data=await catalog.list_methods())


@router.get("/notifications", response_model=MethodListResponse)
async def list_notification_methods(
    catalog: MethodCatalog = Depends(get_method_catalog),
) -> MethodListResponse:
    """Notification methods the app-server may emit."""
    return MethodListResponse(data=await catalog.list_notification_methods())
