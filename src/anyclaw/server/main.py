"""FastAPI application factory for the AnyClaw bridge."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .api.routes import events, health, meta, rpc, server_requests
from .services import (
    AppServerError,
    AppServerProcess,
    InvalidServerReplyError,
    MethodCatalog,
    MethodCatalogError,
    NoPendingServerRequestError,
)
from .state import init_start_time
from anyclaw.util.config import BridgeSettings

logger = logging.getLogger(__name__)

API_PREFIX = "/codex-api"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan context manager."""
    init_start_time()

    yield

    # Shutdown: stop the app-server and fail anything still waiting on it
    await app.state.app_server.dispose()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def register_exception_handlers(app: FastAPI) -> None:
    """Translate bridge errors into ``{"error": message}`` envelopes."""

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(400, "Invalid request body")

    @app.exception_handler(InvalidServerReplyError)
    async def invalid_reply(request: Request, exc: InvalidServerReplyError) -> JSONResponse:
        return _error(400, str(exc))

    @app.exception_handler(NoPendingServerRequestError)
    async def unknown_server_request(
        request: Request, exc: NoPendingServerRequestError
    ) -> JSONResponse:
        return _error(404, str(exc))

    @app.exception_handler(AppServerError)
    async def app_server_error(request: Request, exc: AppServerError) -> JSONResponse:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return _error(502, str(exc) or "Unknown bridge error")

    @app.exception_handler(MethodCatalogError)
    async def catalog_error(request: Request, exc: MethodCatalogError) -> JSONResponse:
        logger.warning("Method catalog unavailable: %s", exc)
        return _error(502, str(exc) or "Unknown bridge error")


def create_app(
    title: str = "AnyClaw Bridge",
    debug: bool = False,
    cors_origins: list[str] | None = None,
    settings: BridgeSettings | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        title: Application title for OpenAPI docs
        debug: Enable debug mode
        cors_origins: List of allowed CORS origins (None = allow all)
        settings: Bridge settings (None = resolve from the environment)

    Returns:
        Configured FastAPI application
    """
    settings = settings or BridgeSettings.resolve()

    app = FastAPI(
        title=title,
        description="HTTP and SSE bridge to a codex app-server subprocess",
        version=__version__,
        debug=debug,
        lifespan=lifespan,
    )

    # One app-server per application instance
    app.state.settings = settings
    app.state.app_server = AppServerProcess(settings)
    app.state.method_catalog = MethodCatalog(settings)

    if cors_origins is None:
        cors_origins = ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["Health"])
    app.include_router(rpc.router, prefix=API_PREFIX, tags=["RPC"])
    app.include_router(server_requests.router, prefix=f"{API_PREFIX}/server-requests", tags=["Server Requests"])
    app.include_router(events.router, prefix=API_PREFIX, tags=["Events"])
    app.include_router(meta.router, prefix=f"{API_PREFIX}/meta", tags=["Meta"])

    return app
