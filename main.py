"""
TubeStream API - Main Application Entry Point.

Builds the FastAPI application for the TubeStream video-sharing backend:
users, channels, videos, spaces, subscriptions, comments, reactions, watch
history, playlists and notifications, plus media upload and streaming.

Key Responsibilities:
- `create_app`: Application factory. Reads `Settings` from the environment
  (unless given), builds the `AppContext`, installs the middleware stack and
  the exception handlers, and mounts every router.
- Lifespan: Initializes the repository on startup and disposes of it on
  shutdown.
- Error rendering: `TubeStreamError`s become the standard JSON error envelope
  with their mapped status; request validation failures are answered with 400.

Architecture:
There are no module-level singletons. Everything a request needs hangs off
``app.state.context``, so tests build isolated applications freely and the
process entry point uses uvicorn's factory mode.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api import (
    channels,
    comments,
    likes,
    notifications,
    playlists,
    spaces,
    subscriptions,
    uploads,
    users,
    videos,
    watch_history,
)
from api.auth_endpoints import build_strategy_router
from api.auth_endpoints import router as auth_router
from api.health_router import health_router, monitoring_router
from core.auth import OTP_PLACEHOLDER_WARNING
from core.config import Settings
from core.context import AppContext, build_context
from core.exceptions import TubeStreamError, error_payload, public_message
from core.logging_config import get_logger, setup_logging
from core.middleware import (
    CorrelationMiddleware,
    ErrorHandlingMiddleware,
    PerformanceMiddleware,
    RequestValidationMiddleware,
    SecurityHeadersMiddleware,
)
from core.sessions import ServerSessionMiddleware

logger = get_logger("api.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    context: AppContext = app.state.context
    await context.startup()
    logger.warning(OTP_PLACEHOLDER_WARNING)
    logger.info("Service startup completed")
    yield

    logger.info("Shutting down TubeStream API")
    await context.shutdown()


async def tubestream_error_handler(request: Request, exc: TubeStreamError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        f"{type(exc).__name__}: {exc.message}",
        extra={
            "error_code": exc.error_code,
            "path": request.url.path,
            "method": request.method,
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(
            type(exc).__name__,
            exc.error_code,
            public_message(exc),
            getattr(request.state, "correlation_id", None),
        ),
        headers=exc.headers,
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    payload = error_payload(
        "ValidationError",
        "VALIDATION_ERROR",
        "Invalid request data",
        getattr(request.state, "correlation_id", None),
    )
    payload["error"]["details"] = jsonable_encoder(exc.errors(), exclude={"ctx"})
    return JSONResponse(status_code=400, content=payload)


def create_app(
    settings: Optional[Settings] = None, context: Optional[AppContext] = None
) -> FastAPI:
    """Build a fully wired application"""
    if context is not None:
        settings = context.settings
    elif settings is None:
        settings = Settings.from_env()

    setup_logging(settings.environment, settings.log_level)
    if context is None:
        context = build_context(settings)

    app = FastAPI(
        title="TubeStream API",
        description="Video sharing backend: channels, videos, spaces and engagement",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.context = context

    app.add_exception_handler(TubeStreamError, tubestream_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # Added innermost first
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        ServerSessionMiddleware,
        store_getter=lambda: app.state.context.sessions,
        secret_key=settings.session_secret,
        cookie_name=settings.session_cookie_name,
        max_age=settings.session_ttl_seconds,
        https_only=settings.is_production,
    )
    app.add_middleware(
        RequestValidationMiddleware, max_upload_bytes=settings.max_upload_size_bytes
    )
    app.add_middleware(SecurityHeadersMiddleware, https_only=settings.is_production)
    app.add_middleware(PerformanceMiddleware)
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(CorrelationMiddleware)

    app.include_router(health_router)
    app.include_router(monitoring_router)

    app.include_router(auth_router)
    app.include_router(build_strategy_router(context.auth))

    app.include_router(users.router)
    app.include_router(channels.router)
    app.include_router(videos.router)
    app.include_router(likes.router)
    app.include_router(comments.router)
    app.include_router(uploads.router)
    app.include_router(spaces.router)
    app.include_router(subscriptions.router)
    app.include_router(watch_history.router)
    app.include_router(playlists.router)
    app.include_router(notifications.router)

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:create_app",
        factory=True,
        host="0.0.0.0",
        port=5000,
        log_level="info",
    )
