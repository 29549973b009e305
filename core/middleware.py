"""
Application Middleware for the TubeStream API.

Cross-cutting concerns that run on every request before and after the
routers.

Key Middleware Components:
- `CorrelationMiddleware`: Assigns a correlation ID to every request (or
  reuses ``X-Correlation-ID`` / ``X-Request-ID``), stores it in the logging
  context and echoes it on the response.
- `ErrorHandlingMiddleware`: Last-resort handler. Typed `TubeStreamError`s
  that escape the routers are rendered with their status code; anything else
  becomes an opaque 500 and is logged with its traceback.
- `PerformanceMiddleware`: Logs request start and completion, adds
  ``X-Process-Time`` and warns about slow requests.
- `SecurityHeadersMiddleware`: Standard hardening headers on every response.
- `RequestValidationMiddleware`: Rejects bodies larger than the upload cap and
  bodies with a content type the API does not speak, before they are read.

Ordering (outermost first): correlation, error handling, performance,
security headers, request validation, sessions, CORS.
"""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .exceptions import (
    PayloadTooLargeError,
    TubeStreamError,
    error_payload,
    public_message,
)
from .logging_config import get_logger, set_correlation_id

logger = get_logger("core.middleware")

SLOW_REQUEST_SECONDS = 1.0

# Multipart framing on top of the largest accepted file
UPLOAD_OVERHEAD_BYTES = 1024 * 1024

ALLOWED_BODY_TYPES = (
    "application/json",
    "application/x-www-form-urlencoded",
    "multipart/form-data",
)


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Middleware to add correlation IDs to requests"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = (
            request.headers.get("X-Correlation-ID")
            or request.headers.get("X-Request-ID")
            or str(uuid.uuid4())
        )
        set_correlation_id(correlation_id)
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Render anything the routers did not handle"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)

        except TubeStreamError as e:
            logger.error(
                f"Application error: {e.message}",
                extra={
                    "error_type": type(e).__name__,
                    "error_code": e.error_code,
                    "path": request.url.path,
                    "method": request.method,
                },
            )
            return JSONResponse(
                status_code=e.status_code,
                content=error_payload(
                    type(e).__name__,
                    e.error_code,
                    public_message(e),
                    getattr(request.state, "correlation_id", None),
                ),
                headers=e.headers,
            )

        except Exception as e:
            logger.error(
                f"Unexpected error: {str(e)}",
                extra={
                    "error_type": type(e).__name__,
                    "path": request.url.path,
                    "method": request.method,
                },
                exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content=error_payload(
                    "InternalServerError",
                    "INTERNAL_ERROR",
                    "An unexpected error occurred",
                    getattr(request.state, "correlation_id", None),
                ),
            )


class PerformanceMiddleware(BaseHTTPMiddleware):
    """Request timing and access logging"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        logger.debug(
            f"Request started: {request.method} {request.url.path}",
            extra={
                "method": request.method,
                "path": request.url.path,
                "client_ip": request.client.host if request.client else None,
            },
        )

        response = await call_next(request)

        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))

        logger.info(
            f"Request completed: {request.method} {request.url.path} - {response.status_code}",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "process_time_ms": round(process_time * 1000, 2),
            },
        )

        if process_time > SLOW_REQUEST_SECONDS:
            logger.warning(
                f"Slow request detected: {request.method} {request.url.path}",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "process_time_ms": round(process_time * 1000, 2),
                    "threshold_exceeded": True,
                },
            )

        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Security headers middleware"""

    def __init__(self, app: ASGIApp, https_only: bool = False):
        super().__init__(app)
        self.security_headers = {
            "X-Content-Type-Options": "nosniff",
            "X-Frame-Options": "DENY",
            "Referrer-Policy": "strict-origin-when-cross-origin",
        }
        if https_only:
            self.security_headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        for header, value in self.security_headers.items():
            response.headers.setdefault(header, value)
        return response


class RequestValidationMiddleware(BaseHTTPMiddleware):
    """Reject oversized or unsupported request bodies early"""

    def __init__(self, app: ASGIApp, max_upload_bytes: int):
        super().__init__(app)
        self.max_upload_bytes = max_upload_bytes
        self.max_request_size = max_upload_bytes + UPLOAD_OVERHEAD_BYTES

    def _reject(self, request: Request, error: TubeStreamError) -> JSONResponse:
        return JSONResponse(
            status_code=error.status_code,
            content=error_payload(
                type(error).__name__,
                error.error_code,
                error.message,
                getattr(request.state, "correlation_id", None),
            ),
        )

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        content_length = request.headers.get("content-length")
        size = int(content_length) if content_length and content_length.isdigit() else 0

        if size > self.max_request_size:
            logger.warning(
                f"Request too large: {size} bytes",
                extra={
                    "content_length": size,
                    "max_size": self.max_request_size,
                    "path": request.url.path,
                },
            )
            return self._reject(request, PayloadTooLargeError(size, self.max_upload_bytes))

        has_body = size > 0 or "transfer-encoding" in request.headers
        if request.method in ("POST", "PUT", "PATCH", "DELETE") and has_body:
            content_type = request.headers.get("content-type", "")
            if not any(allowed in content_type for allowed in ALLOWED_BODY_TYPES):
                logger.warning(
                    f"Invalid content type: {content_type}",
                    extra={
                        "content_type": content_type,
                        "path": request.url.path,
                        "method": request.method,
                    },
                )
                return self._reject(
                    request,
                    TubeStreamError(
                        f"Content type '{content_type}' is not supported",
                        "UNSUPPORTED_MEDIA_TYPE",
                    ),
                )

        return await call_next(request)
