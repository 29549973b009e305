"""
Custom Exception Classes for the TubeStream API.

Every failure the service knows how to describe is raised as a subclass of
`TubeStreamError`. Each carries a stable `error_code` and a `details`
dictionary; the HTTP layer maps the code to a status through
`to_http_exception` and the registered exception handlers, so repositories and
services never deal in HTTP status codes themselves.

Key Components:
- `TubeStreamError`: Root of the hierarchy (message, error_code, details).
- Client errors: `ValidationError`, `InvalidReferenceError`,
  `DuplicateEntryError`, `AuthenticationError`, `AuthorizationError`,
  `NotFoundError`, `PayloadTooLargeError`, `UnsupportedMediaTypeError`,
  `RangeNotSatisfiableError` (carries a `Content-Range` header).
- Deployment/infrastructure errors: `FeatureNotConfiguredError`,
  `ServiceUnavailableError`, `DatabaseConnectionError`.
- `to_http_exception`: Central error-code to status-code mapping.
- `error_payload`: Builds the JSON error envelope shared by handlers and
  middleware.

Infrastructure errors (status >= 500) are rendered with a generic message; the
original detail is only ever logged.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException


class TubeStreamError(Exception):
    """Base exception class for the TubeStream API"""

    def __init__(
        self,
        message: str,
        error_code: str = "TUBESTREAM_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return STATUS_CODE_MAP.get(self.error_code, 500)

    @property
    def headers(self) -> Dict[str, str]:
        return {}


class ValidationError(TubeStreamError):
    """Raised when input validation fails"""

    def __init__(self, field: str, value: Any, reason: str):
        super().__init__(
            reason,
            "VALIDATION_ERROR",
            {"field": field, "value": str(value), "reason": reason},
        )


class InvalidReferenceError(TubeStreamError):
    """Raised when a write names a related entity that does not exist"""

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            f"Referenced {entity} does not exist: {entity_id}",
            "INVALID_REFERENCE",
            {"entity": entity, "id": str(entity_id)},
        )


class DuplicateEntryError(TubeStreamError):
    """Raised when a unique field is already taken"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, "DUPLICATE_ENTRY", {"field": field} if field else {})


class AuthenticationError(TubeStreamError):
    """Raised when a protected route has no resolvable identity"""

    def __init__(self, reason: str = "Unauthorized"):
        super().__init__(reason, "AUTHENTICATION_ERROR", {"reason": reason})


class AuthorizationError(TubeStreamError):
    """Raised when the caller does not own the target resource"""

    def __init__(self, reason: str = "Forbidden"):
        super().__init__(reason, "FORBIDDEN", {"reason": reason})


class NotFoundError(TubeStreamError):
    """Raised when an entity cannot be found"""

    def __init__(self, entity: str, entity_id: Any = None):
        super().__init__(
            f"{entity} not found",
            "NOT_FOUND",
            {"entity": entity, "id": str(entity_id)} if entity_id is not None else {},
        )


class PayloadTooLargeError(TubeStreamError):
    """Raised when an upload exceeds the configured size cap"""

    def __init__(self, size: int, limit: int):
        super().__init__(
            f"File too large. Maximum size is {limit // (1024 * 1024)}MB",
            "PAYLOAD_TOO_LARGE",
            {"size": size, "limit": limit},
        )


class RangeNotSatisfiableError(TubeStreamError):
    """Raised when a byte range starts past the end of a stored object"""

    def __init__(self, header: str, size: Optional[int] = None):
        super().__init__(
            "Requested range not satisfiable",
            "RANGE_NOT_SATISFIABLE",
            {"range": header, "size": size},
        )

    @property
    def headers(self) -> Dict[str, str]:
        size = self.details.get("size")
        return {"Content-Range": f"bytes */{size}"} if size is not None else {}


class UnsupportedMediaTypeError(TubeStreamError):
    """Raised when an upload has a content type we do not accept"""

    def __init__(self, content_type: Optional[str], allowed: Any):
        super().__init__(
            f"Unsupported file type: {content_type}",
            "UNSUPPORTED_MEDIA_TYPE",
            {"content_type": content_type, "allowed": sorted(allowed)},
        )


class FeatureNotConfiguredError(TubeStreamError):
    """Raised when an endpoint needs a provider this deployment does not have"""

    def __init__(self, feature: str, hint: str):
        super().__init__(hint, "NOT_CONFIGURED", {"feature": feature})


class ServiceUnavailableError(TubeStreamError):
    """Raised when external services are unavailable"""

    def __init__(self, service: str, reason: str):
        super().__init__(
            f"Service '{service}' is unavailable: {reason}",
            "SERVICE_UNAVAILABLE",
            {"service": service, "reason": reason},
        )


class DatabaseConnectionError(TubeStreamError):
    """Raised when database operations fail"""

    def __init__(self, operation: str, reason: str):
        super().__init__(
            f"Database operation '{operation}' failed: {reason}",
            "DATABASE_ERROR",
            {"operation": operation, "reason": reason},
        )


STATUS_CODE_MAP = {
    "VALIDATION_ERROR": 400,
    "INVALID_REFERENCE": 400,
    "DUPLICATE_ENTRY": 400,
    "AUTHENTICATION_ERROR": 401,
    "FORBIDDEN": 403,
    "NOT_FOUND": 404,
    "PAYLOAD_TOO_LARGE": 413,
    "UNSUPPORTED_MEDIA_TYPE": 415,
    "RANGE_NOT_SATISFIABLE": 416,
    "DATABASE_ERROR": 500,
    "NOT_CONFIGURED": 501,
    "SERVICE_UNAVAILABLE": 503,
}


def public_message(exc: TubeStreamError) -> str:
    """Message safe to show a client; server-side failures stay opaque"""
    if exc.status_code >= 500 and exc.status_code not in (501, 503):
        return "An unexpected error occurred"
    return exc.message


def error_payload(
    error_type: str, code: str, message: Any, correlation_id: Optional[str] = None
) -> Dict[str, Any]:
    return {
        "error": {
            "type": error_type,
            "code": code,
            "message": message,
            "correlation_id": correlation_id,
        }
    }


def to_http_exception(exc: TubeStreamError) -> HTTPException:
    """Convert TubeStreamError to FastAPI HTTPException"""
    return HTTPException(
        status_code=exc.status_code,
        detail={
            "error_code": exc.error_code,
            "message": public_message(exc),
            "details": exc.details if exc.status_code < 500 else {},
        },
        headers=exc.headers or None,
    )
