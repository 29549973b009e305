"""
Health and Monitoring Router.

Public, unauthenticated endpoints for uptime checks and operators.

Endpoints Provided:
- `/healthcheck`: Lightweight liveness check.
- `/monitoring/ping`: Connectivity check.
- `/monitoring/detailed`: Component status for the repository, object storage
  and the active authentication strategy. A failing repository marks the
  service "unhealthy"; unconfigured object storage only marks it "degraded"
  since browsing still works without uploads.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends

from core.context import AppContext
from core.database import get_database_info
from core.logging_config import get_logger
from repository.sql import SQLRepository

from .dependencies import get_context

logger = get_logger("api.health")

SERVICE_NAME = "TubeStream API"
VERSION = "1.0.0"

health_router = APIRouter(tags=["Health & Monitoring"])
monitoring_router = APIRouter(prefix="/monitoring", tags=["Health & Monitoring"])


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@health_router.get("/healthcheck")
async def health_check() -> Dict[str, Any]:
    """
    Basic health check endpoint (no authentication required)

    Returns:
        Dict with status, timestamp, and version info
    """
    logger.debug("Health check requested")
    return {
        "status": "healthy",
        "timestamp": _now(),
        "version": VERSION,
        "service": SERVICE_NAME,
    }


@monitoring_router.get("/ping")
async def ping() -> Dict[str, str]:
    """Simple ping endpoint for connectivity testing"""
    return {"message": "pong", "timestamp": _now(), "version": VERSION}


@monitoring_router.get("/detailed")
async def detailed_health_check(context: AppContext = Depends(get_context)) -> Dict[str, Any]:
    """Detailed health check with component status"""
    logger.info("Detailed health check requested")

    health_status: Dict[str, Any] = {
        "status": "healthy",
        "timestamp": _now(),
        "version": VERSION,
        "service": SERVICE_NAME,
        "environment": context.settings.environment,
        "components": {},
    }

    repository = context.repository
    repository_healthy = await repository.ping()
    repository_status: Dict[str, Any] = {
        "status": "healthy" if repository_healthy else "unhealthy",
        "backend": type(repository).__name__,
    }
    if isinstance(repository, SQLRepository):
        repository_status["info"] = await get_database_info(repository.engine)
    health_status["components"]["repository"] = repository_status
    if not repository_healthy:
        health_status["status"] = "unhealthy"

    storage = context.object_storage
    health_status["components"]["object_storage"] = {
        "status": "healthy" if storage.is_configured else "not_configured",
        "provider": storage.provider_name,
    }
    if not storage.is_configured and health_status["status"] == "healthy":
        health_status["status"] = "degraded"

    health_status["components"]["auth"] = context.auth.describe()
    return health_status
