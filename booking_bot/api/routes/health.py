"""
Health Check Endpoints

Liveness and readiness probes for monitoring and load balancers.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from booking_bot.config import settings
from booking_bot.infra.database import check_db_health
from booking_bot.infra.redis import check_redis_health

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

VERSION = "0.1.0"

# Track application start time for uptime calculation
_start_time: Optional[datetime] = None


def set_start_time() -> None:
    """Set application start time. Called once on startup."""
    global _start_time
    _start_time = datetime.now(timezone.utc)


def get_uptime_seconds() -> Optional[float]:
    """Get application uptime in seconds."""
    if _start_time is None:
        return None
    return (datetime.now(timezone.utc) - _start_time).total_seconds()


class HealthResponse(BaseModel):
    """Basic health check response."""
    status: str
    timestamp: datetime
    version: str
    environment: str
    uptime_seconds: Optional[float] = None
    engine: dict[str, str]


class ReadyResponse(BaseModel):
    """Readiness check response with dependency status."""
    status: str
    timestamp: datetime
    checks: dict[str, str]


async def _dependency_checks() -> dict[str, str]:
    """Database (SQL backend only) and Redis connectivity."""
    checks: dict[str, str] = {}

    if settings.store_backend == "sql":
        checks["database"] = "ok" if await check_db_health() else "failed"

    redis_ok = await check_redis_health()
    if redis_ok:
        checks["redis"] = "ok"
    else:
        # Sessions and offers fall back to process memory
        checks["redis"] = "degraded"

    return checks


@router.get(
    "",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
    description="Returns 200 if the application is running. Does not check dependencies.",
)
async def health() -> HealthResponse:
    """Basic health check. Use /health/ready for dependency checks."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version=VERSION,
        environment=settings.app_env,
        uptime_seconds=get_uptime_seconds(),
        engine={
            "store": settings.store_backend,
            "calendar_mode": settings.calendar_mode,
            "extraction_mode": settings.extraction_mode,
            "pending_store": settings.pending_store_backend,
        },
    )


@router.get(
    "/ready",
    response_model=ReadyResponse,
    summary="Readiness probe",
    description="Checks database and Redis connectivity. Returns 503 if the database is unavailable.",
    responses={
        200: {"description": "Ready (Redis may be degraded)"},
        503: {"description": "Database unavailable"},
    },
)
async def ready():
    """
    Readiness probe.

    Redis being down only degrades the service; the database being down
    makes it not ready.
    """
    checks = await _dependency_checks()
    all_ok = checks.get("database", "ok") == "ok"
    if not all_ok:
        logger.warning(f"Readiness check failed: {checks}")

    response = ReadyResponse(
        status="ready" if all_ok else "not_ready",
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )

    if not all_ok:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json"),
        )

    return response
