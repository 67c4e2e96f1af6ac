"""Health check endpoints."""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter

from deepdive.cache.client import valkey_healthcheck
from deepdive.core.config import settings
from deepdive.core.logging import get_logger
from deepdive.database.connection import db_healthcheck
from deepdive.schemas.common import HealthResponse


router = APIRouter(prefix="/health")

logger = get_logger("health")


@router.get(
    "",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health status of the API and its dependencies.",
)
async def health_check() -> HealthResponse:
    """
    Perform health check on API and dependencies.

    The run lock degrades to item claims when Valkey is down, so a missing
    cache reports ``degraded`` rather than ``unhealthy``.
    """
    checks = {
        "database": await db_healthcheck(),
        "cache": await valkey_healthcheck(),
    }

    if all(checks.values()):
        status = "healthy"
    elif checks.get("database", False):
        status = "degraded"
    else:
        status = "unhealthy"

    return HealthResponse(
        status=status,
        version=settings.app_version,
        timestamp=datetime.now(UTC),
        checks=checks,
    )


@router.get(
    "/live",
    summary="Liveness check",
    description="Check if the API process is alive.",
)
async def liveness_check() -> dict:
    """Liveness probe; never touches dependencies."""
    return {"status": "alive"}
