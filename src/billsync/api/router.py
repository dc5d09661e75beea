"""Root API router with health endpoints and module mounting."""

from typing import Any

import structlog
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from billsync import __version__
from billsync.api.dependencies import DBSession
from billsync.config import settings
from billsync.modules import discover_modules


class HealthResponse(BaseModel):
    """Health check response schema."""

    status: str


class ReadinessResponse(BaseModel):
    """Readiness check response schema."""

    status: str
    checks: dict[str, str]


logger = structlog.get_logger()

api_router = APIRouter()

# Health endpoints sit outside /api/v1
health_router = APIRouter(tags=["health"])


@health_router.get(
    "/health/live",
    response_model=HealthResponse,
    summary="Liveness probe",
    description="Returns 200 if the process is running.",
)
async def liveness() -> HealthResponse:
    """Liveness probe endpoint."""
    return HealthResponse(status="alive")


async def _database_check(db: AsyncSession) -> str:
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning("readiness_database_failed", error=str(e))
        return "unavailable"
    return "ok"


def _webhook_secret_check() -> str:
    # Without the secret every delivery is refused, so Stripe would retry forever.
    return "ok" if settings.stripe_webhook_secret else "not configured"


def _stripe_mode() -> str:
    key = settings.stripe_secret_key
    if key.startswith(("sk_live_", "rk_live_")):
        return "live"
    if key:
        return "test"
    return "unconfigured"


@health_router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    summary="Readiness probe",
    description="Checks database connectivity and that webhooks can be verified.",
)
async def readiness(db: DBSession) -> JSONResponse:
    """Report whether the service can reconcile webhook deliveries."""
    checks = {
        "database": await _database_check(db),
        "stripe_webhook_secret": _webhook_secret_check(),
    }
    ready = all(v == "ok" for v in checks.values())
    body = ReadinessResponse(status="ready" if ready else "degraded", checks=checks)

    return JSONResponse(
        status_code=(
            status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE
        ),
        content=body.model_dump(),
    )


@health_router.get(
    "/info",
    summary="Application info",
    description="Returns application metadata and the Stripe mode in use.",
)
async def info() -> dict[str, Any]:
    return {
        "app": settings.app_name,
        "version": __version__,
        "environment": settings.environment,
        "stripe_mode": _stripe_mode(),
    }


# Create versioned API router
v1_router = APIRouter(prefix="/api/v1")

# Mount discovered module routers
for module_router in discover_modules():
    v1_router.include_router(module_router)

# Include routers in main api_router
api_router.include_router(health_router)
api_router.include_router(v1_router)
