"""Health check endpoints."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import redis.asyncio as redis
from fastapi import APIRouter, HTTPException, status
from sqlalchemy import text

from sectorscope.core.config import settings
from sectorscope.core.logging import get_logger
from sectorscope.database.connection import get_session
from sectorscope.schemas.common import HealthChecks, HealthResponse


router = APIRouter(prefix="/health")

logger = get_logger("health")


async def db_healthcheck() -> bool:
    """Check PostgreSQL database health."""
    try:
        async with get_session() as session:
            await session.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database healthcheck failed: {e}")
        return False


async def broker_healthcheck() -> bool:
    """Ping the Valkey broker that carries the job queues."""
    client = redis.from_url(settings.valkey_url, socket_connect_timeout=5.0)
    try:
        return bool(await asyncio.wait_for(client.ping(), timeout=5.0))
    except Exception as e:
        logger.warning(f"Broker healthcheck failed: {e}")
        return False
    finally:
        await client.aclose()


@router.get(
    "",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health status of the API and its dependencies.",
)
async def health_check() -> HealthResponse:
    checks = {
        "database": await db_healthcheck(),
        "broker": await broker_healthcheck(),
    }

    if all(checks.values()):
        status_text = "healthy"
    elif checks["database"]:
        status_text = "degraded"  # jobs cannot be queued, reads still work
    else:
        status_text = "unhealthy"

    return HealthResponse(
        status=status_text,
        version=settings.app_version,
        timestamp=datetime.now(UTC),
        checks=HealthChecks(**checks),
    )


@router.get("/ready", summary="Readiness check")
async def readiness_check() -> dict:
    """Returns 200 once the database answers."""
    if not await db_healthcheck():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not ready",
        )
    return {"status": "ready"}


@router.get("/live", summary="Liveness check")
async def liveness_check() -> dict:
    return {"status": "alive"}
