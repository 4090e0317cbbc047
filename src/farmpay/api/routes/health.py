"""Health check endpoints."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from farmpay.api.dependencies import DbEngine, FarmPayDep
from farmpay.database import ping

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    database: str
    pending_authorizations: int
    background_tasks: int


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
)
async def health_check(farmpay: FarmPayDep, engine: DbEngine) -> HealthResponse:
    """Check API and database health."""
    db_status = "in_memory"
    if engine is not None:
        try:
            await ping(engine)
            db_status = "healthy"
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Database ping failed: %s", e)
            db_status = "unhealthy"

    return HealthResponse(
        status="degraded" if db_status == "unhealthy" else "healthy",
        timestamp=datetime.now(timezone.utc),
        database=db_status,
        pending_authorizations=farmpay.engine.pending_authorizations,
        background_tasks=farmpay.background_tasks,
    )


@router.get("/ready", status_code=status.HTTP_200_OK)
async def readiness_check() -> dict[str, str]:
    """Readiness check for container orchestration."""
    return {"status": "ready"}


@router.get("/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> dict[str, str]:
    """Liveness check for container orchestration."""
    return {"status": "alive"}
