"""Health check endpoints."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, status
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from payroll_run_engine.api.dependencies import DbSession
from payroll_run_engine.config import get_settings
from payroll_run_engine.models import StatutoryBracketVersion

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    database: str
    engine_version: str
    country_code: str
    bracket_versions: int


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
)
async def health_check(db: DbSession) -> HealthResponse:
    """Check the database and that bracket tables exist for the default country.

    Without stored bracket tables every calculation fails, so the service
    reports itself degraded.
    """
    settings = get_settings()
    db_status = "unhealthy"
    bracket_versions = 0
    try:
        bracket_versions = (
            await db.execute(
                select(func.count())
                .select_from(StatutoryBracketVersion)
                .where(StatutoryBracketVersion.country_code == settings.default_country_code)
            )
        ).scalar_one()
        db_status = "healthy"
    except SQLAlchemyError:
        logger.exception("Database health check failed")

    healthy = db_status == "healthy" and bracket_versions > 0
    return HealthResponse(
        status="healthy" if healthy else "degraded",
        timestamp=datetime.now(timezone.utc),
        database=db_status,
        engine_version=settings.engine_version,
        country_code=settings.default_country_code,
        bracket_versions=bracket_versions,
    )


@router.get("/ready", status_code=status.HTTP_200_OK)
async def readiness_check() -> dict[str, str]:
    """Readiness check for container orchestration."""
    return {"status": "ready"}


@router.get("/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> dict[str, str]:
    """Liveness check for container orchestration."""
    return {"status": "alive"}
