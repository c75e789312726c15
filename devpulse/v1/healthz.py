from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from devpulse.config.logging import get_logger
from devpulse.config.settings import Settings, SettingsDep
from devpulse.infra.database import get_session
from devpulse.v1.core.exceptions import create_success_response
from devpulse.v1.jobs.service import JobQueueService

logger = get_logger(__name__)
router = APIRouter()


class DatabaseHealth(BaseModel):
    """Database health status."""

    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class QueueHealth(BaseModel):
    """Job queue health status."""

    queue_depth: int = 0
    processing: int = 0
    expired_leases: int = 0
    failed_last_hour: int = 0


class HealthResponse(BaseModel):
    """Health response with database and queue status."""

    ok: bool
    version: str
    environment: str
    timestamp: str
    database: DatabaseHealth
    queue: QueueHealth | None = None


@router.get("/healthz", response_model=dict)
async def health_check(
    settings: Settings = SettingsDep, session: AsyncSession = Depends(get_session)
):
    """Health check endpoint with database and queue status."""

    db_health = await _check_database_health(session)

    queue_health = None
    if db_health.connected:
        try:
            queue_health = await _check_queue_health(session, settings)
        except Exception as e:
            # Queue health failure doesn't fail overall health
            logger.warning("Queue health check failed", error=str(e))

    health = HealthResponse(
        ok=db_health.connected,
        version=settings.version,
        environment=settings.environment,
        timestamp=datetime.now(UTC).isoformat(),
        database=db_health,
        queue=queue_health,
    )

    return create_success_response(data=health.model_dump())


async def _check_database_health(session: AsyncSession) -> DatabaseHealth:
    """Check database connectivity and response time."""
    start_time = datetime.now(UTC)

    try:
        await session.execute(text("SELECT 1"))

        response_time_ms = (datetime.now(UTC) - start_time).total_seconds() * 1000
        return DatabaseHealth(
            connected=True, response_time_ms=round(response_time_ms, 2)
        )

    except Exception as e:
        await session.rollback()
        return DatabaseHealth(connected=False, error=str(e))


async def _check_queue_health(session: AsyncSession, settings: Settings) -> QueueHealth:
    """Check queue depth and jobs stuck past their lease."""
    service = JobQueueService(settings)
    stats = await service.queue_stats(session)
    expired_leases = await service.count_expired_leases(session)

    return QueueHealth(
        queue_depth=stats.queue_depth,
        processing=stats.processing,
        expired_leases=expired_leases,
        failed_last_hour=stats.failed_last_hour,
    )
