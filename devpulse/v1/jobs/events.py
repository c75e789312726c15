"""
Lifecycle event sink for the job processor.

Events are appended to ``job_events`` and mirrored to the structured log.
Recording is best-effort: a failure to write an event never aborts job
processing.
"""

from typing import Any

import structlog
from fastapi.encoders import jsonable_encoder
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from devpulse.config.logging import get_logger
from devpulse.infra.database import utcnow
from devpulse.v1.jobs.models import Job, JobEvent, JobEventType


class JobEventLogger:
    """Records job lifecycle events in their own session."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        logger: structlog.BoundLogger | None = None,
    ):
        self.session_factory = session_factory
        self.logger = logger or get_logger(__name__)

    async def record(self, job: Job, event_type: JobEventType, **details: Any) -> None:
        event_type = JobEventType(event_type)
        try:
            event_details = jsonable_encoder(details)

            log_method = (
                self.logger.warning
                if event_type == JobEventType.FAILED
                else self.logger.info
            )
            log_method(
                f"job_{event_type.value}",
                id=str(job.id),
                job_id=job.job_id,
                job_type=job.job_type,
                **event_details,
            )

            async with self.session_factory() as session:
                session.add(
                    JobEvent(
                        job_pk=job.id,
                        job_id=job.job_id,
                        job_type=job.job_type,
                        event_type=event_type.value,
                        details=event_details,
                        recorded_at=utcnow(),
                    )
                )
                await session.commit()
        except Exception as e:
            self.logger.warning(
                "Failed to record job event",
                id=str(job.id),
                event_type=event_type.value,
                error=str(e),
            )

    async def recent_events(
        self, session: AsyncSession, job_pk=None, limit: int = 50
    ) -> list[JobEvent]:
        query = select(JobEvent).order_by(JobEvent.recorded_at.desc()).limit(limit)
        if job_pk is not None:
            query = query.where(JobEvent.job_pk == job_pk)
        result = await session.execute(query)
        return list(result.scalars().all())

    async def recent_metrics(self, session: AsyncSession, limit: int = 20) -> dict[str, Any]:
        """Success rate over the most recent terminal events."""
        result = await session.execute(
            select(JobEvent.event_type)
            .where(
                JobEvent.event_type.in_(
                    [JobEventType.COMPLETED.value, JobEventType.FAILED.value]
                )
            )
            .order_by(JobEvent.recorded_at.desc())
            .limit(limit)
        )
        event_types = list(result.scalars().all())

        successes = event_types.count(JobEventType.COMPLETED.value)
        failures = event_types.count(JobEventType.FAILED.value)
        total = successes + failures
        rate = round(successes / total * 100, 1) if total else 100.0

        return {
            "recent_successes": successes,
            "recent_failures": failures,
            "recent_success_rate": rate,
        }
