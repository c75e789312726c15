"""
Queue API: enqueue, claim, transition, inspect and maintain job rows.
"""

import secrets
import string
import time
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from devpulse.config.logging import get_logger
from devpulse.config.settings import Settings
from devpulse.infra.database import utcnow
from devpulse.v1.core.exceptions import (
    InvalidJobTransitionError,
    JobNotFoundError,
    LeaseLostError,
    StoreError,
    ValidationError,
)
from devpulse.v1.jobs.models import (
    CLAIMABLE_STATUSES,
    TERMINAL_STATUSES,
    Job,
    JobStatus,
    JobType,
)
from devpulse.v1.jobs.schemas import JobCreate, QueueStats, ReclaimSummary

logger = get_logger(__name__)

_BASE36 = string.digits + string.ascii_lowercase
_CLAIMABLE = [s.value for s in CLAIMABLE_STATUSES]
_TERMINAL = [s.value for s in TERMINAL_STATUSES]


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_job_id() -> str:
    """Human-referenceable id: ``job_<base36 millis>_<8 random chars>``."""
    timestamp = _to_base36(int(time.time() * 1000))
    random_part = "".join(secrets.choice(_BASE36) for _ in range(8))
    return f"job_{timestamp}_{random_part}"


def normalize_job_types(job_types: Iterable[JobType | str] | None) -> list[str]:
    """Validate a job type filter; an empty or missing filter means all types."""
    if not job_types:
        return []
    normalized = []
    for job_type in job_types:
        try:
            normalized.append(JobType(job_type).value)
        except ValueError:
            raise ValidationError(
                f"Unknown job type: {job_type}", {"job_type": str(job_type)}
            )
    return normalized


class JobQueueService:
    """Service for managing the job queue.

    Every operation takes the caller's session and commits its own writes.
    Driver and connection failures surface as ``StoreError``.
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    @asynccontextmanager
    async def _store_operation(
        self, session: AsyncSession, operation: str
    ) -> AsyncIterator[None]:
        try:
            yield
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error("Job store operation failed", operation=operation, error=str(e))
            raise StoreError(operation, e) from e

    async def create_job(self, session: AsyncSession, job_create: JobCreate) -> Job:
        """Insert a new pending job with a freshly generated job_id."""
        now = utcnow()
        job = Job(
            id=uuid4(),
            job_id=generate_job_id(),
            job_type=JobType(job_create.job_type).value,
            status=JobStatus.PENDING.value,
            priority=job_create.priority,
            payload=job_create.payload,
            result=None,
            error_message=None,
            attempts=0,
            max_attempts=job_create.max_attempts,
            scheduled_at=job_create.scheduled_at,
            created_at=now,
            updated_at=now,
        )

        async with self._store_operation(session, "create_job"):
            session.add(job)
            await session.commit()

        logger.info(
            "Job enqueued",
            id=str(job.id),
            job_id=job.job_id,
            job_type=job.job_type,
            priority=job.priority,
            scheduled_at=job.scheduled_at.isoformat() if job.scheduled_at else None,
        )
        return job

    async def claim_next(
        self,
        session: AsyncSession,
        job_types: Iterable[JobType | str] | None = None,
    ) -> Job | None:
        """
        Atomically claim the next eligible job.

        Selection and mutation happen in one UPDATE ... WHERE id = (SELECT ...
        FOR UPDATE SKIP LOCKED) ... RETURNING statement, and the outer
        predicate re-checks the status, so two workers can never both claim
        the same row. Returns ``None`` when nothing is eligible.
        """
        types = normalize_job_types(job_types)
        now = utcnow()

        candidate = select(Job.id).where(
            Job.status.in_(_CLAIMABLE),
            or_(Job.scheduled_at.is_(None), Job.scheduled_at <= now),
        )
        if types:
            candidate = candidate.where(Job.job_type.in_(types))
        candidate = (
            candidate.order_by(Job.priority.desc(), Job.created_at.asc(), Job.id.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )

        claim = (
            update(Job)
            .where(Job.id == candidate, Job.status.in_(_CLAIMABLE))
            .values(
                status=JobStatus.PROCESSING.value,
                attempts=Job.attempts + 1,
                started_at=now,
                lease_expires_at=now + timedelta(seconds=self.settings.job_lease_timeout_s),
                updated_at=now,
            )
            .returning(Job)
            .execution_options(synchronize_session=False, populate_existing=True)
        )

        async with self._store_operation(session, "claim_next"):
            result = await session.execute(claim)
            job = result.scalars().first()
            await session.commit()

        if job is not None:
            logger.info(
                "Job claimed",
                id=str(job.id),
                job_id=job.job_id,
                job_type=job.job_type,
                attempt=job.attempts,
                max_attempts=job.max_attempts,
            )
        return job

    async def update_status(
        self,
        session: AsyncSession,
        job_pk: UUID,
        status: JobStatus,
        *,
        result: dict[str, Any] | None = None,
        error_message: str | None = None,
        scheduled_at: datetime | None = None,
        attempt: int | None = None,
    ) -> Job:
        """
        Apply a status transition out of ``processing``.

        Stamps ``completed_at`` for terminal statuses and clears the lease.
        Only rows currently in ``processing`` are updated, so terminal rows
        are never mutated and unclaimed rows cannot skip the claim. When
        ``attempt`` is given the write is fenced to that claim: a holder
        whose lease was reclaimed gets ``LeaseLostError`` instead of
        overwriting a newer claim. The caller decides retry versus failure.
        """
        status = JobStatus(status)
        if status == JobStatus.PROCESSING:
            raise ValidationError(
                "Jobs enter processing only by being claimed", {"id": str(job_pk)}
            )

        now = utcnow()
        values: dict[str, Any] = {
            "status": status.value,
            "lease_expires_at": None,
            "updated_at": now,
        }
        if status.is_terminal:
            values["completed_at"] = now
        if result is not None:
            values["result"] = result
        if error_message is not None:
            values["error_message"] = error_message
        if scheduled_at is not None:
            values["scheduled_at"] = scheduled_at

        guard = [Job.id == job_pk, Job.status == JobStatus.PROCESSING.value]
        if attempt is not None:
            guard.append(Job.attempts == attempt)

        stmt = (
            update(Job)
            .where(*guard)
            .values(**values)
            .returning(Job)
            .execution_options(synchronize_session=False, populate_existing=True)
        )

        async with self._store_operation(session, "update_status"):
            updated = (await session.execute(stmt)).scalars().first()
            await session.commit()

        if updated is None:
            # Columns only, so the caller's claimed instance is not refreshed
            async with self._store_operation(session, "update_status"):
                existing = (
                    await session.execute(
                        select(Job.status, Job.attempts).where(Job.id == job_pk)
                    )
                ).first()
            if existing is None:
                raise JobNotFoundError(job_pk)
            if attempt is not None:
                raise LeaseLostError(job_pk, attempt, existing.status, existing.attempts)
            raise InvalidJobTransitionError(job_pk, existing.status, status.value)

        return updated

    async def get_by_id(self, session: AsyncSession, job_pk: UUID) -> Job | None:
        """Point lookup by primary key; ``None`` when not found."""
        async with self._store_operation(session, "get_by_id"):
            result = await session.execute(
                select(Job)
                .where(Job.id == job_pk)
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()

    async def get_by_job_id(self, session: AsyncSession, job_id: str) -> Job | None:
        """Point lookup by the human-referenceable job_id."""
        async with self._store_operation(session, "get_by_job_id"):
            result = await session.execute(
                select(Job)
                .where(Job.job_id == job_id)
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()

    async def count_pending(self, session: AsyncSession) -> int:
        """Count jobs waiting to be claimed (pending or retrying)."""
        async with self._store_operation(session, "count_pending"):
            result = await session.execute(
                select(func.count(Job.id)).where(Job.status.in_(_CLAIMABLE))
            )
            return result.scalar() or 0

    async def queue_stats(self, session: AsyncSession) -> QueueStats:
        """Counts by status and by job type."""
        one_hour_ago = utcnow() - timedelta(hours=1)

        async with self._store_operation(session, "queue_stats"):
            status_result = await session.execute(
                select(Job.status, func.count(Job.id)).group_by(Job.status)
            )
            by_status = {s.value: 0 for s in JobStatus}
            by_status.update(dict(status_result.all()))

            type_result = await session.execute(
                select(Job.job_type, func.count(Job.id)).group_by(Job.job_type)
            )
            by_type = dict(type_result.all())

            failed_recent_result = await session.execute(
                select(func.count(Job.id)).where(
                    and_(
                        Job.status == JobStatus.FAILED.value,
                        Job.completed_at >= one_hour_ago,
                    )
                )
            )
            failed_last_hour = failed_recent_result.scalar() or 0

        return QueueStats(
            total_jobs=sum(by_status.values()),
            by_status=by_status,
            by_type=by_type,
            queue_depth=by_status[JobStatus.PENDING.value]
            + by_status[JobStatus.RETRYING.value],
            processing=by_status[JobStatus.PROCESSING.value],
            failed_last_hour=failed_last_hour,
        )

    async def recent_jobs(self, session: AsyncSession, limit: int = 10) -> list[Job]:
        async with self._store_operation(session, "recent_jobs"):
            result = await session.execute(
                select(Job).order_by(Job.created_at.desc()).limit(limit)
            )
            return list(result.scalars().all())

    async def recent_failures(self, session: AsyncSession, limit: int = 5) -> list[Job]:
        async with self._store_operation(session, "recent_failures"):
            result = await session.execute(
                select(Job)
                .where(Job.status == JobStatus.FAILED.value)
                .order_by(Job.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def cleanup_older_than(self, session: AsyncSession, days: int = 30) -> int:
        """Delete terminal jobs whose completed_at is older than ``days``."""
        if days < 0:
            raise ValidationError("days must be >= 0", {"days": days})

        cutoff = utcnow() - timedelta(days=days)
        stmt = (
            delete(Job)
            .where(Job.status.in_(_TERMINAL), Job.completed_at < cutoff)
            .execution_options(synchronize_session=False)
        )

        async with self._store_operation(session, "cleanup_older_than"):
            result = await session.execute(stmt)
            deleted_count = result.rowcount or 0
            await session.commit()

        if deleted_count > 0:
            logger.info(
                "Cleaned up old jobs", deleted_count=deleted_count, retention_days=days
            )
        return deleted_count

    async def bulk_retry_failed(self, session: AsyncSession, max_retries: int = 3) -> int:
        """Move failed jobs with ``attempts < max_retries`` back to retrying."""
        stmt = (
            update(Job)
            .where(Job.status == JobStatus.FAILED.value, Job.attempts < max_retries)
            .values(
                status=JobStatus.RETRYING.value,
                error_message=None,
                completed_at=None,
                scheduled_at=None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

        async with self._store_operation(session, "bulk_retry_failed"):
            result = await session.execute(stmt)
            reset_count = result.rowcount or 0
            await session.commit()

        if reset_count > 0:
            logger.info("Failed jobs reset for retry", count=reset_count, max_retries=max_retries)
        return reset_count

    async def reclaim_expired_leases(self, session: AsyncSession) -> ReclaimSummary:
        """
        Recover jobs whose worker stopped before applying a result.

        Jobs with attempts left become retrying and immediately eligible;
        exhausted jobs become failed.
        """
        now = utcnow()
        timeout_s = self.settings.job_lease_timeout_s
        message = f"Lease expired after {timeout_s}s without a result"
        expired = and_(
            Job.status == JobStatus.PROCESSING.value,
            Job.lease_expires_at.is_not(None),
            Job.lease_expires_at <= now,
        )

        requeue = (
            update(Job)
            .where(expired, Job.attempts < Job.max_attempts)
            .values(
                status=JobStatus.RETRYING.value,
                error_message=message,
                scheduled_at=None,
                lease_expires_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        exhaust = (
            update(Job)
            .where(expired, Job.attempts >= Job.max_attempts)
            .values(
                status=JobStatus.FAILED.value,
                error_message=message,
                completed_at=now,
                lease_expires_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        async with self._store_operation(session, "reclaim_expired_leases"):
            requeued = (await session.execute(requeue)).rowcount or 0
            failed = (await session.execute(exhaust)).rowcount or 0
            await session.commit()

        summary = ReclaimSummary(requeued=requeued, failed=failed)
        if summary.total:
            logger.warning(
                "Reclaimed jobs with expired leases",
                requeued=requeued,
                failed=failed,
                lease_timeout_s=timeout_s,
            )
        return summary

    async def count_expired_leases(self, session: AsyncSession) -> int:
        async with self._store_operation(session, "count_expired_leases"):
            result = await session.execute(
                select(func.count(Job.id)).where(
                    Job.status == JobStatus.PROCESSING.value,
                    Job.lease_expires_at <= utcnow(),
                )
            )
            return result.scalar() or 0
