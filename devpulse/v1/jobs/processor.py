"""
Job processor: claim one job, dispatch it to its handler, apply the result.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Any

import structlog
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from devpulse.config.logging import get_logger
from devpulse.config.settings import Settings
from devpulse.v1.core.exceptions import LeaseLostError
from devpulse.v1.core.registries import JobHandler, JobRegistry
from devpulse.v1.jobs.backoff import next_retry_at
from devpulse.v1.jobs.events import JobEventLogger
from devpulse.v1.jobs.models import Job, JobEventType, JobStatus, JobType
from devpulse.v1.jobs.schemas import (
    DrainSummary,
    JobResponse,
    JobResult,
    ProcessOutcome,
)
from devpulse.v1.jobs.service import JobQueueService, normalize_job_types


class JobProcessor:
    """
    Drives jobs through their status machine.

    Features:
    - Handler faults are converted into failed results and never escape
    - Failed attempts are retried with exponential backoff until
      ``max_attempts`` is reached, then the job fails terminally
    - A job type without a handler fails immediately, without retries
    - Results are written only while the claim still holds the job; a
      holder whose lease was reclaimed logs and drops its result
    - Store errors propagate; the next invocation picks up whatever is
      still eligible

    The processor holds no lock between store round-trips; the claim update
    is the only point of mutual exclusion between workers.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: JobRegistry,
        event_logger: JobEventLogger,
        settings: Settings,
        service: JobQueueService | None = None,
        logger: structlog.BoundLogger | None = None,
    ):
        self.session_factory = session_factory
        self.registry = registry
        self.event_logger = event_logger
        self.settings = settings
        self.service = service or JobQueueService(settings)
        self.logger = logger or get_logger(__name__)

    async def process_next(
        self, job_types: Iterable[JobType | str] | None = None
    ) -> ProcessOutcome:
        """Claim and process a single job; idle outcome when nothing is eligible."""
        async with self.session_factory() as session:
            job = await self.service.claim_next(session, job_types)
            if job is None:
                return ProcessOutcome.idle()

            await self.event_logger.record(
                job, JobEventType.STARTED, attempt=job.attempts
            )

            handler = self._resolve_handler(job)
            if handler is None:
                return await self._fail_unhandled(session, job)

            result = await self._invoke(handler, job)
            return await self._apply_result(session, job, result)

    async def drain(
        self,
        max_jobs: int = 10,
        job_types: Iterable[JobType | str] | None = None,
    ) -> DrainSummary:
        """Process jobs until ``max_jobs`` are done or none are eligible."""
        types = normalize_job_types(job_types)
        limit = max(0, min(max_jobs, self.settings.job_batch_max))
        summary = DrainSummary()

        while summary.processed < limit:
            outcome = await self.process_next(types)
            if not outcome.processed:
                break

            summary.processed += 1
            if outcome.lease_lost:
                summary.lease_lost += 1
            elif outcome.result and outcome.result.success:
                summary.succeeded += 1
            else:
                summary.failed += 1
                if outcome.final_status == JobStatus.RETRYING:
                    summary.retried += 1
            summary.results.append(outcome)

        if summary.processed:
            self.logger.info(
                "Drained job batch",
                processed=summary.processed,
                succeeded=summary.succeeded,
                failed=summary.failed,
                retried=summary.retried,
                lease_lost=summary.lease_lost,
                limit=limit,
            )
        return summary

    def _resolve_handler(self, job: Job) -> JobHandler | None:
        try:
            return self.registry.get(JobType(job.job_type))
        except (ValueError, KeyError):
            return None

    async def _invoke(self, handler: JobHandler, job: Job) -> JobResult:
        try:
            raw = await handler.handle(job)
        except Exception as e:
            self.logger.warning(
                "Job handler raised",
                id=str(job.id),
                job_type=job.job_type,
                attempt=job.attempts,
                exc_info=True,
            )
            return JobResult.fail(str(e) or e.__class__.__name__)

        return self._normalize_result(raw)

    @staticmethod
    def _normalize_result(raw: Any) -> JobResult:
        if isinstance(raw, JobResult):
            result = raw
        elif raw is None:
            result = JobResult(success=True)
        elif isinstance(raw, dict):
            try:
                result = JobResult.model_validate(raw)
            except PydanticValidationError:
                result = None
        else:
            result = None

        if result is None:
            return JobResult.fail(
                f"Handler returned an invalid result of type {type(raw).__name__}"
            )
        if result.data is None:
            return result

        # Result data lands in a JSON column
        try:
            data = jsonable_encoder(result.data)
        except (TypeError, ValueError):
            return JobResult.fail("Handler returned non-serializable data")
        return result.model_copy(update={"data": data})

    async def _transition(
        self, session: AsyncSession, job: Job, status: JobStatus, **fields: Any
    ) -> Job | None:
        """Write the result for this claim; ``None`` when the lease was lost."""
        try:
            return await self.service.update_status(
                session, job.id, status, attempt=job.attempts, **fields
            )
        except LeaseLostError as e:
            self.logger.warning(
                "Job lease lost, dropping result",
                id=str(job.id),
                job_type=job.job_type,
                attempt=e.attempt,
                current_status=e.details["current"],
                current_attempt=e.details["current_attempt"],
            )
            return None

    async def _fail_unhandled(self, session: AsyncSession, job: Job) -> ProcessOutcome:
        # Retrying cannot fix a missing handler, so the job fails regardless
        # of remaining attempts.
        result = JobResult.fail(f"No handler found for job type: {job.job_type}")
        updated = await self._transition(
            session, job, JobStatus.FAILED, error_message=result.error
        )
        if updated is None:
            return self._lost(job, result)

        self.logger.error(
            "No handler registered for job type",
            id=str(job.id),
            job_type=job.job_type,
        )
        await self.event_logger.record(
            job,
            JobEventType.FAILED,
            attempts=job.attempts,
            error=result.error,
            configuration_error=True,
        )
        return self._outcome(updated, result, JobStatus.FAILED)

    async def _apply_result(
        self, session: AsyncSession, job: Job, result: JobResult
    ) -> ProcessOutcome:
        if result.success:
            updated = await self._transition(
                session, job, JobStatus.COMPLETED, result=result.data
            )
            if updated is None:
                return self._lost(job, result)
            await self.event_logger.record(
                job, JobEventType.COMPLETED, attempt=job.attempts, result=result.data
            )
            return self._outcome(updated, result, JobStatus.COMPLETED)

        error = result.error or "Job handler reported failure without an error message"

        if job.has_attempts_left():
            retry_at = next_retry_at(job.attempts)
            updated = await self._transition(
                session,
                job,
                JobStatus.RETRYING,
                error_message=error,
                scheduled_at=retry_at,
            )
            if updated is None:
                return self._lost(job, result)
            await self.event_logger.record(
                job,
                JobEventType.RETRYING,
                attempt=job.attempts,
                next_retry=retry_at,
                error=error,
            )
            return self._outcome(updated, result, JobStatus.RETRYING, retry_at)

        updated = await self._transition(
            session, job, JobStatus.FAILED, error_message=error
        )
        if updated is None:
            return self._lost(job, result)
        await self.event_logger.record(
            job, JobEventType.FAILED, attempts=job.attempts, error=error
        )
        return self._outcome(updated, result, JobStatus.FAILED)

    @staticmethod
    def _lost(job: Job, result: JobResult) -> ProcessOutcome:
        return ProcessOutcome(
            processed=True,
            job=JobResponse.model_validate(job),
            result=result,
            lease_lost=True,
        )

    @staticmethod
    def _outcome(
        job: Job,
        result: JobResult,
        final_status: JobStatus,
        next_retry: datetime | None = None,
    ) -> ProcessOutcome:
        return ProcessOutcome(
            processed=True,
            job=JobResponse.model_validate(job),
            result=result,
            final_status=final_status,
            next_retry_at=next_retry,
        )
