"""
Job queue API endpoints.

Trigger endpoints for external schedulers (cron, timers) plus admin
endpoints for enqueueing, inspection and maintenance.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from devpulse.config.logging import get_logger
from devpulse.config.settings import Settings, SettingsDep
from devpulse.infra.database import Database, get_database, get_session
from devpulse.v1.core.exceptions import create_success_response
from devpulse.v1.core.registries import job_registry
from devpulse.v1.jobs.events import JobEventLogger
from devpulse.v1.jobs.models import JobType
from devpulse.v1.jobs.processor import JobProcessor
from devpulse.v1.jobs.schemas import (
    JobCreate,
    JobEnqueueRequest,
    JobProcessRequest,
    JobResponse,
    JobSummary,
    ProcessOutcome,
)
from devpulse.v1.jobs.service import JobQueueService

logger = get_logger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])


def get_job_service(settings: Settings = SettingsDep) -> JobQueueService:
    return JobQueueService(settings)


def get_event_logger(database: Database = Depends(get_database)) -> JobEventLogger:
    return JobEventLogger(database.SessionLocal)


def get_processor(
    database: Database = Depends(get_database),
    event_logger: JobEventLogger = Depends(get_event_logger),
    service: JobQueueService = Depends(get_job_service),
    settings: Settings = SettingsDep,
) -> JobProcessor:
    return JobProcessor(
        session_factory=database.SessionLocal,
        registry=job_registry,
        event_logger=event_logger,
        settings=settings,
        service=service,
    )


def _known_job_types(job_types: list[str] | None) -> list[str] | None:
    """Drop unknown tags from a processing filter."""
    if job_types is None:
        return None
    allowed = {t.value for t in JobType}
    return [t for t in job_types if t in allowed]


def _outcome_summary(outcome: ProcessOutcome) -> dict[str, Any]:
    job = outcome.job
    return {
        "id": str(job.id),
        "job_id": job.job_id,
        "job_type": job.job_type,
        "status": "lease_lost" if outcome.lease_lost else outcome.final_status.value,
        "attempts": job.attempts,
        "error": outcome.result.error if outcome.result else None,
        "next_retry_at": (
            outcome.next_retry_at.isoformat() if outcome.next_retry_at else None
        ),
    }


@router.post("", response_model=dict)
async def enqueue_job(
    job_request: JobEnqueueRequest,
    session: AsyncSession = Depends(get_session),
    service: JobQueueService = Depends(get_job_service),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Enqueue a new background job."""
    job_create = JobCreate(
        job_type=job_request.job_type,
        payload=job_request.payload,
        priority=job_request.priority,
        max_attempts=job_request.max_attempts or settings.job_default_max_attempts,
        scheduled_at=job_request.scheduled_at,
    )
    job = await service.create_job(session, job_create)

    return create_success_response(
        data=JobResponse.model_validate(job).model_dump(mode="json")
    )


async def _process(
    processor: JobProcessor, request: JobProcessRequest
) -> dict[str, Any]:
    job_types = _known_job_types(request.job_types)
    # A filter made only of unknown types would otherwise widen to "all"
    if request.job_types and not job_types:
        return create_success_response(
            data={"processed": 0}, message="No known job types in filter"
        )

    if request.mode == "single":
        outcome = await processor.process_next(job_types)
        if not outcome.processed:
            return create_success_response(
                data={"processed": 0}, message="No pending jobs to process"
            )
        return create_success_response(
            data={
                "processed": 1,
                "job": _outcome_summary(outcome),
                "result": outcome.result.model_dump(mode="json"),
            }
        )

    summary = await processor.drain(request.max_jobs, job_types)
    return create_success_response(
        data={
            "processed": summary.processed,
            "succeeded": summary.succeeded,
            "failed": summary.failed,
            "retried": summary.retried,
            "lease_lost": summary.lease_lost,
            "jobs": [_outcome_summary(outcome) for outcome in summary.results],
        }
    )


@router.post("/process", response_model=dict)
async def process_jobs(
    request: JobProcessRequest | None = None,
    processor: JobProcessor = Depends(get_processor),
) -> dict[str, Any]:
    """Process the next job, or drain a bounded batch."""
    return await _process(processor, request or JobProcessRequest())


@router.get("/process", response_model=dict)
async def process_next_job(
    processor: JobProcessor = Depends(get_processor),
) -> dict[str, Any]:
    """Process a single job; convenient for cron pingers."""
    return await _process(processor, JobProcessRequest(mode="single"))


@router.get("/status", response_model=dict)
async def queue_status(
    session: AsyncSession = Depends(get_session),
    service: JobQueueService = Depends(get_job_service),
    event_logger: JobEventLogger = Depends(get_event_logger),
) -> dict[str, Any]:
    """Queue counts, recent jobs, recent failures and success rate."""
    stats = await service.queue_stats(session)
    pending_count = await service.count_pending(session)
    recent_jobs = await service.recent_jobs(session, limit=10)
    recent_failures = await service.recent_failures(session, limit=5)
    metrics = await event_logger.recent_metrics(session)

    return create_success_response(
        data={
            "queue": {
                **stats.by_status,
                "total_pending": pending_count,
                "failed_last_hour": stats.failed_last_hour,
            },
            "by_type": stats.by_type,
            "metrics": metrics,
            "recent_jobs": [
                JobSummary.model_validate(job).model_dump(mode="json")
                for job in recent_jobs
            ],
            "recent_failures": [
                JobSummary.model_validate(job).model_dump(mode="json")
                for job in recent_failures
            ],
        }
    )


@router.get("/stats", response_model=dict)
async def get_queue_stats(
    session: AsyncSession = Depends(get_session),
    service: JobQueueService = Depends(get_job_service),
) -> dict[str, Any]:
    """Aggregate counts by status and job type."""
    stats = await service.queue_stats(session)
    return create_success_response(data=stats.model_dump())


@router.post("/maintenance/cleanup", response_model=dict)
async def cleanup_jobs(
    days: int = Query(default=30, ge=0, description="Retention in days"),
    session: AsyncSession = Depends(get_session),
    service: JobQueueService = Depends(get_job_service),
) -> dict[str, Any]:
    """Delete completed and failed jobs older than ``days``."""
    deleted = await service.cleanup_older_than(session, days)
    return create_success_response(data={"deleted": deleted, "days": days})


@router.post("/maintenance/retry-failed", response_model=dict)
async def retry_failed_jobs(
    max_retries: int = Query(default=3, ge=1, description="Attempts threshold"),
    session: AsyncSession = Depends(get_session),
    service: JobQueueService = Depends(get_job_service),
) -> dict[str, Any]:
    """Move failed jobs under the attempts threshold back to retrying."""
    count = await service.bulk_retry_failed(session, max_retries)

    logger.info("Bulk retry via API", count=count, max_retries=max_retries)
    return create_success_response(data={"retried": count, "max_retries": max_retries})


@router.post("/maintenance/reclaim", response_model=dict)
async def reclaim_expired_leases(
    session: AsyncSession = Depends(get_session),
    service: JobQueueService = Depends(get_job_service),
) -> dict[str, Any]:
    """Recover processing jobs whose lease has expired."""
    summary = await service.reclaim_expired_leases(session)
    return create_success_response(data=summary.model_dump())


@router.get("/by-job-id/{job_id}", response_model=dict)
async def get_job_by_job_id(
    job_id: str,
    session: AsyncSession = Depends(get_session),
    service: JobQueueService = Depends(get_job_service),
) -> dict[str, Any]:
    """Get a job by its human-referenceable job_id."""
    job = await service.get_by_job_id(session, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    return create_success_response(
        data=JobResponse.model_validate(job).model_dump(mode="json")
    )


@router.get("/{id}", response_model=dict)
async def get_job(
    id: UUID,
    session: AsyncSession = Depends(get_session),
    service: JobQueueService = Depends(get_job_service),
) -> dict[str, Any]:
    """Get a specific job by ID."""
    job = await service.get_by_id(session, id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    return create_success_response(
        data=JobResponse.model_validate(job).model_dump(mode="json")
    )
