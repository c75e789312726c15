"""
Job queue Pydantic schemas.
"""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from devpulse.v1.jobs.models import JobStatus, JobType


class JobCreate(BaseModel):
    """Schema for creating a new job."""

    job_type: JobType = Field(..., description="Job type tag")
    payload: dict[str, Any] = Field(default_factory=dict, description="Job parameters")
    priority: int = Field(default=0, description="Higher values are claimed first")
    max_attempts: int = Field(default=3, ge=1, description="Terminal failure threshold")
    scheduled_at: datetime | None = Field(
        default=None, description="Earliest time the job may be claimed"
    )


class JobResult(BaseModel):
    """Outcome returned by a job handler."""

    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None

    @classmethod
    def ok(cls, **data: Any) -> "JobResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "JobResult":
        return cls(success=False, error=error)


class JobResponse(BaseModel):
    """Schema for job API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_id: str
    job_type: str
    status: str
    priority: int
    payload: dict[str, Any]
    result: dict[str, Any] | None = None
    error_message: str | None = None
    attempts: int
    max_attempts: int
    scheduled_at: datetime | None = None
    lease_expires_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class JobSummary(BaseModel):
    """Condensed job view used in status listings."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_id: str
    job_type: str
    status: str
    attempts: int
    error_message: str | None = None
    created_at: datetime
    completed_at: datetime | None = None


class QueueStats(BaseModel):
    """Aggregate queue counts for observability."""

    total_jobs: int
    by_status: dict[str, int]
    by_type: dict[str, int]
    queue_depth: int  # pending + retrying
    processing: int
    failed_last_hour: int


class ReclaimSummary(BaseModel):
    """Result of an expired-lease sweep."""

    requeued: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.requeued + self.failed


class ProcessOutcome(BaseModel):
    """Result of one process-next invocation."""

    processed: bool
    job: JobResponse | None = None
    result: JobResult | None = None
    final_status: JobStatus | None = None
    next_retry_at: datetime | None = None
    lease_lost: bool = False

    @classmethod
    def idle(cls) -> "ProcessOutcome":
        return cls(processed=False)


class DrainSummary(BaseModel):
    """Aggregate of a bounded batch drain."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    retried: int = 0
    lease_lost: int = 0
    results: list[ProcessOutcome] = Field(default_factory=list)


class JobEnqueueRequest(BaseModel):
    """Schema for enqueueing jobs via API."""

    job_type: JobType = Field(..., description="Job type")
    payload: dict[str, Any] = Field(default_factory=dict, description="Job payload")
    priority: int = Field(default=0, description="Job priority")
    max_attempts: int | None = Field(default=None, ge=1, description="Max attempts")
    scheduled_at: datetime | None = Field(default=None, description="Scheduled run time")


class JobProcessRequest(BaseModel):
    """Schema for triggering job processing via API."""

    mode: Literal["single", "batch"] = "single"
    max_jobs: int = Field(default=10, ge=1, description="Batch size upper bound")
    job_types: list[str] | None = Field(
        default=None, description="Restrict processing to these job types"
    )
