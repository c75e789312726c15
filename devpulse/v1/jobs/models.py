"""
Job queue models.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, Index, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from devpulse.infra.database import Base, UTCDateTime, utcnow


class JobStatus(str, Enum):
    """Job status enumeration."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})
CLAIMABLE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.RETRYING})


class JobType(str, Enum):
    """Closed set of job kinds; each one maps to exactly one handler."""

    AI_SUMMARY = "ai_summary"
    NOTIFICATION = "notification"
    ANALYTICS_ROLLUP = "analytics_rollup"
    BADGE_AWARD = "badge_award"
    ISSUE_CLASSIFICATION = "issue_classification"
    RELEASE_NOTES = "release_notes"
    CI_ANALYSIS = "ci_analysis"


class JobEventType(str, Enum):
    """Lifecycle events written to the observability sink."""

    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"


_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in JobStatus)


class Job(Base):
    """
    A unit of deferred work.

    Rows are claimed by polling workers with a single conditional update,
    processed by the handler registered for ``job_type``, and end in
    ``completed`` or ``failed``. ``lease_expires_at`` bounds how long a
    claimed row may stay ``processing`` before a sweep reclaims it.
    """

    __tablename__ = "job_queue"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    job_id: Mapped[str] = mapped_column(
        Text, nullable=False, unique=True, comment="Human-referenceable job id"
    )
    job_type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Job type tag"
    )
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.PENDING.value,
        comment="pending|processing|completed|failed|retrying",
    )
    priority: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Higher claims first"
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict, comment="Handler-specific parameters"
    )
    result: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="Handler result data"
    )
    error_message: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Last failure message"
    )
    attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Number of claims so far"
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=3, comment="Terminal failure threshold"
    )

    scheduled_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="Not claimable before this time"
    )
    lease_expires_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="Processing lease deadline"
    )
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="job_queue_status_check"),
        CheckConstraint("max_attempts >= 1", name="job_queue_max_attempts_check"),
        Index("ix_job_queue_status_scheduled_at", "status", "scheduled_at"),
        Index("ix_job_queue_job_type_status", "job_type", "status"),
        Index("ix_job_queue_priority_created_at", "priority", "created_at"),
        Index("ix_job_queue_completed_at", "completed_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return JobStatus(self.status).is_terminal

    def has_attempts_left(self) -> bool:
        """Whether another claim is allowed after a failed attempt."""
        return self.attempts < self.max_attempts

    def is_eligible(self, now: datetime) -> bool:
        """Mirror of the claim predicate, for inspection and tests."""
        if JobStatus(self.status) not in CLAIMABLE_STATUSES:
            return False
        return self.scheduled_at is None or self.scheduled_at <= now

    def __repr__(self) -> str:
        return (
            f"<Job {self.job_id} type={self.job_type} status={self.status} "
            f"attempts={self.attempts}/{self.max_attempts}>"
        )


class JobEvent(Base):
    """Append-only lifecycle record for queue observability."""

    __tablename__ = "job_events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    job_pk: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    job_id: Mapped[str] = mapped_column(Text, nullable=False)
    job_type: Mapped[str] = mapped_column(Text, nullable=False)
    event_type: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    recorded_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_job_events_event_type_recorded_at", "event_type", "recorded_at"),
        Index("ix_job_events_job_pk", "job_pk"),
    )
