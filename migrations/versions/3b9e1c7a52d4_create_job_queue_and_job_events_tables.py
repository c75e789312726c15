"""create job_queue and job_events tables

Revision ID: 3b9e1c7a52d4
Revises:
Create Date: 2026-10-19 09:12:40.118204

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3b9e1c7a52d4"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "job_queue",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column(
            "job_id", sa.Text, nullable=False, comment="Human-referenceable job id"
        ),
        sa.Column("job_type", sa.Text, nullable=False, comment="Job type tag"),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="pending",
            comment="pending|processing|completed|failed|retrying",
        ),
        sa.Column(
            "priority",
            sa.Integer,
            nullable=False,
            server_default="0",
            comment="Higher claims first",
        ),
        sa.Column(
            "payload",
            sa.JSON,
            nullable=False,
            comment="Handler-specific parameters",
        ),
        sa.Column("result", sa.JSON, nullable=True, comment="Handler result data"),
        sa.Column(
            "error_message", sa.Text, nullable=True, comment="Last failure message"
        ),
        sa.Column(
            "attempts",
            sa.Integer,
            nullable=False,
            server_default="0",
            comment="Number of claims so far",
        ),
        sa.Column(
            "max_attempts",
            sa.Integer,
            nullable=False,
            server_default="3",
            comment="Terminal failure threshold",
        ),
        # Scheduling and worker coordination
        sa.Column(
            "scheduled_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="Not claimable before this time",
        ),
        sa.Column(
            "lease_expires_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="Processing lease deadline",
        ),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        # Timestamps
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        # Constraints
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'retrying')",
            name="job_queue_status_check",
        ),
        sa.CheckConstraint("max_attempts >= 1", name="job_queue_max_attempts_check"),
        sa.UniqueConstraint("job_id", name="uq_job_queue_job_id"),
    )

    # Claim predicate, stats aggregation and retention sweeps
    op.create_index(
        "ix_job_queue_status_scheduled_at", "job_queue", ["status", "scheduled_at"]
    )
    op.create_index("ix_job_queue_job_type_status", "job_queue", ["job_type", "status"])
    op.create_index(
        "ix_job_queue_priority_created_at", "job_queue", ["priority", "created_at"]
    )
    op.create_index("ix_job_queue_completed_at", "job_queue", ["completed_at"])

    op.create_table(
        "job_events",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("job_pk", sa.Uuid, nullable=False),
        sa.Column("job_id", sa.Text, nullable=False),
        sa.Column("job_type", sa.Text, nullable=False),
        sa.Column(
            "event_type",
            sa.Text,
            nullable=False,
            comment="started|completed|failed|retrying",
        ),
        sa.Column("details", sa.JSON, nullable=False),
        sa.Column(
            "recorded_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_job_events_event_type_recorded_at",
        "job_events",
        ["event_type", "recorded_at"],
    )
    op.create_index("ix_job_events_job_pk", "job_events", ["job_pk"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("job_events")
    op.drop_table("job_queue")
