"""
Job system models: queued jobs and repeatable registrations.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    CheckConstraint,
    Integer,
    SmallInteger,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from ezjobs.infra.database import Base


class JobStatus(str, Enum):
    """Job status enumeration."""

    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


PENDING_STATUSES = (JobStatus.WAITING.value, JobStatus.DELAYED.value)
LIVE_STATUSES = (*PENDING_STATUSES, JobStatus.ACTIVE.value)


def utcnow() -> datetime:
    return datetime.now(UTC)


class Job(Base):
    """
    One unit of queued work.

    The id is stable across retries; ``attempts`` is incremented each time a
    worker claims the job, so a crash mid-handler still consumes an attempt.
    """

    __tablename__ = "jobs"

    # Core fields
    id: Mapped[UUID] = mapped_column(PG_UUID, primary_key=True, default=uuid4)
    queue_name: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Named queue this job belongs to"
    )
    job_type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Payload variant tag"
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        server_default="{}",
        comment="Job-specific parameters",
    )

    # Job state
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.WAITING.value,
        comment="Job status: waiting|delayed|active|completed|failed",
    )
    priority: Mapped[int] = mapped_column(
        SmallInteger,
        nullable=False,
        default=5,
        comment="Priority 1-10, lower is higher priority",
    )
    run_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=utcnow,
        comment="Earliest time to run job",
    )
    attempts: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=0, comment="Number of attempts started"
    )
    max_attempts: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=3, comment="Attempts before dead-lettering"
    )
    backoff: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="Backoff config used between attempts"
    )
    dedupe_key: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Key shared by at most one live job per queue"
    )

    # Worker coordination
    locked_by: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Worker ID that holds the lease"
    )
    heartbeat_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="Last worker heartbeat"
    )

    # Results and progress
    progress: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=0, comment="Progress percentage"
    )
    result: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="Handler result"
    )
    error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Last failure message"
    )
    error_stack: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    processed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="Start of the latest attempt"
    )
    finished_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('waiting', 'delayed', 'active', 'completed', 'failed')",
            name="jobs_status_check",
        ),
        CheckConstraint("priority BETWEEN 1 AND 10", name="jobs_priority_check"),
    )

    def is_live(self) -> bool:
        """Check if the job can still run (waiting, delayed or active)."""
        return self.status in LIVE_STATUSES


class RepeatableJob(Base):
    """A named periodic registration; at most one per (queue, name)."""

    __tablename__ = "repeatable_jobs"

    id: Mapped[UUID] = mapped_column(PG_UUID, primary_key=True, default=uuid4)
    queue_name: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    job_type: Mapped[str] = mapped_column(Text, nullable=False)
    cron: Mapped[str | None] = mapped_column(Text, nullable=True)
    every_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict, server_default="{}"
    )
    priority: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=5)
    next_run_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False
    )
    last_run_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        UniqueConstraint("queue_name", "name", name="repeatable_jobs_queue_name_key"),
        CheckConstraint(
            "(cron IS NOT NULL) <> (every_ms IS NOT NULL)",
            name="repeatable_jobs_schedule_check",
        ),
    )
