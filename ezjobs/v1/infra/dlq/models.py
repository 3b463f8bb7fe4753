"""
Dead letter queue model.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, TIMESTAMP, CheckConstraint, SmallInteger, Text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from ezjobs.infra.database import Base
from ezjobs.v1.infra.jobs.models import utcnow


class DeadLetterStatus(str, Enum):
    PENDING = "pending"
    RETRIED = "retried"
    DISCARDED = "discarded"


RESOLVED_STATUSES = (DeadLetterStatus.RETRIED.value, DeadLetterStatus.DISCARDED.value)


class DeadLetterEntry(Base):
    """
    Terminal record of a job that exhausted its attempts.

    Entries are history: the payload is never edited, and once an entry
    leaves ``pending`` it does not change again.
    """

    __tablename__ = "dead_letter_queue"

    id: Mapped[UUID] = mapped_column(PG_UUID, primary_key=True, default=uuid4)
    source_queue: Mapped[str] = mapped_column(Text, nullable=False)
    original_job_id: Mapped[UUID] = mapped_column(PG_UUID, nullable=False)
    job_type: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    error: Mapped[str] = mapped_column(Text, nullable=False)
    error_stack: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempts_made: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    max_attempts: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    backoff: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default=DeadLetterStatus.PENDING.value
    )
    moved_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    retried_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    retried_job_id: Mapped[UUID | None] = mapped_column(PG_UUID, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'retried', 'discarded')",
            name="dead_letter_queue_status_check",
        ),
    )
