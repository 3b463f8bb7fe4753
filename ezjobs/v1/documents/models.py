"""
Document-side tables read and updated by the scheduling, PDF and cleanup jobs.

``documents``, ``signers``, ``users`` and ``signatures`` belong to the main
application and are mapped here on their own metadata with only the columns
these jobs touch. ``document_reminders`` is owned by this service.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, TIMESTAMP, Boolean, Index, Integer, Text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ezjobs.infra.database import Base
from ezjobs.v1.infra.jobs.models import utcnow


class ExternalBase(DeclarativeBase):
    """Tables whose schema is managed by the main application."""

    pass


class DocumentStatus(str, Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    PENDING = "pending"
    COMPLETED = "completed"
    DECLINED = "declined"
    EXPIRED = "expired"


class SignerStatus(str, Enum):
    PENDING = "pending"
    SIGNED = "signed"
    DECLINED = "declined"


class WorkflowType(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


DEFAULT_REMINDER_SETTINGS = {"enabled": True, "intervals": [1, 3, 7]}


class Document(ExternalBase):
    __tablename__ = "documents"

    id: Mapped[UUID] = mapped_column(PG_UUID, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(PG_UUID, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default=DocumentStatus.DRAFT.value
    )
    workflow_type: Mapped[str | None] = mapped_column(Text)
    file_path: Mapped[str | None] = mapped_column(Text)
    expires_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True))
    reminder_settings: Mapped[dict[str, Any] | None] = mapped_column(JSON)

    # Scheduled sending
    scheduled_send_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True))
    scheduled_timezone: Mapped[str | None] = mapped_column(Text)
    schedule_job_id: Mapped[str | None] = mapped_column(Text)

    # PDF processing results
    thumbnail_path: Mapped[str | None] = mapped_column(Text)
    thumbnail_generated_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True)
    )
    is_optimized: Mapped[bool | None] = mapped_column(Boolean)
    original_file_size: Mapped[int | None] = mapped_column(Integer)
    file_size: Mapped[int | None] = mapped_column(Integer)
    optimized_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True))

    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    @property
    def workflow(self) -> WorkflowType:
        return WorkflowType(self.workflow_type or WorkflowType.PARALLEL.value)

    @property
    def reminders(self) -> dict[str, Any]:
        return self.reminder_settings or DEFAULT_REMINDER_SETTINGS


class Signer(ExternalBase):
    __tablename__ = "signers"

    id: Mapped[UUID] = mapped_column(PG_UUID, primary_key=True, default=uuid4)
    document_id: Mapped[UUID] = mapped_column(PG_UUID, nullable=False)
    email: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str | None] = mapped_column(Text)
    signing_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default=SignerStatus.PENDING.value
    )
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )


class User(ExternalBase):
    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(PG_UUID, primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str | None] = mapped_column(Text)


class Signature(ExternalBase):
    __tablename__ = "signatures"

    id: Mapped[UUID] = mapped_column(PG_UUID, primary_key=True, default=uuid4)
    document_id: Mapped[UUID] = mapped_column(PG_UUID, nullable=False)
    signature_data: Mapped[str | None] = mapped_column(Text)


class DocumentReminder(Base):
    """A deadline reminder for one signer (or the owner) of a document."""

    __tablename__ = "document_reminders"

    id: Mapped[UUID] = mapped_column(PG_UUID, primary_key=True, default=uuid4)
    document_id: Mapped[UUID] = mapped_column(PG_UUID, nullable=False)
    signer_id: Mapped[UUID | None] = mapped_column(
        PG_UUID, comment="Null for owner notifications"
    )
    reminder_type: Mapped[str] = mapped_column(Text, nullable=False)
    scheduled_for: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False
    )
    sent_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True))
    job_id: Mapped[UUID | None] = mapped_column(PG_UUID)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("ix_document_reminders_document", "document_id"),
        Index("ix_document_reminders_signer", "signer_id"),
    )
