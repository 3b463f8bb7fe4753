"""
Webhook subscriptions and their per-event delivery records.
"""

import secrets
from datetime import datetime, timedelta
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    SmallInteger,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from ezjobs.infra.database import Base
from ezjobs.v1.infra.jobs.backoff import FixedLadderBackoff
from ezjobs.v1.infra.jobs.models import utcnow

WILDCARD_EVENT = "*"
DEFAULT_MAX_DELIVERY_ATTEMPTS = 5
RESPONSE_BODY_LIMIT = 1000

EVENT_RETRY_BACKOFF = FixedLadderBackoff()


class WebhookEventStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


def generate_secret() -> str:
    """Signing secret: ``whsec_`` followed by 32 hex characters."""
    return "whsec_" + secrets.token_hex(16)


class WebhookSubscription(Base):
    """An owner's endpoint and the event types it receives."""

    __tablename__ = "webhooks"

    id: Mapped[UUID] = mapped_column(PG_UUID, primary_key=True, default=uuid4)
    owner_id: Mapped[str] = mapped_column(Text, nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    secret: Mapped[str] = mapped_column(Text, nullable=False, default=generate_secret)
    events: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (Index("ix_webhooks_owner_id", "owner_id"),)

    def listens_to_event(self, event_type: str) -> bool:
        """Exact match on the event type, or the ``*`` wildcard."""
        return event_type in self.events or WILDCARD_EVENT in self.events

    @property
    def secret_preview(self) -> str:
        return self.secret[:12] + "..."

    def public_dict(self) -> dict[str, Any]:
        """Representation safe to return to the owner; the secret is masked."""
        return {
            "id": str(self.id),
            "owner_id": self.owner_id,
            "url": self.url,
            "events": list(self.events),
            "active": self.active,
            "secret_preview": self.secret_preview,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class WebhookDeliveryEvent(Base):
    """
    One (subscription, domain event) delivery.

    Attempts are counted here, independently of the transport job that
    performs each POST, and are spaced by the fixed retry ladder.
    """

    __tablename__ = "webhook_events"

    id: Mapped[UUID] = mapped_column(PG_UUID, primary_key=True, default=uuid4)
    webhook_id: Mapped[UUID] = mapped_column(
        PG_UUID, ForeignKey("webhooks.id", ondelete="CASCADE"), nullable=False
    )
    event_type: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default=WebhookEventStatus.PENDING.value
    )
    attempts: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    last_attempt_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True))
    next_retry_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True))
    response_status: Mapped[int | None] = mapped_column(Integer)
    response_body: Mapped[str | None] = mapped_column(Text)
    response_time_ms: Mapped[int | None] = mapped_column(Integer)
    error_message: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'delivered', 'failed')",
            name="webhook_events_status_check",
        ),
        Index("ix_webhook_events_webhook_created", "webhook_id", "created_at"),
        Index("ix_webhook_events_status_retry", "status", "next_retry_at"),
    )

    def is_pending(self) -> bool:
        return self.status == WebhookEventStatus.PENDING.value

    def is_delivered(self) -> bool:
        return self.status == WebhookEventStatus.DELIVERED.value

    def is_failed(self) -> bool:
        return self.status == WebhookEventStatus.FAILED.value

    def should_retry(self, max_attempts: int = DEFAULT_MAX_DELIVERY_ATTEMPTS) -> bool:
        return self.is_pending() and self.attempts < max_attempts

    @staticmethod
    def calculate_next_retry(attempts: int, now: datetime | None = None) -> datetime:
        """Next retry time on the 1m, 5m, 15m, 1h, 6h ladder."""
        return (now or utcnow()) + timedelta(
            seconds=EVENT_RETRY_BACKOFF.delay(attempts)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "webhook_id": str(self.webhook_id),
            "event_type": self.event_type,
            "payload": self.payload,
            "status": self.status,
            "attempts": self.attempts,
            "last_attempt_at": _iso(self.last_attempt_at),
            "next_retry_at": _iso(self.next_retry_at),
            "response_status": self.response_status,
            "response_body": self.response_body,
            "response_time_ms": self.response_time_ms,
            "error_message": self.error_message,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
