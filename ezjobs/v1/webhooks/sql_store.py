"""
Postgres-backed webhook store.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import delete, desc, func, select, update

from ezjobs.infra.database import Database
from ezjobs.v1.infra.jobs.models import utcnow
from ezjobs.v1.webhooks.models import (
    WebhookDeliveryEvent,
    WebhookEventStatus,
    WebhookSubscription,
)
from ezjobs.v1.webhooks.store import SUBSCRIPTION_FIELDS, WebhookStore


class SqlWebhookStore(WebhookStore):
    def __init__(self, database: Database):
        self.database = database

    def _session(self):
        return self.database.SessionLocal()

    async def add_subscription(
        self, subscription: WebhookSubscription
    ) -> WebhookSubscription:
        async with self._session() as session:
            session.add(subscription)
            await session.commit()
            return subscription

    async def get_subscription(self, webhook_id: UUID) -> WebhookSubscription | None:
        async with self._session() as session:
            return await session.get(WebhookSubscription, webhook_id)

    async def list_subscriptions(self, owner_id: str) -> list[WebhookSubscription]:
        async with self._session() as session:
            result = await session.execute(
                select(WebhookSubscription)
                .where(WebhookSubscription.owner_id == owner_id)
                .order_by(desc(WebhookSubscription.created_at))
            )
            return list(result.scalars().all())

    async def active_subscriptions(self, owner_id: str) -> list[WebhookSubscription]:
        async with self._session() as session:
            result = await session.execute(
                select(WebhookSubscription).where(
                    WebhookSubscription.owner_id == owner_id,
                    WebhookSubscription.active.is_(True),
                )
            )
            return list(result.scalars().all())

    async def update_subscription(
        self, webhook_id: UUID, owner_id: str, changes: dict[str, Any]
    ) -> WebhookSubscription | None:
        values = {k: v for k, v in changes.items() if k in SUBSCRIPTION_FIELDS}
        async with self._session() as session:
            result = await session.execute(
                update(WebhookSubscription)
                .where(
                    WebhookSubscription.id == webhook_id,
                    WebhookSubscription.owner_id == owner_id,
                )
                .values(**values, updated_at=utcnow())
                .returning(WebhookSubscription)
            )
            subscription = result.scalar_one_or_none()
            await session.commit()
            return subscription

    async def delete_subscription(self, webhook_id: UUID, owner_id: str) -> bool:
        async with self._session() as session:
            result = await session.execute(
                delete(WebhookSubscription).where(
                    WebhookSubscription.id == webhook_id,
                    WebhookSubscription.owner_id == owner_id,
                )
            )
            await session.commit()
            return result.rowcount > 0

    async def add_event(self, event: WebhookDeliveryEvent) -> WebhookDeliveryEvent:
        async with self._session() as session:
            session.add(event)
            await session.commit()
            return event

    async def get_event(self, event_id: UUID) -> WebhookDeliveryEvent | None:
        async with self._session() as session:
            return await session.get(WebhookDeliveryEvent, event_id)

    async def begin_attempt(
        self, event_id: UUID
    ) -> tuple[WebhookDeliveryEvent, WebhookSubscription] | None:
        now = utcnow()
        async with self._session() as session:
            result = await session.execute(
                update(WebhookDeliveryEvent)
                .where(
                    WebhookDeliveryEvent.id == event_id,
                    WebhookDeliveryEvent.status == WebhookEventStatus.PENDING.value,
                )
                .values(
                    attempts=WebhookDeliveryEvent.attempts + 1,
                    last_attempt_at=now,
                    updated_at=now,
                )
                .returning(WebhookDeliveryEvent)
            )
            event = result.scalar_one_or_none()
            if event is None:
                await session.rollback()
                return None
            subscription = await session.get(WebhookSubscription, event.webhook_id)
            await session.commit()
            if subscription is None:
                return None
            return event, subscription

    async def record_attempt(
        self,
        event_id: UUID,
        status: WebhookEventStatus,
        *,
        response_status: int | None,
        response_body: str | None,
        response_time_ms: int | None,
        error_message: str | None,
        next_retry_at: datetime | None,
    ) -> None:
        async with self._session() as session:
            await session.execute(
                update(WebhookDeliveryEvent)
                .where(WebhookDeliveryEvent.id == event_id)
                .values(
                    status=status.value,
                    response_status=response_status,
                    response_body=response_body,
                    response_time_ms=response_time_ms,
                    error_message=error_message,
                    next_retry_at=next_retry_at,
                    updated_at=utcnow(),
                )
            )
            await session.commit()

    async def list_events(
        self,
        webhook_id: UUID,
        status: WebhookEventStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[WebhookDeliveryEvent], int]:
        query = select(WebhookDeliveryEvent).where(
            WebhookDeliveryEvent.webhook_id == webhook_id
        )
        if status is not None:
            query = query.where(WebhookDeliveryEvent.status == status.value)

        async with self._session() as session:
            total = await session.scalar(
                select(func.count()).select_from(query.subquery())
            )
            result = await session.execute(
                query.order_by(desc(WebhookDeliveryEvent.created_at))
                .offset(offset)
                .limit(limit)
            )
            return list(result.scalars().all()), total or 0

    async def due_retries(self, now: datetime, limit: int) -> list[WebhookDeliveryEvent]:
        async with self._session() as session:
            result = await session.execute(
                select(WebhookDeliveryEvent)
                .where(
                    WebhookDeliveryEvent.status == WebhookEventStatus.PENDING.value,
                    WebhookDeliveryEvent.next_retry_at.is_not(None),
                    WebhookDeliveryEvent.next_retry_at <= now,
                )
                .order_by(WebhookDeliveryEvent.next_retry_at)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def reset_for_redelivery(self, event_id: UUID) -> WebhookDeliveryEvent | None:
        async with self._session() as session:
            result = await session.execute(
                update(WebhookDeliveryEvent)
                .where(
                    WebhookDeliveryEvent.id == event_id,
                    WebhookDeliveryEvent.status != WebhookEventStatus.DELIVERED.value,
                )
                .values(
                    status=WebhookEventStatus.PENDING.value,
                    next_retry_at=None,
                    updated_at=utcnow(),
                )
                .returning(WebhookDeliveryEvent)
            )
            event = result.scalar_one_or_none()
            await session.commit()
            return event

    async def delete_events(self, statuses: Iterable[str], older_than: datetime) -> int:
        async with self._session() as session:
            result = await session.execute(
                delete(WebhookDeliveryEvent).where(
                    WebhookDeliveryEvent.status.in_(list(statuses)),
                    WebhookDeliveryEvent.updated_at < older_than,
                )
            )
            await session.commit()
            return result.rowcount

    async def ping(self) -> None:
        await self.database.ping()
