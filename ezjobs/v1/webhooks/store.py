"""
Persistence contract for webhook subscriptions and delivery events.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime
from typing import Any
from uuid import UUID

from ezjobs.v1.infra.jobs.models import utcnow
from ezjobs.v1.webhooks.models import (
    WebhookDeliveryEvent,
    WebhookEventStatus,
    WebhookSubscription,
)

SUBSCRIPTION_FIELDS = frozenset({"url", "events", "active"})


class WebhookStore(ABC):
    # Subscriptions

    @abstractmethod
    async def add_subscription(
        self, subscription: WebhookSubscription
    ) -> WebhookSubscription: ...

    @abstractmethod
    async def get_subscription(self, webhook_id: UUID) -> WebhookSubscription | None: ...

    @abstractmethod
    async def list_subscriptions(self, owner_id: str) -> list[WebhookSubscription]:
        """All of an owner's subscriptions, newest first."""

    @abstractmethod
    async def active_subscriptions(self, owner_id: str) -> list[WebhookSubscription]: ...

    @abstractmethod
    async def update_subscription(
        self, webhook_id: UUID, owner_id: str, changes: dict[str, Any]
    ) -> WebhookSubscription | None: ...

    @abstractmethod
    async def delete_subscription(self, webhook_id: UUID, owner_id: str) -> bool: ...

    # Delivery events

    @abstractmethod
    async def add_event(self, event: WebhookDeliveryEvent) -> WebhookDeliveryEvent: ...

    @abstractmethod
    async def get_event(self, event_id: UUID) -> WebhookDeliveryEvent | None: ...

    @abstractmethod
    async def begin_attempt(
        self, event_id: UUID
    ) -> tuple[WebhookDeliveryEvent, WebhookSubscription] | None:
        """
        Count one delivery attempt.

        Increments ``attempts`` only for a pending event and returns it with
        its subscription. Missing, delivered and failed events return None.
        """

    @abstractmethod
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
    ) -> None: ...

    @abstractmethod
    async def list_events(
        self,
        webhook_id: UUID,
        status: WebhookEventStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[WebhookDeliveryEvent], int]: ...

    @abstractmethod
    async def due_retries(self, now: datetime, limit: int) -> list[WebhookDeliveryEvent]:
        """Pending events whose ``next_retry_at`` has passed, oldest first."""

    @abstractmethod
    async def reset_for_redelivery(self, event_id: UUID) -> WebhookDeliveryEvent | None:
        """Return a non-delivered event to pending for an immediate attempt."""

    @abstractmethod
    async def delete_events(self, statuses: Iterable[str], older_than: datetime) -> int: ...

    async def ping(self) -> None:
        return None


class MemoryWebhookStore(WebhookStore):
    """Dict-backed store for single-process development and tests."""

    def __init__(self):
        self.subscriptions: dict[UUID, WebhookSubscription] = {}
        self.events: dict[UUID, WebhookDeliveryEvent] = {}
        self._lock = asyncio.Lock()

    async def add_subscription(
        self, subscription: WebhookSubscription
    ) -> WebhookSubscription:
        async with self._lock:
            self.subscriptions[subscription.id] = subscription
            return subscription

    async def get_subscription(self, webhook_id: UUID) -> WebhookSubscription | None:
        return self.subscriptions.get(webhook_id)

    async def list_subscriptions(self, owner_id: str) -> list[WebhookSubscription]:
        owned = [s for s in self.subscriptions.values() if s.owner_id == owner_id]
        return sorted(owned, key=lambda s: s.created_at, reverse=True)

    async def active_subscriptions(self, owner_id: str) -> list[WebhookSubscription]:
        return [s for s in await self.list_subscriptions(owner_id) if s.active]

    async def update_subscription(
        self, webhook_id: UUID, owner_id: str, changes: dict[str, Any]
    ) -> WebhookSubscription | None:
        async with self._lock:
            subscription = self.subscriptions.get(webhook_id)
            if subscription is None or subscription.owner_id != owner_id:
                return None
            for key, value in changes.items():
                if key in SUBSCRIPTION_FIELDS:
                    setattr(subscription, key, value)
            subscription.updated_at = utcnow()
            return subscription

    async def delete_subscription(self, webhook_id: UUID, owner_id: str) -> bool:
        async with self._lock:
            subscription = self.subscriptions.get(webhook_id)
            if subscription is None or subscription.owner_id != owner_id:
                return False
            del self.subscriptions[webhook_id]
            for event_id in [e.id for e in self.events.values() if e.webhook_id == webhook_id]:
                del self.events[event_id]
            return True

    async def add_event(self, event: WebhookDeliveryEvent) -> WebhookDeliveryEvent:
        async with self._lock:
            self.events[event.id] = event
            return event

    async def get_event(self, event_id: UUID) -> WebhookDeliveryEvent | None:
        return self.events.get(event_id)

    async def begin_attempt(
        self, event_id: UUID
    ) -> tuple[WebhookDeliveryEvent, WebhookSubscription] | None:
        async with self._lock:
            event = self.events.get(event_id)
            if event is None or not event.is_pending():
                return None
            subscription = self.subscriptions.get(event.webhook_id)
            if subscription is None:
                return None
            event.attempts += 1
            event.last_attempt_at = utcnow()
            event.updated_at = event.last_attempt_at
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
        async with self._lock:
            event = self.events.get(event_id)
            if event is None:
                return
            event.status = status.value
            event.response_status = response_status
            event.response_body = response_body
            event.response_time_ms = response_time_ms
            event.error_message = error_message
            event.next_retry_at = next_retry_at
            event.updated_at = utcnow()

    async def list_events(
        self,
        webhook_id: UUID,
        status: WebhookEventStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[WebhookDeliveryEvent], int]:
        events = [
            e
            for e in self.events.values()
            if e.webhook_id == webhook_id and (status is None or e.status == status.value)
        ]
        events.sort(key=lambda e: e.created_at, reverse=True)
        return events[offset : offset + limit], len(events)

    async def due_retries(self, now: datetime, limit: int) -> list[WebhookDeliveryEvent]:
        due = [
            e
            for e in self.events.values()
            if e.is_pending() and e.next_retry_at is not None and e.next_retry_at <= now
        ]
        due.sort(key=lambda e: e.next_retry_at)
        return due[:limit]

    async def reset_for_redelivery(self, event_id: UUID) -> WebhookDeliveryEvent | None:
        async with self._lock:
            event = self.events.get(event_id)
            if event is None or event.is_delivered():
                return None
            event.status = WebhookEventStatus.PENDING.value
            event.next_retry_at = None
            event.updated_at = utcnow()
            return event

    async def delete_events(self, statuses: Iterable[str], older_than: datetime) -> int:
        statuses = set(statuses)
        async with self._lock:
            stale = [
                e.id
                for e in self.events.values()
                if e.status in statuses and e.updated_at < older_than
            ]
            for event_id in stale:
                del self.events[event_id]
            return len(stale)
