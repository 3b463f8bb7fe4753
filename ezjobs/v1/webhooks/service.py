"""
Webhook subscriptions, event fan-out and retry scheduling.
"""

import logging
from datetime import timedelta
from typing import Any
from urllib.parse import urlparse
from uuid import UUID, uuid4

from ezjobs.v1.core.exceptions import ConflictError, NotFoundError, ValidationError
from ezjobs.v1.infra.jobs.models import utcnow
from ezjobs.v1.infra.jobs.payloads import JobType, WebhookDeliveryPayload
from ezjobs.v1.infra.jobs.queue import EnqueueResult, Queue
from ezjobs.v1.webhooks.models import (
    WebhookDeliveryEvent,
    WebhookEventStatus,
    WebhookSubscription,
    generate_secret,
)
from ezjobs.v1.webhooks.store import WebhookStore

logger = logging.getLogger(__name__)

MAX_EVENTS_PAGE = 100


def delivery_dedupe_key(event_id: UUID) -> str:
    return f"webhook-event:{event_id}"


def is_valid_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class WebhookService:
    """Owner-facing subscription management and the domain trigger entry point."""

    def __init__(self, store: WebhookStore, queue: Queue):
        self.store = store
        self.queue = queue

    # Subscriptions

    async def create_subscription(
        self,
        owner_id: str,
        url: str,
        events: list[str],
        secret: str | None = None,
        active: bool = True,
    ) -> WebhookSubscription:
        _validate_subscription(url, events)
        now = utcnow()
        subscription = WebhookSubscription(
            id=uuid4(),
            owner_id=owner_id,
            url=url,
            events=list(dict.fromkeys(events)),
            secret=secret or generate_secret(),
            active=active,
            created_at=now,
            updated_at=now,
        )
        await self.store.add_subscription(subscription)
        logger.info(
            "Webhook subscription created",
            extra={"webhook_id": str(subscription.id), "owner_id": owner_id},
        )
        return subscription

    async def list_subscriptions(self, owner_id: str) -> list[WebhookSubscription]:
        return await self.store.list_subscriptions(owner_id)

    async def get_subscription(
        self, webhook_id: UUID, owner_id: str
    ) -> WebhookSubscription:
        subscription = await self.store.get_subscription(webhook_id)
        if subscription is None or subscription.owner_id != owner_id:
            raise NotFoundError("Webhook not found", {"webhook_id": str(webhook_id)})
        return subscription

    async def update_subscription(
        self, webhook_id: UUID, owner_id: str, changes: dict[str, Any]
    ) -> WebhookSubscription:
        if "url" in changes or "events" in changes:
            current = await self.get_subscription(webhook_id, owner_id)
            _validate_subscription(
                changes.get("url", current.url), changes.get("events", current.events)
            )
        updated = await self.store.update_subscription(webhook_id, owner_id, changes)
        if updated is None:
            raise NotFoundError("Webhook not found", {"webhook_id": str(webhook_id)})
        return updated

    async def delete_subscription(self, webhook_id: UUID, owner_id: str) -> None:
        if not await self.store.delete_subscription(webhook_id, owner_id):
            raise NotFoundError("Webhook not found", {"webhook_id": str(webhook_id)})
        logger.info(
            "Webhook subscription deleted",
            extra={"webhook_id": str(webhook_id), "owner_id": owner_id},
        )

    # Delivery

    async def trigger(
        self, owner_id: str, event_type: str, payload: dict[str, Any]
    ) -> list[UUID]:
        """
        Fan a domain event out to every matching active subscription.

        Never raises: a webhook outage must not fail the domain action that
        triggered it. Returns the ids of the delivery events that were queued.
        """
        queued: list[UUID] = []
        try:
            subscriptions = await self.store.active_subscriptions(owner_id)
        except Exception:
            logger.exception(
                "Failed to resolve webhook subscriptions",
                extra={"owner_id": owner_id, "event_type": event_type},
            )
            return queued

        for subscription in subscriptions:
            if not subscription.listens_to_event(event_type):
                continue
            try:
                event = await self._create_event(subscription, event_type, payload)
                await self.enqueue_delivery(event.id)
                queued.append(event.id)
            except Exception:
                logger.exception(
                    "Failed to queue webhook delivery",
                    extra={
                        "webhook_id": str(subscription.id),
                        "owner_id": owner_id,
                        "event_type": event_type,
                    },
                )

        if queued:
            logger.info(
                "Webhook event triggered",
                extra={
                    "owner_id": owner_id,
                    "event_type": event_type,
                    "deliveries": len(queued),
                },
            )
        return queued

    async def _create_event(
        self,
        subscription: WebhookSubscription,
        event_type: str,
        payload: dict[str, Any],
    ) -> WebhookDeliveryEvent:
        now = utcnow()
        event_id = uuid4()
        event = WebhookDeliveryEvent(
            id=event_id,
            webhook_id=subscription.id,
            event_type=event_type,
            payload={
                "id": str(event_id),
                "event": event_type,
                "created_at": now.isoformat(),
                "data": payload,
            },
            status=WebhookEventStatus.PENDING.value,
            attempts=0,
            created_at=now,
            updated_at=now,
        )
        return await self.store.add_event(event)

    async def enqueue_delivery(self, event_id: UUID) -> EnqueueResult:
        return await self.queue.enqueue(
            JobType.WEBHOOK_DELIVERY,
            WebhookDeliveryPayload(event_id=str(event_id)),
            dedupe_key=delivery_dedupe_key(event_id),
        )

    async def enqueue_due_retries(self, limit: int = 100) -> int:
        """Queue a transport job for each pending event whose retry time has come."""
        due = await self.store.due_retries(utcnow(), limit)
        queued = 0
        for event in due:
            result = await self.enqueue_delivery(event.id)
            if not result.deduplicated:
                queued += 1
        if queued:
            logger.info(
                "Webhook retries queued",
                extra={"due_events": len(due), "queued": queued},
            )
        return queued

    async def list_events(
        self,
        webhook_id: UUID,
        owner_id: str,
        status: WebhookEventStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[WebhookDeliveryEvent], int]:
        await self.get_subscription(webhook_id, owner_id)
        limit = max(1, min(limit, MAX_EVENTS_PAGE))
        return await self.store.list_events(webhook_id, status, limit, max(0, offset))

    async def redeliver(self, event_id: UUID, owner_id: str) -> EnqueueResult:
        """Queue one more delivery attempt for an event that was not delivered."""
        event = await self.store.get_event(event_id)
        if event is not None:
            await self.get_subscription(event.webhook_id, owner_id)
        else:
            raise NotFoundError("Webhook event not found", {"event_id": str(event_id)})
        if event.is_delivered():
            raise ConflictError(
                "Webhook event was already delivered", {"event_id": str(event_id)}
            )

        if await self.store.reset_for_redelivery(event_id) is None:
            raise ConflictError(
                "Webhook event was delivered concurrently", {"event_id": str(event_id)}
            )
        result = await self.enqueue_delivery(event_id)
        logger.info(
            "Webhook event redelivery queued",
            extra={"event_id": str(event_id), "job_id": str(result.job_id)},
        )
        return result

    async def reset_for_job_retry(self, payload: dict[str, Any]) -> None:
        """Put a failed event back to pending before its dead transport job is retried."""
        event_id = UUID(WebhookDeliveryPayload.model_validate(payload).event_id)
        if await self.store.reset_for_redelivery(event_id) is not None:
            logger.info(
                "Webhook event reset for dead letter retry",
                extra={"event_id": str(event_id)},
            )

    async def cleanup_events(self, older_than_days: int) -> int:
        """Purge delivered and terminally failed events past the retention window."""
        cutoff = utcnow() - timedelta(days=older_than_days)
        deleted = await self.store.delete_events(
            [WebhookEventStatus.DELIVERED.value, WebhookEventStatus.FAILED.value], cutoff
        )
        logger.info(
            "Webhook event cleanup",
            extra={"deleted_count": deleted, "older_than_days": older_than_days},
        )
        return deleted


def _validate_subscription(url: str, events: list[str]) -> None:
    if not is_valid_url(url):
        raise ValidationError("Webhook URL must be an http(s) URL", {"url": url})
    if not events:
        raise ValidationError("At least one event type is required")
