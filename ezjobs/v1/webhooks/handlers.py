"""
Job handlers for the webhook-delivery queue.
"""

import logging
from typing import Any
from uuid import UUID

from ezjobs.v1.infra.jobs.payloads import WebhookDeliveryPayload, WebhookRetrySweepPayload
from ezjobs.v1.infra.jobs.worker import ActiveJob
from ezjobs.v1.webhooks.delivery import (
    DeliveryOutcome,
    WebhookDeliveryError,
    WebhookDeliveryService,
)
from ezjobs.v1.webhooks.service import WebhookService

logger = logging.getLogger(__name__)


class WebhookDeliveryHandler:
    """
    Performs one delivery attempt for the event named in the payload.

    Payload expected:
    {
        "eventId": "uuid-string"
    }

    A scheduled event retry completes the job; the sweep queues a new job
    when the retry is due. Only a terminal event failure fails the job, so
    job-level retries and the dead letter queue take over from there.
    """

    def __init__(self, delivery: WebhookDeliveryService):
        self.delivery = delivery

    async def handle(self, job: ActiveJob) -> dict[str, Any] | None:
        payload: WebhookDeliveryPayload = job.payload
        event_id = UUID(payload.event_id)

        outcome = await self.delivery.process_event(event_id)
        if outcome == DeliveryOutcome.FAILED:
            event = await self.delivery.store.get_event(event_id)
            raise WebhookDeliveryError(
                event_id, (event.error_message if event else None) or "delivery failed"
            )
        return {"eventId": str(event_id), "outcome": outcome.value}


class WebhookRetrySweepHandler:
    """Queues transport jobs for events whose ladder retry time has passed."""

    def __init__(self, webhooks: WebhookService):
        self.webhooks = webhooks

    async def handle(self, job: ActiveJob) -> dict[str, Any] | None:
        payload: WebhookRetrySweepPayload = job.payload
        queued = await self.webhooks.enqueue_due_retries(limit=payload.limit)
        return {"queued": queued}
