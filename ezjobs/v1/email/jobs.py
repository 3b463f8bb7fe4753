"""
Email queue producer and handler.
"""

import logging
from typing import Any

from ezjobs.infra.email import EmailMessage, EmailSender
from ezjobs.v1.infra.jobs.payloads import JobType, SendEmailPayload
from ezjobs.v1.infra.jobs.queue import EnqueueResult, Queue
from ezjobs.v1.infra.jobs.worker import ActiveJob

logger = logging.getLogger(__name__)


class EmailJobService:
    def __init__(self, queue: Queue):
        self.queue = queue

    async def queue_email(
        self, message: EmailMessage, *, priority: int | None = None
    ) -> EnqueueResult:
        """Send an email through the worker pool instead of inline."""
        return await self.queue.enqueue(
            JobType.SEND_EMAIL,
            SendEmailPayload(
                to=message.to,
                subject=message.subject,
                html=message.html,
                text=message.text,
            ),
            priority=priority,
        )


class SendEmailHandler:
    def __init__(self, email: EmailSender):
        self.email = email

    async def handle(self, job: ActiveJob) -> dict[str, Any] | None:
        payload: SendEmailPayload = job.payload
        await self.email.send_email(
            EmailMessage(
                to=payload.to,
                subject=payload.subject,
                html=payload.html,
                text=payload.text,
            )
        )
        return {"sent": True, "to": payload.to}
