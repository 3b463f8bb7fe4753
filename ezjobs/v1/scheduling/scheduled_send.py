"""
Scheduled document sending.

A scheduled send is one delayed job per document. Rescheduling replaces the
pending job; cancelling removes it and returns the document to draft. The
handler re-checks the document, so a job that outlives its schedule is a
no-op.
"""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from ezjobs.infra.email import EmailSender, SigningRequestEmail
from ezjobs.v1.core.exceptions import ConflictError, NotFoundError, ValidationError
from ezjobs.v1.documents.gateway import DocumentGateway
from ezjobs.v1.documents.models import (
    DocumentStatus,
    Signer,
    SignerStatus,
    User,
    WorkflowType,
)
from ezjobs.v1.infra.jobs.backoff import exponential_ms
from ezjobs.v1.infra.jobs.models import utcnow
from ezjobs.v1.infra.jobs.payloads import JobType, ScheduledSendPayload
from ezjobs.v1.infra.jobs.queue import EnqueueResult, Queue
from ezjobs.v1.infra.jobs.worker import ActiveJob

logger = logging.getLogger(__name__)

SCHEDULED_SEND_ATTEMPTS = 3
SCHEDULED_SEND_BACKOFF = exponential_ms(60000)


class ScheduledSendError(Exception):
    """Raised when a scheduled document cannot be sent."""


def scheduled_send_key(document_id: UUID | str) -> str:
    return f"scheduled-send-{document_id}"


def signing_url(app_url: str, signer: Signer) -> str:
    return f"{app_url.rstrip('/')}/sign/{signer.access_token}"


class ScheduledSendService:
    def __init__(self, queue: Queue, documents: DocumentGateway):
        self.queue = queue
        self.documents = documents

    async def schedule_document_send(
        self,
        document_id: UUID,
        user_id: str,
        send_at: datetime,
        timezone: str | None = None,
    ) -> EnqueueResult:
        """
        Schedule a document to be sent at ``send_at``.

        Any earlier pending schedule for the document is replaced. Raises
        ValidationError when ``send_at`` is not in the future and
        ConflictError when the previous send is already running.
        """
        if send_at.tzinfo is None:
            send_at = send_at.replace(tzinfo=UTC)
        delay = (send_at - utcnow()).total_seconds()
        if delay <= 0:
            raise ValidationError(
                "Scheduled time must be in the future",
                {"send_at": send_at.isoformat()},
            )

        if await self.documents.get_document(document_id) is None:
            raise NotFoundError("Document not found", {"document_id": str(document_id)})

        key = scheduled_send_key(document_id)
        removed = await self.queue.remove_by_key(key)
        if removed:
            logger.info(
                "Removed existing scheduled send",
                extra={"document_id": str(document_id), "removed": removed},
            )
        if await self.queue.store.find_live_job(self.queue.name, key) is not None:
            raise ConflictError(
                "Document is being sent right now", {"document_id": str(document_id)}
            )

        result = await self.queue.enqueue(
            JobType.SCHEDULED_SEND,
            ScheduledSendPayload(
                document_id=str(document_id),
                scheduled_at=send_at.isoformat(),
                timezone=timezone,
                user_id=user_id,
            ),
            delay=delay,
            max_attempts=SCHEDULED_SEND_ATTEMPTS,
            backoff=SCHEDULED_SEND_BACKOFF,
            dedupe_key=key,
        )
        await self.documents.mark_scheduled(
            document_id, send_at, timezone, str(result.job_id)
        )

        logger.info(
            "Document scheduled for sending",
            extra={
                "document_id": str(document_id),
                "job_id": str(result.job_id),
                "scheduled_at": send_at.isoformat(),
                "timezone": timezone,
                "delay_s": delay,
            },
        )
        return result

    async def cancel_scheduled_send(self, document_id: UUID) -> int:
        """Remove the pending send job and return the document to draft."""
        if await self.documents.get_document(document_id) is None:
            raise NotFoundError("Document not found", {"document_id": str(document_id)})

        removed = await self.queue.remove_by_key(scheduled_send_key(document_id))
        await self.documents.reset_to_draft(document_id)
        logger.info(
            "Scheduled send cancelled",
            extra={"document_id": str(document_id), "removed": removed},
        )
        return removed


class ScheduledSendHandler:
    """
    Sends a scheduled document to its signers.

    Payload expected:
    {
        "documentId": "uuid-string",
        "scheduledAt": "iso-8601",
        "userId": "sender id",
        "timezone": "Europe/Berlin"  # optional
    }
    """

    def __init__(self, documents: DocumentGateway, email: EmailSender, app_url: str):
        self.documents = documents
        self.email = email
        self.app_url = app_url

    async def handle(self, job: ActiveJob) -> dict[str, Any] | None:
        payload: ScheduledSendPayload = job.payload
        document_id = UUID(payload.document_id)

        await job.update_progress(10)
        document = await self.documents.get_document(document_id)
        if document is None:
            logger.warning(
                "Document not found for scheduled send",
                extra={"document_id": str(document_id)},
            )
            return _skipped("document_not_found")
        if document.status != DocumentStatus.SCHEDULED.value:
            logger.info(
                "Document no longer scheduled, skipping",
                extra={"document_id": str(document_id), "current_status": document.status},
            )
            return _skipped("not_scheduled")

        await job.update_progress(20)
        signers = await self.documents.list_signers(document_id)
        if not signers:
            raise ScheduledSendError(f"No signers found for document {document_id}")

        await job.update_progress(40)
        if not await self.documents.release_scheduled(document_id):
            return _skipped("not_scheduled")

        await job.update_progress(60)
        sender = await self._sender(payload.user_id, document.user_id)
        sender_email = sender.email if sender else "Unknown"
        sender_name = sender_email.split("@")[0]

        pending = [s for s in signers if s.status == SignerStatus.PENDING.value]
        if document.workflow == WorkflowType.SEQUENTIAL:
            recipients = pending[:1]
        else:
            recipients = pending

        results = await asyncio.gather(
            *(self._notify(s, document.title, sender_name) for s in recipients)
        )

        await job.update_progress(80)
        notified = sum(results)
        await job.update_progress(100)

        logger.info(
            "Scheduled send completed",
            extra={
                "document_id": str(document_id),
                "signer_count": len(signers),
                "notified": notified,
                "workflow_type": document.workflow.value,
            },
        )
        return {
            "success": True,
            "sentAt": utcnow().isoformat(),
            "notified": notified,
            "failed": len(recipients) - notified,
        }

    async def _sender(self, user_id: str, owner_id: UUID) -> User | None:
        # Principals from dev auth carry non-UUID ids; fall back to the owner.
        try:
            return await self.documents.get_user(UUID(user_id))
        except ValueError:
            return await self.documents.get_user(owner_id)

    async def _notify(self, signer: Signer, document_title: str, sender_name: str) -> bool:
        """Send one signing request; a failure is logged and does not affect others."""
        try:
            await self.email.send_signing_request(
                SigningRequestEmail(
                    recipient_email=signer.email,
                    recipient_name=signer.name or signer.email,
                    document_title=document_title,
                    sender_name=sender_name,
                    signing_url=signing_url(self.app_url, signer),
                )
            )
            await self.documents.mark_signer_notified(signer.id)
            return True
        except Exception as e:
            logger.error(
                "Failed to send signing email",
                extra={"signer_id": str(signer.id), "error": str(e)},
            )
            return False


def _skipped(reason: str) -> dict[str, Any]:
    return {"success": False, "reason": reason, "sentAt": utcnow().isoformat()}
