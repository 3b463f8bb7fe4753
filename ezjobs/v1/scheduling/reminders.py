"""
Deadline reminders for documents awaiting signatures.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

from ezjobs.infra.email import EmailSender, ReminderEmail
from ezjobs.v1.core.exceptions import NotFoundError
from ezjobs.v1.documents.gateway import DocumentGateway
from ezjobs.v1.documents.models import DocumentReminder, DocumentStatus, SignerStatus
from ezjobs.v1.infra.jobs.models import utcnow
from ezjobs.v1.infra.jobs.payloads import DeadlineReminderPayload, JobType, ReminderType
from ezjobs.v1.infra.jobs.queue import Queue
from ezjobs.v1.infra.jobs.worker import ActiveJob
from ezjobs.v1.scheduling.scheduled_send import signing_url

logger = logging.getLogger(__name__)


def reminder_key(reminder_id: UUID) -> str:
    return f"reminder-{reminder_id}"


def reminder_type_for(days: int) -> ReminderType:
    try:
        return ReminderType(f"{days}_day")
    except ValueError:
        return ReminderType.CUSTOM


class ReminderService:
    def __init__(self, queue: Queue, documents: DocumentGateway):
        self.queue = queue
        self.documents = documents

    async def schedule_reminders_for_document(
        self, document_id: UUID
    ) -> list[DocumentReminder]:
        """
        Schedule one reminder per pending signer and configured interval.

        Intervals are days before ``expires_at``; reminder times already in
        the past are skipped, as are reminders that already exist.
        """
        document = await self.documents.get_document(document_id)
        if document is None:
            raise NotFoundError("Document not found", {"document_id": str(document_id)})
        if document.expires_at is None:
            logger.debug(
                "No expiration date, skipping reminder scheduling",
                extra={"document_id": str(document_id)},
            )
            return []
        settings = document.reminders
        if not settings.get("enabled", True):
            return []

        signers = [
            s
            for s in await self.documents.list_signers(document_id)
            if s.status == SignerStatus.PENDING.value
        ]
        now = utcnow()
        created: list[DocumentReminder] = []

        for days in settings.get("intervals", []):
            remind_at = document.expires_at - timedelta(days=days)
            if remind_at <= now:
                continue
            for signer in signers:
                try:
                    reminder = await self.schedule_reminder(
                        document_id, signer.id, reminder_type_for(days), remind_at
                    )
                except Exception:
                    logger.warning(
                        "Failed to schedule reminder for signer",
                        extra={"document_id": str(document_id), "signer_id": str(signer.id)},
                        exc_info=True,
                    )
                    continue
                if reminder is not None:
                    created.append(reminder)

        logger.info(
            "Scheduled reminders for document",
            extra={"document_id": str(document_id), "reminder_count": len(created)},
        )
        return created

    async def schedule_reminder(
        self,
        document_id: UUID,
        signer_id: UUID | None,
        reminder_type: ReminderType,
        scheduled_for: datetime,
    ) -> DocumentReminder | None:
        """Record and queue one reminder; None when it already exists."""
        if await self.documents.find_reminder(document_id, signer_id, reminder_type.value):
            return None

        reminder = await self.documents.add_reminder(
            DocumentReminder(
                id=uuid4(),
                document_id=document_id,
                signer_id=signer_id,
                reminder_type=reminder_type.value,
                scheduled_for=scheduled_for,
                created_at=utcnow(),
            )
        )
        try:
            result = await self.queue.enqueue(
                JobType.DEADLINE_REMINDER,
                DeadlineReminderPayload(
                    document_id=str(document_id),
                    signer_id=str(signer_id) if signer_id else None,
                    reminder_type=reminder_type,
                    reminder_id=str(reminder.id),
                ),
                delay=max(0.0, (scheduled_for - utcnow()).total_seconds()),
                dedupe_key=reminder_key(reminder.id),
            )
            await self.documents.set_reminder_job(reminder.id, result.job_id)
        except Exception:
            # Every reminder row has a queued job.
            await self.queue.remove_by_key(reminder_key(reminder.id))
            await self.documents.delete_reminder(reminder.id)
            raise
        reminder.job_id = result.job_id
        return reminder

    async def cancel_reminders_for_document(self, document_id: UUID) -> int:
        return await self._cancel(
            await self.documents.unsent_reminders(document_id=document_id)
        )

    async def cancel_reminders_for_signer(self, signer_id: UUID) -> int:
        """Used when a signer signs or declines."""
        return await self._cancel(await self.documents.unsent_reminders(signer_id=signer_id))

    async def _cancel(self, reminders: list[DocumentReminder]) -> int:
        cancelled = 0
        for reminder in reminders:
            try:
                await self.queue.remove_by_key(reminder_key(reminder.id))
                await self.documents.delete_reminder(reminder.id)
                cancelled += 1
            except Exception:
                logger.warning(
                    "Failed to cancel reminder",
                    extra={"reminder_id": str(reminder.id)},
                    exc_info=True,
                )
        if cancelled:
            logger.info("Cancelled reminders", extra={"cancelled_count": cancelled})
        return cancelled


class DeadlineReminderHandler:
    """Emails a pending signer that a document deadline is approaching."""

    def __init__(self, documents: DocumentGateway, email: EmailSender, app_url: str):
        self.documents = documents
        self.email = email
        self.app_url = app_url

    async def handle(self, job: ActiveJob) -> dict[str, Any] | None:
        payload: DeadlineReminderPayload = job.payload
        document_id = UUID(payload.document_id)

        document = await self.documents.get_document(document_id)
        if document is None:
            return _skipped("document_not_found", document_id)
        if document.status != DocumentStatus.PENDING.value:
            return _skipped("document_not_pending", document_id)
        if payload.signer_id is None:
            # Owner notifications are recorded but not emailed.
            return _skipped("owner_notification", document_id)

        signer = await self.documents.get_signer(UUID(payload.signer_id))
        if signer is None:
            return _skipped("signer_not_found", document_id)
        if signer.status != SignerStatus.PENDING.value:
            return _skipped("signer_not_pending", document_id)

        days_remaining = 0
        if document.expires_at is not None:
            seconds = (document.expires_at - utcnow()).total_seconds()
            days_remaining = max(0, math.ceil(seconds / 86400))

        owner = await self.documents.get_user(document.user_id)
        sender_name = (owner.name or owner.email.split("@")[0]) if owner else "EzSign"

        await self.email.send_reminder(
            ReminderEmail(
                recipient_email=signer.email,
                recipient_name=signer.name or signer.email,
                document_title=document.title,
                sender_name=sender_name,
                signing_url=signing_url(self.app_url, signer),
                days_remaining=days_remaining,
                document_id=str(document_id),
                signer_id=str(signer.id),
            )
        )
        await self.documents.mark_reminder_sent(UUID(payload.reminder_id))

        logger.info(
            "Deadline reminder sent",
            extra={
                "document_id": str(document_id),
                "signer_id": str(signer.id),
                "reminder_type": payload.reminder_type.value,
                "days_remaining": days_remaining,
            },
        )
        return {"sent": True, "daysRemaining": days_remaining}


def _skipped(reason: str, document_id: UUID) -> dict[str, Any]:
    logger.info(
        "Skipping deadline reminder",
        extra={"document_id": str(document_id), "reason": reason},
    )
    return {"skipped": True, "reason": reason}
