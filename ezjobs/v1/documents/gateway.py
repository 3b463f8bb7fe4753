"""
Narrow access to documents, signers and reminders for job handlers.
"""

import asyncio
from datetime import datetime
from typing import Protocol
from uuid import UUID

from ezjobs.v1.documents.models import (
    Document,
    DocumentReminder,
    DocumentStatus,
    Signature,
    Signer,
    SignerStatus,
    User,
)
from ezjobs.v1.infra.jobs.models import utcnow


class DocumentGateway(Protocol):
    async def get_document(self, document_id: UUID) -> Document | None: ...

    async def list_signers(self, document_id: UUID) -> list[Signer]:
        """Signers of a document ordered by ``signing_order``."""
        ...

    async def get_signer(self, signer_id: UUID) -> Signer | None: ...

    async def get_user(self, user_id: UUID) -> User | None: ...

    async def mark_scheduled(
        self, document_id: UUID, send_at: datetime, timezone: str | None, job_id: str
    ) -> bool: ...

    async def release_scheduled(self, document_id: UUID) -> bool:
        """Move a scheduled document to pending; False if it is no longer scheduled."""
        ...

    async def reset_to_draft(self, document_id: UUID) -> bool: ...

    async def mark_signer_notified(self, signer_id: UUID) -> None: ...

    async def record_thumbnail(self, document_id: UUID, thumbnail_path: str) -> None: ...

    async def record_optimization(
        self, document_id: UUID, original_size: int, optimized_size: int
    ) -> None: ...

    async def document_file_paths(self) -> set[str]: ...

    async def signature_file_paths(self) -> set[str]: ...

    async def find_reminder(
        self, document_id: UUID, signer_id: UUID | None, reminder_type: str
    ) -> DocumentReminder | None: ...

    async def add_reminder(self, reminder: DocumentReminder) -> DocumentReminder: ...

    async def set_reminder_job(self, reminder_id: UUID, job_id: UUID) -> None: ...

    async def unsent_reminders(
        self, document_id: UUID | None = None, signer_id: UUID | None = None
    ) -> list[DocumentReminder]: ...

    async def delete_reminder(self, reminder_id: UUID) -> bool: ...

    async def mark_reminder_sent(self, reminder_id: UUID) -> None: ...


class MemoryDocumentGateway:
    """In-process gateway for development and tests."""

    def __init__(self):
        self.documents: dict[UUID, Document] = {}
        self.signers: dict[UUID, Signer] = {}
        self.users: dict[UUID, User] = {}
        self.signatures: dict[UUID, Signature] = {}
        self.reminders: dict[UUID, DocumentReminder] = {}
        self._lock = asyncio.Lock()

    def add(self, *records: Document | Signer | User | Signature) -> None:
        """Seed records."""
        tables = {
            Document: self.documents,
            Signer: self.signers,
            User: self.users,
            Signature: self.signatures,
        }
        for record in records:
            tables[type(record)][record.id] = record

    async def get_document(self, document_id: UUID) -> Document | None:
        return self.documents.get(document_id)

    async def list_signers(self, document_id: UUID) -> list[Signer]:
        signers = [s for s in self.signers.values() if s.document_id == document_id]
        return sorted(signers, key=lambda s: s.signing_order)

    async def get_signer(self, signer_id: UUID) -> Signer | None:
        return self.signers.get(signer_id)

    async def get_user(self, user_id: UUID) -> User | None:
        return self.users.get(user_id)

    async def mark_scheduled(
        self, document_id: UUID, send_at: datetime, timezone: str | None, job_id: str
    ) -> bool:
        async with self._lock:
            doc = self.documents.get(document_id)
            if doc is None:
                return False
            doc.status = DocumentStatus.SCHEDULED.value
            doc.scheduled_send_at = send_at
            doc.scheduled_timezone = timezone
            doc.schedule_job_id = job_id
            doc.updated_at = utcnow()
            return True

    async def release_scheduled(self, document_id: UUID) -> bool:
        async with self._lock:
            doc = self.documents.get(document_id)
            if doc is None or doc.status != DocumentStatus.SCHEDULED.value:
                return False
            doc.status = DocumentStatus.PENDING.value
            doc.scheduled_send_at = None
            doc.scheduled_timezone = None
            doc.schedule_job_id = None
            doc.updated_at = utcnow()
            return True

    async def reset_to_draft(self, document_id: UUID) -> bool:
        async with self._lock:
            doc = self.documents.get(document_id)
            if doc is None:
                return False
            doc.status = DocumentStatus.DRAFT.value
            doc.scheduled_send_at = None
            doc.scheduled_timezone = None
            doc.schedule_job_id = None
            doc.updated_at = utcnow()
            return True

    async def mark_signer_notified(self, signer_id: UUID) -> None:
        signer = self.signers.get(signer_id)
        if signer is not None:
            signer.status = SignerStatus.PENDING.value
            signer.updated_at = utcnow()

    async def record_thumbnail(self, document_id: UUID, thumbnail_path: str) -> None:
        doc = self.documents.get(document_id)
        if doc is not None:
            doc.thumbnail_path = thumbnail_path
            doc.thumbnail_generated_at = utcnow()

    async def record_optimization(
        self, document_id: UUID, original_size: int, optimized_size: int
    ) -> None:
        doc = self.documents.get(document_id)
        if doc is not None:
            doc.is_optimized = True
            doc.original_file_size = original_size
            doc.file_size = optimized_size
            doc.optimized_at = utcnow()

    async def document_file_paths(self) -> set[str]:
        return {d.file_path for d in self.documents.values() if d.file_path}

    async def signature_file_paths(self) -> set[str]:
        return {s.signature_data for s in self.signatures.values() if s.signature_data}

    async def find_reminder(
        self, document_id: UUID, signer_id: UUID | None, reminder_type: str
    ) -> DocumentReminder | None:
        for reminder in self.reminders.values():
            if (
                reminder.document_id == document_id
                and reminder.signer_id == signer_id
                and reminder.reminder_type == reminder_type
            ):
                return reminder
        return None

    async def add_reminder(self, reminder: DocumentReminder) -> DocumentReminder:
        async with self._lock:
            self.reminders[reminder.id] = reminder
            return reminder

    async def set_reminder_job(self, reminder_id: UUID, job_id: UUID) -> None:
        reminder = self.reminders.get(reminder_id)
        if reminder is not None:
            reminder.job_id = job_id

    async def unsent_reminders(
        self, document_id: UUID | None = None, signer_id: UUID | None = None
    ) -> list[DocumentReminder]:
        reminders = [
            r
            for r in self.reminders.values()
            if r.sent_at is None
            and (document_id is None or r.document_id == document_id)
            and (signer_id is None or r.signer_id == signer_id)
        ]
        return sorted(reminders, key=lambda r: r.scheduled_for)

    async def delete_reminder(self, reminder_id: UUID) -> bool:
        async with self._lock:
            return self.reminders.pop(reminder_id, None) is not None

    async def mark_reminder_sent(self, reminder_id: UUID) -> None:
        reminder = self.reminders.get(reminder_id)
        if reminder is not None:
            reminder.sent_at = utcnow()
