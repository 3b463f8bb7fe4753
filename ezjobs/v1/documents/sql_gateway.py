"""
Document gateway over the shared PostgreSQL database.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, select, update

from ezjobs.infra.database import Database
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


class SqlDocumentGateway:
    """Each call runs its own short transaction."""

    def __init__(self, database: Database):
        self.database = database

    def _session(self):
        return self.database.SessionLocal()

    async def _update(self, statement) -> int:
        async with self._session() as session:
            result = await session.execute(statement)
            await session.commit()
            return result.rowcount

    async def get_document(self, document_id: UUID) -> Document | None:
        async with self._session() as session:
            return await session.get(Document, document_id)

    async def list_signers(self, document_id: UUID) -> list[Signer]:
        async with self._session() as session:
            result = await session.execute(
                select(Signer)
                .where(Signer.document_id == document_id)
                .order_by(Signer.signing_order)
            )
            return list(result.scalars().all())

    async def get_signer(self, signer_id: UUID) -> Signer | None:
        async with self._session() as session:
            return await session.get(Signer, signer_id)

    async def get_user(self, user_id: UUID) -> User | None:
        async with self._session() as session:
            return await session.get(User, user_id)

    async def mark_scheduled(
        self, document_id: UUID, send_at: datetime, timezone: str | None, job_id: str
    ) -> bool:
        rows = await self._update(
            update(Document)
            .where(Document.id == document_id)
            .values(
                status=DocumentStatus.SCHEDULED.value,
                scheduled_send_at=send_at,
                scheduled_timezone=timezone,
                schedule_job_id=job_id,
                updated_at=utcnow(),
            )
        )
        return rows > 0

    async def release_scheduled(self, document_id: UUID) -> bool:
        rows = await self._update(
            update(Document)
            .where(
                Document.id == document_id,
                Document.status == DocumentStatus.SCHEDULED.value,
            )
            .values(
                status=DocumentStatus.PENDING.value,
                scheduled_send_at=None,
                scheduled_timezone=None,
                schedule_job_id=None,
                updated_at=utcnow(),
            )
        )
        return rows > 0

    async def reset_to_draft(self, document_id: UUID) -> bool:
        rows = await self._update(
            update(Document)
            .where(Document.id == document_id)
            .values(
                status=DocumentStatus.DRAFT.value,
                scheduled_send_at=None,
                scheduled_timezone=None,
                schedule_job_id=None,
                updated_at=utcnow(),
            )
        )
        return rows > 0

    async def mark_signer_notified(self, signer_id: UUID) -> None:
        await self._update(
            update(Signer)
            .where(Signer.id == signer_id)
            .values(status=SignerStatus.PENDING.value, updated_at=utcnow())
        )

    async def record_thumbnail(self, document_id: UUID, thumbnail_path: str) -> None:
        await self._update(
            update(Document)
            .where(Document.id == document_id)
            .values(thumbnail_path=thumbnail_path, thumbnail_generated_at=utcnow())
        )

    async def record_optimization(
        self, document_id: UUID, original_size: int, optimized_size: int
    ) -> None:
        await self._update(
            update(Document)
            .where(Document.id == document_id)
            .values(
                is_optimized=True,
                original_file_size=original_size,
                file_size=optimized_size,
                optimized_at=utcnow(),
            )
        )

    async def document_file_paths(self) -> set[str]:
        async with self._session() as session:
            result = await session.execute(
                select(Document.file_path).where(Document.file_path.is_not(None))
            )
            return set(result.scalars().all())

    async def signature_file_paths(self) -> set[str]:
        async with self._session() as session:
            result = await session.execute(
                select(Signature.signature_data).where(
                    Signature.signature_data.is_not(None)
                )
            )
            return set(result.scalars().all())

    async def find_reminder(
        self, document_id: UUID, signer_id: UUID | None, reminder_type: str
    ) -> DocumentReminder | None:
        signer_clause = (
            DocumentReminder.signer_id.is_(None)
            if signer_id is None
            else DocumentReminder.signer_id == signer_id
        )
        async with self._session() as session:
            result = await session.execute(
                select(DocumentReminder)
                .where(
                    DocumentReminder.document_id == document_id,
                    signer_clause,
                    DocumentReminder.reminder_type == reminder_type,
                )
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def add_reminder(self, reminder: DocumentReminder) -> DocumentReminder:
        async with self._session() as session:
            session.add(reminder)
            await session.commit()
            return reminder

    async def set_reminder_job(self, reminder_id: UUID, job_id: UUID) -> None:
        await self._update(
            update(DocumentReminder)
            .where(DocumentReminder.id == reminder_id)
            .values(job_id=job_id)
        )

    async def unsent_reminders(
        self, document_id: UUID | None = None, signer_id: UUID | None = None
    ) -> list[DocumentReminder]:
        query = select(DocumentReminder).where(DocumentReminder.sent_at.is_(None))
        if document_id is not None:
            query = query.where(DocumentReminder.document_id == document_id)
        if signer_id is not None:
            query = query.where(DocumentReminder.signer_id == signer_id)
        async with self._session() as session:
            result = await session.execute(
                query.order_by(DocumentReminder.scheduled_for)
            )
            return list(result.scalars().all())

    async def delete_reminder(self, reminder_id: UUID) -> bool:
        rows = await self._update(
            delete(DocumentReminder).where(DocumentReminder.id == reminder_id)
        )
        return rows > 0

    async def mark_reminder_sent(self, reminder_id: UUID) -> None:
        await self._update(
            update(DocumentReminder)
            .where(DocumentReminder.id == reminder_id)
            .values(sent_at=utcnow())
        )
