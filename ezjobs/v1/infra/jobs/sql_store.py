"""
Postgres-backed job store.

Claims use SELECT FOR UPDATE SKIP LOCKED so several worker processes can
share a queue. Each method runs in its own short transaction.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import and_, asc, delete, desc, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from ezjobs.infra.database import Database
from ezjobs.v1.infra.dlq.models import DeadLetterEntry, DeadLetterStatus
from ezjobs.v1.infra.jobs.errors import JobStoreError
from ezjobs.v1.infra.jobs.models import (
    LIVE_STATUSES,
    PENDING_STATUSES,
    Job,
    JobStatus,
    RepeatableJob,
    utcnow,
)
from ezjobs.v1.infra.jobs.store import (
    DEAD_LETTER_SORT_FIELDS,
    JobStore,
    empty_counts,
    new_dead_letter,
)


class SqlJobStore(JobStore):
    """Job store on the shared SQLAlchemy engine."""

    def __init__(self, database: Database):
        self.database = database

    def _session(self):
        return self.database.SessionLocal()

    @staticmethod
    def _leased(job_id: UUID, locked_by: str | None):
        conditions = [Job.id == job_id, Job.status == JobStatus.ACTIVE.value]
        if locked_by is not None:
            conditions.append(Job.locked_by == locked_by)
        return and_(*conditions)

    async def add_job(self, job: Job) -> Job:
        try:
            async with self._session() as session:
                session.add(job)
                await session.commit()
                return job
        except SQLAlchemyError as e:
            raise JobStoreError(f"Failed to store job: {e}") from e

    async def get_job(self, job_id: UUID) -> Job | None:
        async with self._session() as session:
            return await session.get(Job, job_id)

    async def find_live_job(self, queue_name: str, dedupe_key: str) -> Job | None:
        async with self._session() as session:
            result = await session.execute(
                select(Job)
                .where(
                    Job.queue_name == queue_name,
                    Job.dedupe_key == dedupe_key,
                    Job.status.in_(LIVE_STATUSES),
                )
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def remove_job(self, queue_name: str, job_id: UUID) -> bool:
        async with self._session() as session:
            result = await session.execute(
                delete(Job).where(
                    Job.id == job_id,
                    Job.queue_name == queue_name,
                    Job.status != JobStatus.ACTIVE.value,
                )
            )
            await session.commit()
            return result.rowcount > 0

    async def remove_pending_by_key(self, queue_name: str, dedupe_key: str) -> int:
        async with self._session() as session:
            result = await session.execute(
                delete(Job).where(
                    Job.queue_name == queue_name,
                    Job.dedupe_key == dedupe_key,
                    Job.status.in_(PENDING_STATUSES),
                )
            )
            await session.commit()
            return result.rowcount

    async def claim_job(self, queue_name: str, worker_id: str) -> Job | None:
        now = utcnow()
        async with self._session() as session:
            result = await session.execute(
                select(Job)
                .where(
                    Job.queue_name == queue_name,
                    Job.status.in_(PENDING_STATUSES),
                    Job.run_at <= now,
                )
                .order_by(Job.priority, Job.run_at, Job.created_at)
                .limit(1)
                .with_for_update(skip_locked=True)
            )
            job = result.scalar_one_or_none()
            if job is None:
                return None

            job.status = JobStatus.ACTIVE.value
            job.attempts = job.attempts + 1
            job.locked_by = worker_id
            job.heartbeat_at = now
            job.processed_at = now
            job.updated_at = now
            await session.commit()
            return job

    async def heartbeat(self, job_ids: Iterable[UUID], worker_id: str) -> int:
        job_ids = list(job_ids)
        if not job_ids:
            return 0
        async with self._session() as session:
            result = await session.execute(
                update(Job)
                .where(
                    Job.id.in_(job_ids),
                    Job.locked_by == worker_id,
                    Job.status == JobStatus.ACTIVE.value,
                )
                .values(heartbeat_at=utcnow())
            )
            await session.commit()
            return result.rowcount

    async def update_progress(self, job_id: UUID, progress: int) -> None:
        async with self._session() as session:
            await session.execute(
                update(Job)
                .where(Job.id == job_id)
                .values(progress=progress, updated_at=utcnow())
            )
            await session.commit()

    async def complete_job(
        self, job_id: UUID, locked_by: str, result: dict[str, Any]
    ) -> bool:
        now = utcnow()
        async with self._session() as session:
            outcome = await session.execute(
                update(Job)
                .where(self._leased(job_id, locked_by))
                .values(
                    status=JobStatus.COMPLETED.value,
                    result=result,
                    progress=100,
                    locked_by=None,
                    heartbeat_at=None,
                    finished_at=now,
                    updated_at=now,
                )
            )
            await session.commit()
            return outcome.rowcount > 0

    async def reschedule_job(
        self,
        job_id: UUID,
        locked_by: str | None,
        run_at: datetime,
        error: str,
        error_stack: str | None = None,
    ) -> bool:
        async with self._session() as session:
            outcome = await session.execute(
                update(Job)
                .where(self._leased(job_id, locked_by))
                .values(
                    status=JobStatus.DELAYED.value,
                    run_at=run_at,
                    error=error,
                    error_stack=error_stack,
                    locked_by=None,
                    heartbeat_at=None,
                    updated_at=utcnow(),
                )
            )
            await session.commit()
            return outcome.rowcount > 0

    async def fail_job(
        self,
        job_id: UUID,
        locked_by: str | None,
        error: str,
        error_stack: str | None = None,
    ) -> DeadLetterEntry | None:
        now = utcnow()
        async with self._session() as session:
            result = await session.execute(
                select(Job).where(self._leased(job_id, locked_by)).with_for_update()
            )
            job = result.scalar_one_or_none()
            if job is None:
                return None

            job.status = JobStatus.FAILED.value
            job.error = error
            job.error_stack = error_stack
            job.locked_by = None
            job.heartbeat_at = None
            job.finished_at = now
            job.updated_at = now

            entry = new_dead_letter(job, error, error_stack)
            session.add(entry)
            await session.commit()
            return entry

    async def find_stalled_jobs(self, queue_name: str, cutoff: datetime) -> list[Job]:
        async with self._session() as session:
            result = await session.execute(
                select(Job).where(
                    Job.queue_name == queue_name,
                    Job.status == JobStatus.ACTIVE.value,
                    Job.heartbeat_at < cutoff,
                )
            )
            return list(result.scalars().all())

    async def count_jobs(self, queue_name: str) -> dict[str, int]:
        async with self._session() as session:
            result = await session.execute(
                select(Job.status, func.count(Job.id))
                .where(Job.queue_name == queue_name)
                .group_by(Job.status)
            )
            counts = empty_counts()
            counts.update(dict(result.all()))
            return counts

    async def prune_jobs(
        self, queue_name: str, status: JobStatus, keep: int, older_than: datetime
    ) -> int:
        finished_at = func.coalesce(Job.finished_at, Job.updated_at)
        ranked = (
            select(
                Job.id,
                func.row_number().over(order_by=finished_at.desc()).label("rank"),
            )
            .where(Job.queue_name == queue_name, Job.status == status.value)
            .subquery()
        )
        async with self._session() as session:
            result = await session.execute(
                delete(Job).where(
                    Job.queue_name == queue_name,
                    Job.status == status.value,
                    or_(
                        Job.id.in_(select(ranked.c.id).where(ranked.c.rank > keep)),
                        finished_at < older_than,
                    ),
                )
            )
            await session.commit()
            return result.rowcount

    async def upsert_repeatable(self, repeatable: RepeatableJob) -> RepeatableJob:
        async with self._session() as session:
            await session.execute(
                delete(RepeatableJob).where(
                    RepeatableJob.queue_name == repeatable.queue_name,
                    RepeatableJob.name == repeatable.name,
                )
            )
            session.add(repeatable)
            await session.commit()
            return repeatable

    async def remove_repeatables(self, queue_name: str, name: str | None = None) -> int:
        query = delete(RepeatableJob).where(RepeatableJob.queue_name == queue_name)
        if name is not None:
            query = query.where(RepeatableJob.name == name)
        async with self._session() as session:
            result = await session.execute(query)
            await session.commit()
            return result.rowcount

    async def list_repeatables(self, queue_name: str | None = None) -> list[RepeatableJob]:
        query = select(RepeatableJob).order_by(RepeatableJob.queue_name, RepeatableJob.name)
        if queue_name is not None:
            query = query.where(RepeatableJob.queue_name == queue_name)
        async with self._session() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def due_repeatables(self, now: datetime) -> list[RepeatableJob]:
        async with self._session() as session:
            result = await session.execute(
                select(RepeatableJob).where(RepeatableJob.next_run_at <= now)
            )
            return list(result.scalars().all())

    async def advance_repeatable(
        self, repeatable_id: UUID, expected_next_run_at: datetime, next_run_at: datetime
    ) -> bool:
        async with self._session() as session:
            result = await session.execute(
                update(RepeatableJob)
                .where(
                    RepeatableJob.id == repeatable_id,
                    RepeatableJob.next_run_at == expected_next_run_at,
                )
                .values(last_run_at=expected_next_run_at, next_run_at=next_run_at)
            )
            await session.commit()
            return result.rowcount > 0

    async def get_dead_letter(self, entry_id: UUID) -> DeadLetterEntry | None:
        async with self._session() as session:
            return await session.get(DeadLetterEntry, entry_id)

    async def list_dead_letters(
        self,
        queue_name: str | None = None,
        status: DeadLetterStatus | None = None,
        limit: int = 50,
        offset: int = 0,
        sort_by: str = "moved_at",
        sort_order: str = "desc",
    ) -> tuple[list[DeadLetterEntry], int]:
        if sort_by not in DEAD_LETTER_SORT_FIELDS:
            raise ValueError(f"Cannot sort dead letters by '{sort_by}'")

        query = select(DeadLetterEntry)
        if queue_name is not None:
            query = query.where(DeadLetterEntry.source_queue == queue_name)
        if status is not None:
            query = query.where(DeadLetterEntry.status == status.value)

        column = getattr(DeadLetterEntry, sort_by)
        order = desc(column) if sort_order == "desc" else asc(column)

        async with self._session() as session:
            total_result = await session.execute(
                select(func.count()).select_from(query.subquery())
            )
            total = total_result.scalar() or 0

            result = await session.execute(query.order_by(order).offset(offset).limit(limit))
            return list(result.scalars().all()), total

    async def dead_letter_stats(self) -> dict[str, Any]:
        async with self._session() as session:
            status_result = await session.execute(
                select(DeadLetterEntry.status, func.count(DeadLetterEntry.id)).group_by(
                    DeadLetterEntry.status
                )
            )
            by_status = {status.value: 0 for status in DeadLetterStatus}
            by_status.update(dict(status_result.all()))

            queue_result = await session.execute(
                select(
                    DeadLetterEntry.source_queue, func.count(DeadLetterEntry.id)
                ).group_by(DeadLetterEntry.source_queue)
            )
            bounds = await session.execute(
                select(
                    func.min(DeadLetterEntry.moved_at), func.max(DeadLetterEntry.moved_at)
                )
            )
            oldest, newest = bounds.one()

            return {
                "total": sum(by_status.values()),
                "by_status": by_status,
                "by_queue": dict(queue_result.all()),
                "oldest_entry": oldest,
                "newest_entry": newest,
            }

    async def dead_letter_queue_names(self) -> list[str]:
        async with self._session() as session:
            result = await session.execute(
                select(DeadLetterEntry.source_queue)
                .distinct()
                .order_by(DeadLetterEntry.source_queue)
            )
            return list(result.scalars().all())

    async def transition_dead_letter(
        self,
        entry_id: UUID,
        from_status: DeadLetterStatus,
        to_status: DeadLetterStatus,
        retried_job_id: UUID | None = None,
    ) -> bool:
        now = utcnow()
        values: dict[str, Any] = {"status": to_status.value, "updated_at": now}
        if to_status == DeadLetterStatus.RETRIED:
            values.update(retried_at=now, retried_job_id=retried_job_id)
        elif to_status == DeadLetterStatus.PENDING:
            values.update(retried_at=None, retried_job_id=None)

        async with self._session() as session:
            result = await session.execute(
                update(DeadLetterEntry)
                .where(
                    DeadLetterEntry.id == entry_id,
                    DeadLetterEntry.status == from_status.value,
                )
                .values(**values)
            )
            await session.commit()
            return result.rowcount > 0

    async def delete_dead_letters(
        self, statuses: Iterable[str], older_than: datetime
    ) -> int:
        async with self._session() as session:
            result = await session.execute(
                delete(DeadLetterEntry).where(
                    DeadLetterEntry.status.in_(list(statuses)),
                    DeadLetterEntry.updated_at < older_than,
                )
            )
            await session.commit()
            return result.rowcount

    async def ping(self) -> None:
        await self.database.ping()
