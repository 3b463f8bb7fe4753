"""
Job store: durable state shared by producers and worker pools.

``JobStore`` is the contract; ``MemoryJobStore`` keeps everything in-process
for development and tests, ``SqlJobStore`` (see ``sql_store``) is the
Postgres implementation. Every state transition made by a worker is
conditional on the job still being active under the caller's lease, so a
late worker cannot overwrite a recovery that already happened.
"""

import asyncio
from abc import ABC, abstractmethod
from collections import Counter
from collections.abc import Iterable
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from ezjobs.v1.infra.dlq.models import DeadLetterEntry, DeadLetterStatus
from ezjobs.v1.infra.jobs.models import (
    PENDING_STATUSES,
    Job,
    JobStatus,
    RepeatableJob,
    utcnow,
)

DEAD_LETTER_SORT_FIELDS = ("moved_at", "source_queue", "job_type", "attempts_made")


class JobStore(ABC):
    """Contract for job, repeatable registration and dead letter storage."""

    # Jobs

    @abstractmethod
    async def add_job(self, job: Job) -> Job: ...

    @abstractmethod
    async def get_job(self, job_id: UUID) -> Job | None: ...

    @abstractmethod
    async def find_live_job(self, queue_name: str, dedupe_key: str) -> Job | None:
        """Waiting, delayed or active job holding the dedupe key."""

    @abstractmethod
    async def remove_job(self, queue_name: str, job_id: UUID) -> bool:
        """Delete a job of the queue unless a worker currently holds it."""

    @abstractmethod
    async def remove_pending_by_key(self, queue_name: str, dedupe_key: str) -> int:
        """Delete waiting/delayed jobs holding the dedupe key."""

    @abstractmethod
    async def claim_job(self, queue_name: str, worker_id: str) -> Job | None:
        """
        Lease the next due job: lowest priority number first, then earliest
        run_at. Marks it active and counts the attempt.
        """

    @abstractmethod
    async def heartbeat(self, job_ids: Iterable[UUID], worker_id: str) -> int: ...

    @abstractmethod
    async def update_progress(self, job_id: UUID, progress: int) -> None: ...

    @abstractmethod
    async def complete_job(
        self, job_id: UUID, locked_by: str, result: dict[str, Any]
    ) -> bool: ...

    @abstractmethod
    async def reschedule_job(
        self,
        job_id: UUID,
        locked_by: str | None,
        run_at: datetime,
        error: str,
        error_stack: str | None = None,
    ) -> bool:
        """Move an active job back to delayed for another attempt."""

    @abstractmethod
    async def fail_job(
        self,
        job_id: UUID,
        locked_by: str | None,
        error: str,
        error_stack: str | None = None,
    ) -> DeadLetterEntry | None:
        """
        Mark an active job terminally failed and record its dead letter entry
        in the same operation. Returns None if the lease was lost.
        """

    @abstractmethod
    async def find_stalled_jobs(self, queue_name: str, cutoff: datetime) -> list[Job]:
        """Active jobs whose last heartbeat is older than ``cutoff``."""

    @abstractmethod
    async def count_jobs(self, queue_name: str) -> dict[str, int]: ...

    @abstractmethod
    async def prune_jobs(
        self, queue_name: str, status: JobStatus, keep: int, older_than: datetime
    ) -> int:
        """Drop finished jobs beyond the newest ``keep`` or older than the cutoff."""

    # Repeatable registrations

    @abstractmethod
    async def upsert_repeatable(self, repeatable: RepeatableJob) -> RepeatableJob:
        """Insert or replace the registration for (queue_name, name)."""

    @abstractmethod
    async def remove_repeatables(self, queue_name: str, name: str | None = None) -> int:
        ...

    @abstractmethod
    async def list_repeatables(self, queue_name: str | None = None) -> list[RepeatableJob]:
        ...

    @abstractmethod
    async def due_repeatables(self, now: datetime) -> list[RepeatableJob]: ...

    @abstractmethod
    async def advance_repeatable(
        self, repeatable_id: UUID, expected_next_run_at: datetime, next_run_at: datetime
    ) -> bool:
        """Move a registration to its next fire time if no one else did."""

    # Dead letters

    @abstractmethod
    async def get_dead_letter(self, entry_id: UUID) -> DeadLetterEntry | None: ...

    @abstractmethod
    async def list_dead_letters(
        self,
        queue_name: str | None = None,
        status: DeadLetterStatus | None = None,
        limit: int = 50,
        offset: int = 0,
        sort_by: str = "moved_at",
        sort_order: str = "desc",
    ) -> tuple[list[DeadLetterEntry], int]: ...

    @abstractmethod
    async def dead_letter_stats(self) -> dict[str, Any]: ...

    @abstractmethod
    async def dead_letter_queue_names(self) -> list[str]: ...

    @abstractmethod
    async def transition_dead_letter(
        self,
        entry_id: UUID,
        from_status: DeadLetterStatus,
        to_status: DeadLetterStatus,
        retried_job_id: UUID | None = None,
    ) -> bool:
        """Change an entry's status only if it is still ``from_status``."""

    @abstractmethod
    async def delete_dead_letters(
        self, statuses: Iterable[str], older_than: datetime
    ) -> int: ...

    # Health

    @abstractmethod
    async def ping(self) -> None:
        """Raise if the store cannot be reached."""


def new_dead_letter(job: Job, error: str, error_stack: str | None) -> DeadLetterEntry:
    now = utcnow()
    return DeadLetterEntry(
        id=uuid4(),
        source_queue=job.queue_name,
        original_job_id=job.id,
        job_type=job.job_type,
        payload=dict(job.payload),
        error=error,
        error_stack=error_stack,
        attempts_made=job.attempts,
        max_attempts=job.max_attempts,
        backoff=job.backoff,
        status=DeadLetterStatus.PENDING.value,
        moved_at=now,
        updated_at=now,
    )


def empty_counts() -> dict[str, int]:
    return {status.value: 0 for status in JobStatus}


class MemoryJobStore(JobStore):
    """Single-process store; all operations serialise on one lock."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self.jobs: dict[UUID, Job] = {}
        self.repeatables: dict[tuple[str, str], RepeatableJob] = {}
        self.dead_letters: dict[UUID, DeadLetterEntry] = {}

    def _leased(self, job_id: UUID, locked_by: str | None) -> Job | None:
        job = self.jobs.get(job_id)
        if job is None or job.status != JobStatus.ACTIVE.value:
            return None
        if locked_by is not None and job.locked_by != locked_by:
            return None
        return job

    async def add_job(self, job: Job) -> Job:
        async with self._lock:
            self.jobs[job.id] = job
            return job

    async def get_job(self, job_id: UUID) -> Job | None:
        return self.jobs.get(job_id)

    async def find_live_job(self, queue_name: str, dedupe_key: str) -> Job | None:
        for job in self.jobs.values():
            if (
                job.queue_name == queue_name
                and job.dedupe_key == dedupe_key
                and job.is_live()
            ):
                return job
        return None

    async def remove_job(self, queue_name: str, job_id: UUID) -> bool:
        async with self._lock:
            job = self.jobs.get(job_id)
            if job is None or job.queue_name != queue_name:
                return False
            if job.status == JobStatus.ACTIVE.value:
                return False
            del self.jobs[job_id]
            return True

    async def remove_pending_by_key(self, queue_name: str, dedupe_key: str) -> int:
        async with self._lock:
            doomed = [
                job.id
                for job in self.jobs.values()
                if job.queue_name == queue_name
                and job.dedupe_key == dedupe_key
                and job.status in PENDING_STATUSES
            ]
            for job_id in doomed:
                del self.jobs[job_id]
            return len(doomed)

    async def claim_job(self, queue_name: str, worker_id: str) -> Job | None:
        async with self._lock:
            now = utcnow()
            due = [
                job
                for job in self.jobs.values()
                if job.queue_name == queue_name
                and job.status in PENDING_STATUSES
                and job.run_at <= now
            ]
            if not due:
                return None

            job = min(due, key=lambda j: (j.priority, j.run_at, j.created_at))
            job.status = JobStatus.ACTIVE.value
            job.attempts += 1
            job.locked_by = worker_id
            job.heartbeat_at = now
            job.processed_at = now
            job.updated_at = now
            return job

    async def heartbeat(self, job_ids: Iterable[UUID], worker_id: str) -> int:
        async with self._lock:
            now = utcnow()
            touched = 0
            for job_id in job_ids:
                job = self._leased(job_id, worker_id)
                if job is not None:
                    job.heartbeat_at = now
                    touched += 1
            return touched

    async def update_progress(self, job_id: UUID, progress: int) -> None:
        async with self._lock:
            job = self.jobs.get(job_id)
            if job is not None:
                job.progress = progress
                job.updated_at = utcnow()

    async def complete_job(
        self, job_id: UUID, locked_by: str, result: dict[str, Any]
    ) -> bool:
        async with self._lock:
            job = self._leased(job_id, locked_by)
            if job is None:
                return False
            now = utcnow()
            job.status = JobStatus.COMPLETED.value
            job.result = result
            job.progress = 100
            job.locked_by = None
            job.heartbeat_at = None
            job.finished_at = now
            job.updated_at = now
            return True

    async def reschedule_job(
        self,
        job_id: UUID,
        locked_by: str | None,
        run_at: datetime,
        error: str,
        error_stack: str | None = None,
    ) -> bool:
        async with self._lock:
            job = self._leased(job_id, locked_by)
            if job is None:
                return False
            job.status = JobStatus.DELAYED.value
            job.run_at = run_at
            job.error = error
            job.error_stack = error_stack
            job.locked_by = None
            job.heartbeat_at = None
            job.updated_at = utcnow()
            return True

    async def fail_job(
        self,
        job_id: UUID,
        locked_by: str | None,
        error: str,
        error_stack: str | None = None,
    ) -> DeadLetterEntry | None:
        async with self._lock:
            job = self._leased(job_id, locked_by)
            if job is None:
                return None
            now = utcnow()
            job.status = JobStatus.FAILED.value
            job.error = error
            job.error_stack = error_stack
            job.locked_by = None
            job.heartbeat_at = None
            job.finished_at = now
            job.updated_at = now
            entry = new_dead_letter(job, error, error_stack)
            self.dead_letters[entry.id] = entry
            return entry

    async def find_stalled_jobs(self, queue_name: str, cutoff: datetime) -> list[Job]:
        return [
            job
            for job in self.jobs.values()
            if job.queue_name == queue_name
            and job.status == JobStatus.ACTIVE.value
            and job.heartbeat_at is not None
            and job.heartbeat_at < cutoff
        ]

    async def count_jobs(self, queue_name: str) -> dict[str, int]:
        counts = empty_counts()
        counts.update(
            Counter(j.status for j in self.jobs.values() if j.queue_name == queue_name)
        )
        return counts

    async def prune_jobs(
        self, queue_name: str, status: JobStatus, keep: int, older_than: datetime
    ) -> int:
        async with self._lock:
            finished = sorted(
                (
                    j
                    for j in self.jobs.values()
                    if j.queue_name == queue_name and j.status == status.value
                ),
                key=lambda j: j.finished_at or j.updated_at,
                reverse=True,
            )
            doomed = [
                job.id
                for rank, job in enumerate(finished)
                if rank >= keep or (job.finished_at or job.updated_at) < older_than
            ]
            for job_id in doomed:
                del self.jobs[job_id]
            return len(doomed)

    async def upsert_repeatable(self, repeatable: RepeatableJob) -> RepeatableJob:
        async with self._lock:
            self.repeatables[(repeatable.queue_name, repeatable.name)] = repeatable
            return repeatable

    async def remove_repeatables(self, queue_name: str, name: str | None = None) -> int:
        async with self._lock:
            doomed = [
                key
                for key in self.repeatables
                if key[0] == queue_name and (name is None or key[1] == name)
            ]
            for key in doomed:
                del self.repeatables[key]
            return len(doomed)

    async def list_repeatables(self, queue_name: str | None = None) -> list[RepeatableJob]:
        return [
            r
            for r in self.repeatables.values()
            if queue_name is None or r.queue_name == queue_name
        ]

    async def due_repeatables(self, now: datetime) -> list[RepeatableJob]:
        return [r for r in self.repeatables.values() if r.next_run_at <= now]

    async def advance_repeatable(
        self, repeatable_id: UUID, expected_next_run_at: datetime, next_run_at: datetime
    ) -> bool:
        async with self._lock:
            for repeatable in self.repeatables.values():
                if repeatable.id != repeatable_id:
                    continue
                if repeatable.next_run_at != expected_next_run_at:
                    return False
                repeatable.last_run_at = expected_next_run_at
                repeatable.next_run_at = next_run_at
                return True
            return False

    async def get_dead_letter(self, entry_id: UUID) -> DeadLetterEntry | None:
        return self.dead_letters.get(entry_id)

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
        matches = [
            e
            for e in self.dead_letters.values()
            if (queue_name is None or e.source_queue == queue_name)
            and (status is None or e.status == status.value)
        ]
        matches.sort(key=lambda e: getattr(e, sort_by), reverse=sort_order == "desc")
        return matches[offset : offset + limit], len(matches)

    async def dead_letter_stats(self) -> dict[str, Any]:
        entries = list(self.dead_letters.values())
        by_status = {status.value: 0 for status in DeadLetterStatus}
        by_status.update(Counter(e.status for e in entries))
        moved = [e.moved_at for e in entries]
        return {
            "total": len(entries),
            "by_status": by_status,
            "by_queue": dict(Counter(e.source_queue for e in entries)),
            "oldest_entry": min(moved) if moved else None,
            "newest_entry": max(moved) if moved else None,
        }

    async def dead_letter_queue_names(self) -> list[str]:
        return sorted({e.source_queue for e in self.dead_letters.values()})

    async def transition_dead_letter(
        self,
        entry_id: UUID,
        from_status: DeadLetterStatus,
        to_status: DeadLetterStatus,
        retried_job_id: UUID | None = None,
    ) -> bool:
        async with self._lock:
            entry = self.dead_letters.get(entry_id)
            if entry is None or entry.status != from_status.value:
                return False
            now = utcnow()
            entry.status = to_status.value
            entry.updated_at = now
            if to_status == DeadLetterStatus.RETRIED:
                entry.retried_at = now
                entry.retried_job_id = retried_job_id
            elif to_status == DeadLetterStatus.PENDING:
                entry.retried_at = None
                entry.retried_job_id = None
            return True

    async def delete_dead_letters(
        self, statuses: Iterable[str], older_than: datetime
    ) -> int:
        async with self._lock:
            statuses = set(statuses)
            doomed = [
                e.id
                for e in self.dead_letters.values()
                if e.status in statuses and e.updated_at < older_than
            ]
            for entry_id in doomed:
                del self.dead_letters[entry_id]
            return len(doomed)

    async def ping(self) -> None:
        return None
