"""
Typed producer handle for one named queue.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel

from ezjobs.v1.infra.jobs.backoff import Backoff, exponential_ms
from ezjobs.v1.infra.jobs.cron import next_fire_time
from ezjobs.v1.infra.jobs.errors import UnknownJobTypeError
from ezjobs.v1.infra.jobs.models import Job, JobStatus, RepeatableJob, utcnow
from ezjobs.v1.infra.jobs.payloads import QUEUE_PAYLOADS, JobPayload, QueueName
from ezjobs.v1.infra.jobs.store import JobStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobOptions:
    """Per-queue defaults applied when enqueue omits an option."""

    priority: int = 5
    max_attempts: int = 3
    backoff: Backoff = field(default_factory=lambda: exponential_ms(1000))


@dataclass(frozen=True)
class RetentionPolicy:
    """How many finished jobs to keep, and for how long."""

    keep_completed: int = 100
    completed_age_s: int = 86400
    keep_failed: int = 500
    failed_age_s: int = 604800


@dataclass(frozen=True)
class QueueDefinition:
    name: QueueName
    payloads: dict[str, type[JobPayload]]
    defaults: JobOptions = field(default_factory=JobOptions)
    retention: RetentionPolicy = field(default_factory=RetentionPolicy)

    @classmethod
    def for_queue(
        cls,
        name: QueueName,
        defaults: JobOptions | None = None,
        retention: RetentionPolicy | None = None,
    ) -> "QueueDefinition":
        return cls(
            name=name,
            payloads={t.value: model for t, model in QUEUE_PAYLOADS[name].items()},
            defaults=defaults or JobOptions(),
            retention=retention or RetentionPolicy(),
        )

    @property
    def job_types(self) -> list[str]:
        return list(self.payloads)


class EnqueueResult(BaseModel):
    job_id: UUID
    status: str
    deduplicated: bool = False


class Queue:
    """Enqueues validated jobs into one named queue of a job store."""

    def __init__(self, definition: QueueDefinition, store: JobStore):
        self.definition = definition
        self.store = store

    @property
    def name(self) -> str:
        return self.definition.name.value

    def parse_payload(
        self, job_type: str, payload: dict[str, Any] | JobPayload
    ) -> JobPayload:
        """Validate a payload against the model registered for its job type."""
        model = self.definition.payloads.get(str(getattr(job_type, "value", job_type)))
        if model is None:
            raise UnknownJobTypeError(self.name, str(job_type))
        if isinstance(payload, model):
            return payload
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(by_alias=True)
        return model.model_validate(payload)

    async def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any] | JobPayload,
        *,
        priority: int | None = None,
        delay: float | timedelta | None = None,
        max_attempts: int | None = None,
        backoff: Backoff | None = None,
        dedupe_key: str | None = None,
        job_id: UUID | None = None,
    ) -> EnqueueResult:
        """
        Add a job to the queue.

        Raises UnknownJobTypeError for a job type this queue does not accept
        and pydantic's ValidationError for a malformed payload. Store errors
        propagate to the caller.
        """
        job_type = str(getattr(job_type, "value", job_type))
        parsed = self.parse_payload(job_type, payload)
        defaults = self.definition.defaults

        priority = defaults.priority if priority is None else priority
        if not 1 <= priority <= 10:
            raise ValueError("priority must be between 1 and 10")
        max_attempts = defaults.max_attempts if max_attempts is None else max_attempts
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        if dedupe_key:
            existing = await self.store.find_live_job(self.name, dedupe_key)
            if existing is not None:
                logger.info(
                    "Job deduplicated",
                    extra={
                        "job_id": str(existing.id),
                        "queue": self.name,
                        "dedupe_key": dedupe_key,
                    },
                )
                return EnqueueResult(
                    job_id=existing.id, status=existing.status, deduplicated=True
                )

        if isinstance(delay, timedelta):
            delay = delay.total_seconds()
        delay = max(0.0, delay or 0.0)

        now = utcnow()
        job = Job(
            id=job_id or uuid4(),
            queue_name=self.name,
            job_type=job_type,
            payload=parsed.to_payload(),
            status=(JobStatus.DELAYED if delay > 0 else JobStatus.WAITING).value,
            priority=priority,
            run_at=now + timedelta(seconds=delay),
            attempts=0,
            max_attempts=max_attempts,
            backoff=(backoff or defaults.backoff).to_config(),
            dedupe_key=dedupe_key,
            progress=0,
            created_at=now,
            updated_at=now,
        )
        await self.store.add_job(job)

        logger.info(
            "Job enqueued",
            extra={
                "job_id": str(job.id),
                "queue": self.name,
                "job_type": job_type,
                "priority": priority,
                "delay_s": delay,
            },
        )
        return EnqueueResult(job_id=job.id, status=job.status)

    async def get_job(self, job_id: UUID) -> Job | None:
        job = await self.store.get_job(job_id)
        if job is None or job.queue_name != self.name:
            return None
        return job

    async def get_metrics(self) -> dict[str, int]:
        """Counts of waiting, active, completed, failed and delayed jobs."""
        return await self.store.count_jobs(self.name)

    async def remove(self, job_id: UUID) -> bool:
        """Remove a job of this queue that no worker holds."""
        return await self.store.remove_job(self.name, job_id)

    async def remove_by_key(self, dedupe_key: str) -> int:
        """Remove waiting or delayed jobs that carry the key."""
        return await self.store.remove_pending_by_key(self.name, dedupe_key)

    async def add_repeatable(
        self,
        name: str,
        job_type: str,
        payload: dict[str, Any] | JobPayload,
        *,
        cron: str | None = None,
        every_ms: int | None = None,
        priority: int | None = None,
    ) -> RepeatableJob:
        """Register (or replace) a named periodic job on this queue."""
        if (cron is None) == (every_ms is None):
            raise ValueError("Exactly one of cron or every_ms is required")

        job_type = str(getattr(job_type, "value", job_type))
        parsed = self.parse_payload(job_type, payload)
        now = utcnow()
        repeatable = RepeatableJob(
            id=uuid4(),
            queue_name=self.name,
            name=name,
            job_type=job_type,
            cron=cron,
            every_ms=every_ms,
            payload=parsed.to_payload(),
            priority=self.definition.defaults.priority if priority is None else priority,
            next_run_at=next_fire_time(cron, every_ms, now),
            created_at=now,
        )
        await self.store.upsert_repeatable(repeatable)
        logger.info(
            "Repeatable job registered",
            extra={
                "queue": self.name,
                "repeatable": name,
                "cron": cron,
                "every_ms": every_ms,
                "next_run_at": repeatable.next_run_at.isoformat(),
            },
        )
        return repeatable

    async def remove_repeatables(self, name: str | None = None) -> int:
        return await self.store.remove_repeatables(self.name, name)

    async def list_repeatables(self) -> list[RepeatableJob]:
        return await self.store.list_repeatables(self.name)
