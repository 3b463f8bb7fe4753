"""
Operator-facing dead letter queue management.
"""

import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from datetime import timedelta
from typing import Any
from uuid import UUID, uuid4

from ezjobs.v1.core.exceptions import ConflictError, NotFoundError, ValidationError
from ezjobs.v1.infra.dlq.models import (
    RESOLVED_STATUSES,
    DeadLetterEntry,
    DeadLetterStatus,
)
from ezjobs.v1.infra.dlq.schemas import RetryResult
from ezjobs.v1.infra.jobs.backoff import backoff_from_config
from ezjobs.v1.infra.jobs.models import utcnow
from ezjobs.v1.infra.jobs.queue import Queue
from ezjobs.v1.infra.jobs.store import JobStore

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 50
MAX_PAGE_SIZE = 100

# Prepares domain state for a retried job; receives the stored payload.
RetryHook = Callable[[dict[str, Any]], Awaitable[None]]


def _parse_id(entry_id: str | UUID) -> UUID | None:
    if isinstance(entry_id, UUID):
        return entry_id
    try:
        return UUID(str(entry_id))
    except ValueError:
        return None


def _check_batch(ids: list[Any]) -> None:
    if not ids:
        raise ValidationError("At least one id is required")
    if len(ids) > MAX_BATCH_SIZE:
        raise ValidationError(
            f"Batch size cannot exceed {MAX_BATCH_SIZE}",
            details={"received": len(ids)},
        )


class DeadLetterQueueService:
    """
    Triage of dead-lettered jobs.

    Entries are never retried automatically. ``retry_job`` re-enters the
    normal job lifecycle with a fresh job (attempt 0) on the source queue and
    freezes the entry as ``retried``.
    """

    def __init__(
        self,
        store: JobStore,
        queues: Mapping[str, Queue],
        retry_hooks: Mapping[str, RetryHook] | None = None,
    ):
        self.store = store
        self.queues = dict(queues)
        self.retry_hooks = dict(retry_hooks or {})

    def register_retry_hook(self, job_type: str, hook: RetryHook) -> None:
        """Run ``hook`` with the payload before a dead job of this type is re-enqueued."""
        self.retry_hooks[job_type] = hook

    async def list_entries(
        self,
        queue_name: str | None = None,
        status: DeadLetterStatus | None = None,
        limit: int = 50,
        offset: int = 0,
        sort_by: str = "moved_at",
        sort_order: str = "desc",
    ) -> tuple[list[DeadLetterEntry], int]:
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        offset = max(0, offset)
        if sort_order not in ("asc", "desc"):
            raise ValidationError("sort_order must be 'asc' or 'desc'")
        try:
            return await self.store.list_dead_letters(
                queue_name=queue_name,
                status=status,
                limit=limit,
                offset=offset,
                sort_by=sort_by,
                sort_order=sort_order,
            )
        except ValueError as e:
            raise ValidationError(str(e)) from e

    async def get_by_id(self, entry_id: str | UUID) -> DeadLetterEntry | None:
        parsed = _parse_id(entry_id)
        if parsed is None:
            return None
        return await self.store.get_dead_letter(parsed)

    async def get_stats(self) -> dict[str, Any]:
        return await self.store.dead_letter_stats()

    async def get_queue_names(self) -> list[str]:
        return await self.store.dead_letter_queue_names()

    async def retry_job(self, entry_id: str | UUID) -> UUID:
        """Enqueue a fresh job from a pending entry; returns the new job id."""
        entry = await self.get_by_id(entry_id)
        if entry is None:
            raise NotFoundError("Dead letter entry not found", {"id": str(entry_id)})
        if entry.status != DeadLetterStatus.PENDING.value:
            raise ConflictError(
                f"Dead letter entry is already {entry.status}", {"id": str(entry.id)}
            )

        queue = self.queues.get(entry.source_queue)
        if queue is None:
            raise ValidationError(
                f"Queue '{entry.source_queue}' is not configured",
                {"id": str(entry.id)},
            )

        new_job_id = uuid4()
        if not await self.store.transition_dead_letter(
            entry.id,
            DeadLetterStatus.PENDING,
            DeadLetterStatus.RETRIED,
            retried_job_id=new_job_id,
        ):
            raise ConflictError(
                "Dead letter entry was resolved concurrently", {"id": str(entry.id)}
            )

        try:
            hook = self.retry_hooks.get(entry.job_type)
            if hook is not None:
                await hook(entry.payload)
            await queue.enqueue(
                entry.job_type,
                entry.payload,
                max_attempts=entry.max_attempts,
                backoff=backoff_from_config(entry.backoff, queue.definition.defaults.backoff),
                job_id=new_job_id,
            )
        except Exception:
            await self.store.transition_dead_letter(
                entry.id, DeadLetterStatus.RETRIED, DeadLetterStatus.PENDING
            )
            logger.exception(
                "Failed to re-enqueue dead letter entry",
                extra={"dead_letter_id": str(entry.id), "queue": entry.source_queue},
            )
            raise

        logger.info(
            "Dead letter entry retried",
            extra={
                "dead_letter_id": str(entry.id),
                "queue": entry.source_queue,
                "job_id": str(new_job_id),
            },
        )
        return new_job_id

    async def discard_job(self, entry_id: str | UUID) -> bool:
        """Mark a pending entry discarded; False if missing or already resolved."""
        parsed = _parse_id(entry_id)
        if parsed is None:
            return False
        discarded = await self.store.transition_dead_letter(
            parsed, DeadLetterStatus.PENDING, DeadLetterStatus.DISCARDED
        )
        if discarded:
            logger.info("Dead letter entry discarded", extra={"dead_letter_id": str(parsed)})
        return discarded

    async def retry_batch(self, entry_ids: list[str | UUID]) -> dict[str, RetryResult]:
        _check_batch(entry_ids)
        results: dict[str, RetryResult] = {}
        for entry_id in entry_ids:
            try:
                job_id = await self.retry_job(entry_id)
                results[str(entry_id)] = RetryResult(success=True, job_id=job_id)
            except Exception as e:
                message = getattr(e, "message", None) or str(e)
                results[str(entry_id)] = RetryResult(success=False, error=message)

        logger.info(
            "Dead letter batch retry",
            extra={
                "requested": len(entry_ids),
                "succeeded": sum(r.success for r in results.values()),
            },
        )
        return results

    async def discard_batch(self, entry_ids: list[str | UUID]) -> dict[str, bool]:
        _check_batch(entry_ids)
        results = {str(entry_id): await self.discard_job(entry_id) for entry_id in entry_ids}
        logger.info(
            "Dead letter batch discard",
            extra={"requested": len(entry_ids), "succeeded": sum(results.values())},
        )
        return results

    async def cleanup(
        self,
        older_than_days: int = 30,
        statuses: Iterable[str] = RESOLVED_STATUSES,
    ) -> int:
        """Purge resolved entries; pending entries are never purged."""
        if older_than_days < 1:
            raise ValidationError("older_than_days must be at least 1")
        statuses = [s for s in statuses if s in RESOLVED_STATUSES]
        cutoff = utcnow() - timedelta(days=older_than_days)
        deleted = await self.store.delete_dead_letters(statuses, cutoff)
        logger.info(
            "Dead letter cleanup",
            extra={"deleted_count": deleted, "older_than_days": older_than_days},
        )
        return deleted
