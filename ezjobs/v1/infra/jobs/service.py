"""
Job status and queue metrics.
"""

import logging
from collections.abc import Mapping
from uuid import UUID

from ezjobs.v1.infra.dlq.models import DeadLetterStatus
from ezjobs.v1.infra.jobs.models import Job
from ezjobs.v1.infra.jobs.queue import Queue
from ezjobs.v1.infra.jobs.schemas import JobStatusResponse, MetricsResponse, QueueMetrics
from ezjobs.v1.infra.jobs.store import JobStore

logger = logging.getLogger(__name__)


class JobService:
    """Read-side view over every configured queue."""

    def __init__(self, store: JobStore, queues: Mapping[str, Queue]):
        self.store = store
        self.queues = dict(queues)

    async def get_job(self, job_id: UUID, queue_name: str | None = None) -> Job | None:
        """
        Find a job by id, optionally restricted to one queue.

        Args:
            job_id: Job identifier
            queue_name: Only return the job when it belongs to this queue

        Returns:
            The job, or None when unknown (or pruned by retention)
        """
        job = await self.store.get_job(job_id)
        if job is None:
            return None
        if queue_name is not None and job.queue_name != queue_name:
            return None
        return job

    async def get_job_status(
        self, job_id: UUID, queue_name: str | None = None
    ) -> JobStatusResponse | None:
        job = await self.get_job(job_id, queue_name)
        if job is None:
            return None
        return JobStatusResponse(
            id=job.id,
            queue=job.queue_name,
            type=job.job_type,
            status=job.status,
            progress=job.progress or 0,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            result=job.result,
            error=job.error,
            created_at=job.created_at,
            processed_at=job.processed_at,
            finished_at=job.finished_at,
        )

    async def get_metrics(self) -> MetricsResponse:
        """Per-queue and total job counts, plus the pending dead letter backlog."""
        per_queue: dict[str, QueueMetrics] = {}
        totals: dict[str, int] = {}
        for name, queue in self.queues.items():
            counts = await queue.get_metrics()
            per_queue[name] = QueueMetrics(**counts)
            for status, count in counts.items():
                totals[status] = totals.get(status, 0) + count

        stats = await self.store.dead_letter_stats()
        return MetricsResponse(
            queues=per_queue,
            totals=QueueMetrics(**totals),
            dead_letter_pending=stats["by_status"].get(DeadLetterStatus.PENDING.value, 0),
        )
