"""
Per-queue worker pool with heartbeats, stall recovery and rate-limited starts.
"""

import asyncio
import logging
import os
import socket
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any
from uuid import UUID

from ezjobs.config.logging import get_logger
from ezjobs.v1.core.registries import JobHandlerRegistry
from ezjobs.v1.infra.jobs.errors import StalledJobError, WorkerShutdownError
from ezjobs.v1.infra.jobs.models import Job, JobStatus, utcnow
from ezjobs.v1.infra.jobs.payloads import JobPayload
from ezjobs.v1.infra.jobs.queue import Queue
from ezjobs.v1.infra.jobs.ratelimit import TokenBucket
from ezjobs.v1.infra.jobs.retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class ActiveJob:
    """What a handler sees of the job it is running."""

    id: UUID
    queue_name: str
    job_type: str
    payload: JobPayload
    attempts: int
    max_attempts: int
    _pool: "WorkerPool" = field(repr=False)
    progress: int = 0

    async def update_progress(self, progress: int) -> None:
        self.progress = max(0, min(100, int(progress)))
        await self._pool.store.update_progress(self.id, self.progress)


@dataclass
class PoolTimings:
    poll_interval_s: float = 0.5
    lease_timeout_s: int = 30
    heartbeat_interval_s: float = 10.0
    stalled_check_interval_s: float = 30.0
    maintenance_interval_s: float = 60.0
    error_backoff_s: float = 5.0


class WorkerPool:
    """
    Consumer for one queue.

    Features:
    - Up to ``concurrency`` handlers at once (semaphore)
    - Token bucket limiting how fast new jobs start
    - Heartbeats for held jobs and recovery of stalled ones
    - Retention pruning of finished jobs
    - Graceful drain on stop
    """

    def __init__(
        self,
        queue: Queue,
        handlers: JobHandlerRegistry,
        *,
        concurrency: int,
        limiter: TokenBucket | None = None,
        retry_policy: RetryPolicy | None = None,
        timings: PoolTimings | None = None,
        worker_id: str | None = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        handlers.ensure_covers(queue.definition.job_types)

        self.queue = queue
        self.store = queue.store
        self.handlers = handlers
        self.concurrency = concurrency
        self.limiter = limiter
        self.retry_policy = retry_policy or RetryPolicy(
            queue.store, queue.definition.defaults.backoff
        )
        self.timings = timings or PoolTimings()
        self.worker_id = worker_id or (
            f"{socket.gethostname()}-{os.getpid()}-{queue.name}-{id(self):x}"
        )

        self.running = False
        self.active_jobs: set[UUID] = set()
        self.max_active_observed = 0
        self._slots = asyncio.Semaphore(concurrency)
        self._stop_event = asyncio.Event()
        self._job_tasks: set[asyncio.Task] = set()
        self._loop_tasks: list[asyncio.Task] = []

    @property
    def name(self) -> str:
        return self.queue.name

    @property
    def active_count(self) -> int:
        return len(self.active_jobs)

    def start(self) -> None:
        """Start the pool's loops as background tasks."""
        if self.running:
            raise RuntimeError(f"Worker pool for '{self.name}' is already running")

        self.running = True
        self._stop_event.clear()
        logger.info(
            "Starting worker pool",
            extra={
                "worker_id": self.worker_id,
                "queue": self.name,
                "concurrency": self.concurrency,
                "rate_limit": self.limiter.max_tokens if self.limiter else None,
            },
        )
        self._loop_tasks = [
            asyncio.create_task(self._worker_loop(), name=f"{self.name}-claim"),
            asyncio.create_task(self._heartbeat_loop(), name=f"{self.name}-heartbeat"),
            asyncio.create_task(
                self._stalled_job_recovery_loop(), name=f"{self.name}-stalled"
            ),
            asyncio.create_task(self._maintenance_loop(), name=f"{self.name}-retention"),
        ]

    async def stop(self, grace_s: float = 30.0) -> None:
        """Stop claiming, let active jobs drain for ``grace_s``, then cancel."""
        if not self.running:
            return
        logger.info(
            "Stopping worker pool",
            extra={"worker_id": self.worker_id, "queue": self.name},
        )
        self.running = False
        self._stop_event.set()

        if self._job_tasks:
            _, pending = await asyncio.wait(set(self._job_tasks), timeout=grace_s)
            if pending:
                logger.warning(
                    "Worker pool stopped with active jobs",
                    extra={
                        "worker_id": self.worker_id,
                        "queue": self.name,
                        "active_jobs": len(pending),
                    },
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        for task in self._loop_tasks:
            task.cancel()
        await asyncio.gather(*self._loop_tasks, return_exceptions=True)
        self._loop_tasks = []

    async def _wait(self, seconds: float) -> None:
        """Sleep, waking early when the pool is stopped."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _worker_loop(self) -> None:
        """Claim jobs while there are free slots."""
        while self.running:
            await self._slots.acquire()
            claimed = False
            try:
                if not self.running:
                    break
                # Only a claimed job spends a token; empty polls do not.
                if self.limiter is not None:
                    await self.limiter.wait_available()

                job = await self.store.claim_job(self.name, self.worker_id)
                if job is None:
                    await self._wait(self.timings.poll_interval_s)
                    continue

                if self.limiter is not None:
                    self.limiter.take()
                claimed = True
                self._spawn(job)

            except Exception:
                logger.exception(
                    "Error in worker loop",
                    extra={"worker_id": self.worker_id, "queue": self.name},
                )
                await self._wait(self.timings.error_backoff_s)
            finally:
                if not claimed:
                    self._slots.release()

    def _spawn(self, job: Job) -> None:
        self.active_jobs.add(job.id)
        self.max_active_observed = max(self.max_active_observed, len(self.active_jobs))
        task = asyncio.create_task(self._process_job(job))
        self._job_tasks.add(task)
        task.add_done_callback(self._job_tasks.discard)

    async def _process_job(self, job: Job) -> None:
        """Run one attempt and record its outcome."""
        job_logger = get_logger(__name__).bind(
            job_id=str(job.id),
            job_type=job.job_type,
            queue=self.name,
            attempt=job.attempts,
        )

        try:
            job_logger.info("Processing job started")
            payload = self.queue.parse_payload(job.job_type, job.payload)
            handler = self.handlers.get(job.job_type)
            active_job = ActiveJob(
                id=job.id,
                queue_name=job.queue_name,
                job_type=job.job_type,
                payload=payload,
                attempts=job.attempts,
                max_attempts=job.max_attempts,
                _pool=self,
            )

            result = await handler.handle(active_job)

            if await self.store.complete_job(job.id, self.worker_id, result or {}):
                job_logger.info("Processing job completed successfully")
            else:
                job_logger.warning("Job lease lost before completion was recorded")

        except asyncio.CancelledError:
            job_logger.warning("Job processing cancelled at shutdown")
            await asyncio.shield(
                self._record_failure(job, WorkerShutdownError("Worker shut down"))
            )
            raise

        except Exception as e:
            job_logger.exception("Job processing failed", error=str(e))
            await self._record_failure(job, e)

        finally:
            self.active_jobs.discard(job.id)
            self._slots.release()

    async def _record_failure(self, job: Job, error: BaseException) -> None:
        try:
            await self.retry_policy.handle_failure(job, error, locked_by=self.worker_id)
        except Exception:
            # The job stays active without heartbeats; stall recovery retries it.
            logger.exception(
                "Failed to record job failure",
                extra={"job_id": str(job.id), "queue": self.name},
            )

    async def _heartbeat_loop(self) -> None:
        """Refresh heartbeats for jobs this pool holds."""
        while self.running:
            try:
                if self.active_jobs:
                    await self.store.heartbeat(list(self.active_jobs), self.worker_id)
                await self._wait(self.timings.heartbeat_interval_s)

            except Exception:
                logger.exception(
                    "Error updating heartbeats",
                    extra={"worker_id": self.worker_id, "queue": self.name},
                )
                await self._wait(self.timings.error_backoff_s)

    async def recover_stalled_jobs(self) -> int:
        """Fail-for-retry every active job whose lease has expired."""
        lease = self.timings.lease_timeout_s
        cutoff = utcnow() - timedelta(seconds=lease)
        stalled = await self.store.find_stalled_jobs(self.name, cutoff)

        recovered = 0
        for job in stalled:
            if job.id in self.active_jobs:
                continue
            outcome = await self.retry_policy.handle_failure(
                job, StalledJobError(lease), locked_by=job.locked_by
            )
            if outcome is not None:
                recovered += 1

        if recovered:
            logger.warning(
                "Recovered stalled jobs",
                extra={
                    "queue": self.name,
                    "stalled_job_count": recovered,
                    "lease_timeout_s": lease,
                },
            )
        return recovered

    async def _stalled_job_recovery_loop(self) -> None:
        while self.running:
            try:
                await self.recover_stalled_jobs()
                await self._wait(self.timings.stalled_check_interval_s)

            except Exception:
                logger.exception("Error in stalled job recovery", extra={"queue": self.name})
                await self._wait(self.timings.error_backoff_s)

    async def prune_finished_jobs(self) -> dict[str, int]:
        """Apply the queue's retention policy to completed and failed jobs."""
        retention = self.queue.definition.retention
        now = utcnow()
        removed = {
            JobStatus.COMPLETED.value: await self.store.prune_jobs(
                self.name,
                JobStatus.COMPLETED,
                retention.keep_completed,
                now - timedelta(seconds=retention.completed_age_s),
            ),
            JobStatus.FAILED.value: await self.store.prune_jobs(
                self.name,
                JobStatus.FAILED,
                retention.keep_failed,
                now - timedelta(seconds=retention.failed_age_s),
            ),
        }
        if any(removed.values()):
            logger.info("Pruned finished jobs", extra={"queue": self.name, **removed})
        return removed

    async def _maintenance_loop(self) -> None:
        while self.running:
            try:
                await self.prune_finished_jobs()
                await self._wait(self.timings.maintenance_interval_s)

            except Exception:
                logger.exception("Error pruning finished jobs", extra={"queue": self.name})
                await self._wait(self.timings.error_backoff_s)

    def describe(self) -> dict[str, Any]:
        return {
            "queue": self.name,
            "worker_id": self.worker_id,
            "running": self.running,
            "concurrency": self.concurrency,
            "active_jobs": self.active_count,
        }
