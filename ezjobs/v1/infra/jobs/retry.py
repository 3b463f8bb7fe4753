"""
Failure handling for job attempts.

After every failed attempt the policy either re-delays the job according to
its backoff or, once attempts are exhausted, fails it and records a dead
letter entry in the same store operation. Promotion is not left to an
optional listener, so an exhausted job always reaches the dead letter queue.
"""

import logging
import traceback
from datetime import timedelta

from ezjobs.v1.infra.dlq.models import DeadLetterEntry
from ezjobs.v1.infra.jobs.backoff import Backoff, backoff_from_config, exponential_ms
from ezjobs.v1.infra.jobs.models import Job, JobStatus, utcnow
from ezjobs.v1.infra.jobs.store import JobStore

logger = logging.getLogger(__name__)


def should_move_to_dead_letter_queue(job: Job) -> bool:
    """True once the job has used all of its attempts."""
    return job.attempts >= job.max_attempts


def describe_error(error: BaseException) -> tuple[str, str]:
    message = str(error) or error.__class__.__name__
    stack = "".join(traceback.format_exception(error))
    return message, stack


async def move_to_dead_letter_queue(
    store: JobStore, job: Job, error: BaseException, locked_by: str | None
) -> DeadLetterEntry | None:
    """Fail the job terminally and persist its dead letter entry."""
    message, stack = describe_error(error)
    entry = await store.fail_job(job.id, locked_by, message, stack)
    if entry is None:
        logger.warning(
            "Job lease lost before dead-lettering",
            extra={"job_id": str(job.id), "queue": job.queue_name},
        )
        return None

    logger.error(
        "Job moved to dead letter queue",
        extra={
            "job_id": str(job.id),
            "queue": job.queue_name,
            "job_type": job.job_type,
            "attempts": job.attempts,
            "dead_letter_id": str(entry.id),
            "error": message,
        },
    )
    return entry


class RetryPolicy:
    """Decides the next state of a job after a failed attempt."""

    def __init__(self, store: JobStore, default_backoff: Backoff | None = None):
        self.store = store
        self.default_backoff = default_backoff or exponential_ms(1000)

    def backoff_for(self, job: Job) -> Backoff:
        return backoff_from_config(job.backoff, self.default_backoff)

    async def handle_failure(
        self, job: Job, error: BaseException, locked_by: str | None
    ) -> JobStatus | None:
        """
        Re-delay or dead-letter a job whose attempt failed.

        ``job.attempts`` already counts the failed attempt. Returns the new
        status, or None when another worker changed the job first.
        """
        if should_move_to_dead_letter_queue(job):
            entry = await move_to_dead_letter_queue(self.store, job, error, locked_by)
            return JobStatus.FAILED if entry is not None else None

        delay = self.backoff_for(job).delay(job.attempts)
        run_at = utcnow() + timedelta(seconds=delay)
        message, stack = describe_error(error)

        if not await self.store.reschedule_job(
            job.id, locked_by, run_at, message, stack
        ):
            logger.warning(
                "Job lease lost before retry could be scheduled",
                extra={"job_id": str(job.id), "queue": job.queue_name},
            )
            return None

        logger.info(
            "Job scheduled for retry",
            extra={
                "job_id": str(job.id),
                "queue": job.queue_name,
                "attempts": job.attempts,
                "max_attempts": job.max_attempts,
                "delay_s": delay,
                "next_run_at": run_at.isoformat(),
                "error": message,
            },
        )
        return JobStatus.DELAYED
