"""
Timer that turns due repeatable registrations into ordinary jobs.
"""

import asyncio
import logging
from collections.abc import Mapping

from ezjobs.v1.infra.jobs.cron import next_fire_time
from ezjobs.v1.infra.jobs.models import RepeatableJob, utcnow
from ezjobs.v1.infra.jobs.queue import Queue
from ezjobs.v1.infra.jobs.store import JobStore

logger = logging.getLogger(__name__)


def fire_key(repeatable: RepeatableJob) -> str:
    fire_ms = int(repeatable.next_run_at.timestamp() * 1000)
    return f"repeat:{repeatable.name}:{fire_ms}"


class RepeatableScheduler:
    """
    Polls the store for due registrations and enqueues one job per fire.

    Missed fires (process down) collapse into a single catch-up run. The
    dedupe key per fire time keeps concurrent schedulers from doubling a run.
    """

    def __init__(
        self,
        store: JobStore,
        queues: Mapping[str, Queue],
        poll_interval_s: float = 1.0,
    ):
        self.store = store
        self.queues = dict(queues)
        self.poll_interval_s = poll_interval_s
        self.running = False
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    async def tick(self) -> int:
        """Fire every due registration once; returns the number of jobs enqueued."""
        now = utcnow()
        fired = 0
        for repeatable in await self.store.due_repeatables(now):
            queue = self.queues.get(repeatable.queue_name)
            if queue is None:
                logger.warning(
                    "Repeatable job targets an unknown queue",
                    extra={
                        "queue": repeatable.queue_name,
                        "repeatable": repeatable.name,
                    },
                )
                continue

            expected = repeatable.next_run_at
            result = await queue.enqueue(
                repeatable.job_type,
                repeatable.payload,
                priority=repeatable.priority,
                dedupe_key=fire_key(repeatable),
            )
            upcoming = next_fire_time(repeatable.cron, repeatable.every_ms, now)
            await self.store.advance_repeatable(repeatable.id, expected, upcoming)

            if not result.deduplicated:
                fired += 1
                logger.info(
                    "Repeatable job fired",
                    extra={
                        "queue": queue.name,
                        "repeatable": repeatable.name,
                        "job_id": str(result.job_id),
                        "next_run_at": upcoming.isoformat(),
                    },
                )
        return fired

    def start(self) -> None:
        if self.running:
            raise RuntimeError("Repeatable scheduler is already running")
        self.running = True
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="repeatable-scheduler")

    async def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None

    async def _run(self) -> None:
        while self.running:
            try:
                await self.tick()
            except Exception:
                logger.exception("Error firing repeatable jobs")
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.poll_interval_s
                )
            except asyncio.TimeoutError:
                pass
