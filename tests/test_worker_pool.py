import asyncio
from dataclasses import replace
from datetime import timedelta

import pytest
from conftest import wait_until

from ezjobs.v1.core.registries import JobHandlerRegistry, MissingHandlerError
from ezjobs.v1.infra.dlq.models import DeadLetterStatus
from ezjobs.v1.infra.jobs.backoff import FixedBackoff
from ezjobs.v1.infra.jobs.models import JobStatus, utcnow
from ezjobs.v1.infra.jobs.payloads import JobType, QueueName
from ezjobs.v1.infra.jobs.queue import RetentionPolicy
from ezjobs.v1.infra.jobs.ratelimit import TokenBucket
from ezjobs.v1.infra.jobs.worker import WorkerPool

EMAIL = {"to": "a@example.com", "subject": "Hello", "html": "<p>Hi</p>"}


class RecordingHandler:
    """Succeeds after ``fail_times`` failures, tracking concurrency."""

    def __init__(self, fail_times: int = 0, sleep_s: float = 0.0):
        self.fail_times = fail_times
        self.sleep_s = sleep_s
        self.calls = 0
        self.running = 0
        self.max_running = 0

    async def handle(self, job):
        self.calls += 1
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            if self.sleep_s:
                await asyncio.sleep(self.sleep_s)
            if self.calls <= self.fail_times:
                raise RuntimeError(f"attempt {job.attempts} failed")
            await job.update_progress(50)
            return {"to": job.payload.to, "attempt": job.attempts}
        finally:
            self.running -= 1


def email_registry(handler) -> JobHandlerRegistry:
    registry = JobHandlerRegistry(QueueName.EMAIL.value)
    registry.register(JobType.SEND_EMAIL.value, handler)
    registry.freeze()
    return registry


@pytest.fixture
def email_queue(queues):
    return queues[QueueName.EMAIL.value]


@pytest.fixture
async def make_pool(email_queue, fast_timings):
    pools: list[WorkerPool] = []

    def factory(handler, concurrency: int = 2, **kwargs) -> WorkerPool:
        pool = WorkerPool(
            email_queue,
            email_registry(handler),
            concurrency=concurrency,
            timings=fast_timings,
            **kwargs,
        )
        pools.append(pool)
        return pool

    yield factory

    for pool in pools:
        await pool.stop(grace_s=1)


def test_pool_requires_handlers_for_every_job_type(email_queue):
    with pytest.raises(MissingHandlerError, match="missing=\\['SEND_EMAIL'\\]"):
        WorkerPool(email_queue, JobHandlerRegistry("email"), concurrency=1)


def test_pool_requires_positive_concurrency(email_queue):
    with pytest.raises(ValueError, match="concurrency"):
        WorkerPool(email_queue, email_registry(RecordingHandler()), concurrency=0)


async def test_pool_completes_job_with_result(make_pool, email_queue, store):
    handler = RecordingHandler()
    pool = make_pool(handler)
    result = await email_queue.enqueue(JobType.SEND_EMAIL, EMAIL)

    pool.start()
    await wait_until(lambda: store.jobs[result.job_id].status == JobStatus.COMPLETED.value)

    job = store.jobs[result.job_id]
    assert job.result == {"to": "a@example.com", "attempt": 1}
    assert job.progress == 100
    assert job.locked_by is None
    assert job.finished_at is not None


async def test_pool_never_exceeds_concurrency(make_pool, email_queue, store):
    handler = RecordingHandler(sleep_s=0.05)
    pool = make_pool(handler, concurrency=3)
    for _ in range(10):
        await email_queue.enqueue(JobType.SEND_EMAIL, EMAIL)

    pool.start()
    await wait_until(
        lambda: all(j.status == JobStatus.COMPLETED.value for j in store.jobs.values())
    )

    assert handler.calls == 10
    assert handler.max_running <= 3
    assert pool.max_active_observed <= 3
    assert pool.max_active_observed > 1


async def test_failed_attempts_are_retried_until_success(make_pool, email_queue, store):
    handler = RecordingHandler(fail_times=2)
    pool = make_pool(handler)
    result = await email_queue.enqueue(
        JobType.SEND_EMAIL, EMAIL, max_attempts=3, backoff=FixedBackoff(0)
    )

    pool.start()
    await wait_until(lambda: store.jobs[result.job_id].status == JobStatus.COMPLETED.value)

    job = store.jobs[result.job_id]
    assert job.attempts == 3
    assert job.result["attempt"] == 3
    assert store.dead_letters == {}


async def test_exhausted_job_moves_to_dead_letter_queue(make_pool, email_queue, store):
    handler = RecordingHandler(fail_times=100)
    pool = make_pool(handler)
    result = await email_queue.enqueue(
        JobType.SEND_EMAIL, EMAIL, max_attempts=3, backoff=FixedBackoff(0)
    )

    pool.start()
    await wait_until(lambda: store.dead_letters)

    job = store.jobs[result.job_id]
    assert job.status == JobStatus.FAILED.value
    assert job.attempts == 3
    assert handler.calls == 3

    (entry,) = store.dead_letters.values()
    assert entry.original_job_id == result.job_id
    assert entry.source_queue == "email"
    assert entry.job_type == "SEND_EMAIL"
    assert entry.payload == EMAIL
    assert entry.attempts_made == 3
    assert entry.max_attempts == 3
    assert entry.status == DeadLetterStatus.PENDING.value
    assert entry.error == "attempt 3 failed"
    assert "RuntimeError" in entry.error_stack


async def test_retry_is_delayed_by_backoff(make_pool, email_queue, store):
    handler = RecordingHandler(fail_times=1)
    pool = make_pool(handler)
    result = await email_queue.enqueue(
        JobType.SEND_EMAIL, EMAIL, backoff=FixedBackoff(60)
    )

    pool.start()
    await wait_until(lambda: store.jobs[result.job_id].status == JobStatus.DELAYED.value)

    job = store.jobs[result.job_id]
    assert job.error == "attempt 1 failed"
    assert job.run_at > utcnow() + timedelta(seconds=50)


async def test_stalled_job_is_retried(make_pool, email_queue, store):
    pool = make_pool(RecordingHandler())
    result = await email_queue.enqueue(JobType.SEND_EMAIL, EMAIL, backoff=FixedBackoff(0))
    job = await store.claim_job("email", "crashed-worker")
    job.heartbeat_at = utcnow() - timedelta(minutes=5)

    assert await pool.recover_stalled_jobs() == 1

    job = store.jobs[result.job_id]
    assert job.status == JobStatus.DELAYED.value
    assert job.attempts == 1
    assert "stalled" in job.error


async def test_stalled_job_without_attempts_left_is_dead_lettered(
    make_pool, email_queue, store
):
    pool = make_pool(RecordingHandler())
    result = await email_queue.enqueue(JobType.SEND_EMAIL, EMAIL, max_attempts=1)
    job = await store.claim_job("email", "crashed-worker")
    job.heartbeat_at = utcnow() - timedelta(minutes=5)

    await pool.recover_stalled_jobs()

    assert store.jobs[result.job_id].status == JobStatus.FAILED.value
    (entry,) = store.dead_letters.values()
    assert entry.attempts_made == 1


async def test_fresh_heartbeat_is_not_stalled(make_pool, email_queue, store):
    pool = make_pool(RecordingHandler())
    await email_queue.enqueue(JobType.SEND_EMAIL, EMAIL)
    await store.claim_job("email", "busy-worker")

    assert await pool.recover_stalled_jobs() == 0


async def test_late_worker_cannot_overwrite_recovery(email_queue, store):
    await email_queue.enqueue(JobType.SEND_EMAIL, EMAIL, backoff=FixedBackoff(0))
    job = await store.claim_job("email", "slow-worker")
    await store.reschedule_job(job.id, "slow-worker", utcnow(), "stalled")
    reclaimed = await store.claim_job("email", "other-worker")

    assert reclaimed.id == job.id
    assert await store.complete_job(job.id, "slow-worker", {"late": True}) is False
    assert await store.complete_job(job.id, "other-worker", {}) is True


async def test_rate_limited_pool_still_processes_everything(make_pool, email_queue, store):
    pool = make_pool(RecordingHandler(), concurrency=5, limiter=TokenBucket(max_tokens=20))
    for _ in range(25):
        await email_queue.enqueue(JobType.SEND_EMAIL, EMAIL)

    pool.start()
    await wait_until(
        lambda: all(j.status == JobStatus.COMPLETED.value for j in store.jobs.values())
    )


async def test_empty_polls_do_not_spend_start_tokens(make_pool, email_queue, store):
    limiter = TokenBucket(max_tokens=2, duration_s=60)
    pool = make_pool(RecordingHandler(), limiter=limiter)

    pool.start()
    # Several 10ms polls find nothing to claim
    await asyncio.sleep(0.1)
    assert limiter.tokens >= 1.99

    result = await email_queue.enqueue(JobType.SEND_EMAIL, EMAIL)
    await wait_until(
        lambda: store.jobs[result.job_id].status == JobStatus.COMPLETED.value
    )
    assert 0.99 <= limiter.tokens < 1.5


async def test_stop_drains_active_jobs(make_pool, email_queue, store):
    handler = RecordingHandler(sleep_s=0.1)
    pool = make_pool(handler)
    result = await email_queue.enqueue(JobType.SEND_EMAIL, EMAIL)

    pool.start()
    await wait_until(lambda: pool.active_count == 1)
    await pool.stop(grace_s=2)

    assert pool.running is False
    assert store.jobs[result.job_id].status == JobStatus.COMPLETED.value


async def test_stop_after_grace_records_failure(make_pool, email_queue, store):
    handler = RecordingHandler(sleep_s=10)
    pool = make_pool(handler)
    result = await email_queue.enqueue(
        JobType.SEND_EMAIL, EMAIL, backoff=FixedBackoff(0)
    )

    pool.start()
    await wait_until(lambda: pool.active_count == 1)
    await pool.stop(grace_s=0.05)

    job = store.jobs[result.job_id]
    assert job.status == JobStatus.DELAYED.value
    assert job.error == "Worker shut down"


async def test_start_twice_is_an_error(make_pool):
    pool = make_pool(RecordingHandler())
    pool.start()

    with pytest.raises(RuntimeError, match="already running"):
        pool.start()


async def test_prune_applies_retention(email_queue, store, fast_timings):
    email_queue.definition = replace(
        email_queue.definition,
        retention=RetentionPolicy(keep_completed=2, completed_age_s=3600),
    )
    pool = WorkerPool(
        email_queue, email_registry(RecordingHandler()), concurrency=1, timings=fast_timings
    )
    for _ in range(4):
        await email_queue.enqueue(JobType.SEND_EMAIL, EMAIL)
        job = await store.claim_job("email", "w")
        await store.complete_job(job.id, "w", {})

    removed = await pool.prune_finished_jobs()

    assert removed == {"completed": 2, "failed": 0}
    assert len(store.jobs) == 2


async def test_describe(make_pool):
    pool = make_pool(RecordingHandler(), concurrency=4)

    description = pool.describe()
    assert description["queue"] == "email"
    assert description["concurrency"] == 4
    assert description["running"] is False
    assert description["active_jobs"] == 0
