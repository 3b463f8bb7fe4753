from datetime import UTC, datetime, timedelta

import pytest

from ezjobs.v1.infra.jobs.cron import next_fire_time
from ezjobs.v1.infra.jobs.models import JobStatus, utcnow
from ezjobs.v1.infra.jobs.payloads import JobType, QueueName
from ezjobs.v1.infra.jobs.scheduler import RepeatableScheduler, fire_key
from ezjobs.v1.infra.jobs.schedules import (
    DAILY_FULL_CLEANUP,
    TEMP_CLEANUP,
    WEBHOOK_RETRY_SWEEP,
    register_cleanup_schedules,
    register_webhook_schedules,
)


def test_cron_next_fire_time_is_strictly_after():
    after = datetime(2026, 3, 1, 3, 0, tzinfo=UTC)

    assert next_fire_time("0 3 * * *", None, after) == datetime(2026, 3, 2, 3, 0, tzinfo=UTC)
    assert next_fire_time("0 */6 * * *", None, after) == datetime(
        2026, 3, 1, 6, 0, tzinfo=UTC
    )


def test_interval_next_fire_time():
    after = datetime(2026, 3, 1, tzinfo=UTC)

    assert next_fire_time(None, 60000, after) == after + timedelta(minutes=1)
    with pytest.raises(ValueError):
        next_fire_time(None, 0, after)


async def test_cleanup_schedules_registered_once(queues, store):
    cleanup_queue = queues[QueueName.CLEANUP.value]

    await register_cleanup_schedules(cleanup_queue)
    await register_cleanup_schedules(cleanup_queue)

    registered = {r.name: r for r in await cleanup_queue.list_repeatables()}
    assert set(registered) == {DAILY_FULL_CLEANUP, TEMP_CLEANUP}
    assert registered[DAILY_FULL_CLEANUP].cron == "0 3 * * *"
    assert registered[DAILY_FULL_CLEANUP].payload == {"type": "full_cleanup", "maxAgeHours": 24}
    assert registered[TEMP_CLEANUP].cron == "0 */6 * * *"
    assert registered[TEMP_CLEANUP].payload == {"type": "temp_files", "maxAgeHours": 6}


async def test_reregistration_drops_stale_registrations(queues):
    cleanup_queue = queues[QueueName.CLEANUP.value]
    await cleanup_queue.add_repeatable(
        "hourly-legacy", JobType.CLEANUP, {"type": "temp_files"}, every_ms=3600000
    )

    await register_cleanup_schedules(cleanup_queue)

    names = {r.name for r in await cleanup_queue.list_repeatables()}
    assert "hourly-legacy" not in names


async def test_webhook_sweep_registered_on_its_interval(queues):
    webhook_queue = queues[QueueName.WEBHOOK_DELIVERY.value]

    (sweep,) = await register_webhook_schedules(webhook_queue, every_ms=30000)

    assert sweep.name == WEBHOOK_RETRY_SWEEP
    assert sweep.every_ms == 30000
    assert sweep.cron is None


async def test_scheduler_fires_due_registration_once(queues, store):
    cleanup_queue = queues[QueueName.CLEANUP.value]
    repeatable = await cleanup_queue.add_repeatable(
        "every-minute", JobType.CLEANUP, {"type": "temp_files"}, every_ms=60000
    )
    repeatable.next_run_at = utcnow() - timedelta(seconds=1)
    scheduler = RepeatableScheduler(store, queues)

    assert await scheduler.tick() == 1
    assert await scheduler.tick() == 0

    (job,) = store.jobs.values()
    assert job.queue_name == "cleanup"
    assert job.job_type == "CLEANUP"
    assert job.status == JobStatus.WAITING.value
    assert repeatable.next_run_at > utcnow()
    assert repeatable.last_run_at is not None


async def test_missed_fires_collapse_into_one_run(queues, store):
    cleanup_queue = queues[QueueName.CLEANUP.value]
    repeatable = await cleanup_queue.add_repeatable(
        "every-minute", JobType.CLEANUP, {"type": "temp_files"}, every_ms=60000
    )
    repeatable.next_run_at = utcnow() - timedelta(hours=3)

    assert await RepeatableScheduler(store, queues).tick() == 1
    assert len(store.jobs) == 1


async def test_same_fire_time_is_enqueued_once(queues, store):
    cleanup_queue = queues[QueueName.CLEANUP.value]
    repeatable = await cleanup_queue.add_repeatable(
        "every-minute", JobType.CLEANUP, {"type": "temp_files"}, every_ms=60000
    )

    first = await cleanup_queue.enqueue(
        repeatable.job_type, repeatable.payload, dedupe_key=fire_key(repeatable)
    )
    second = await cleanup_queue.enqueue(
        repeatable.job_type, repeatable.payload, dedupe_key=fire_key(repeatable)
    )

    assert second.deduplicated is True
    assert second.job_id == first.job_id


async def test_scheduler_start_and_stop(queues, store):
    scheduler = RepeatableScheduler(store, queues, poll_interval_s=0.01)

    scheduler.start()
    assert scheduler.running is True
    with pytest.raises(RuntimeError):
        scheduler.start()

    await scheduler.stop()
    assert scheduler.running is False
