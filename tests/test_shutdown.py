import asyncio
import time

import pytest
from conftest import wait_until

from ezjobs.infra.shutdown import ShutdownManager
from ezjobs.v1.core.registries import JobHandlerRegistry
from ezjobs.v1.infra.jobs.payloads import JobType, QueueName

# One job per queue whose handler outlives the shutdown grace period
SLOW_JOBS = {
    QueueName.EMAIL: (
        JobType.SEND_EMAIL,
        {"to": "a@example.com", "subject": "Hello", "html": "<p>Hi</p>"},
    ),
    QueueName.PDF_PROCESSING: (
        JobType.OPTIMIZE_PDF,
        {"documentId": "doc-1", "filePath": "doc-1.pdf"},
    ),
    QueueName.WEBHOOK_DELIVERY: (JobType.WEBHOOK_RETRY_SWEEP, {}),
    QueueName.CLEANUP: (JobType.CLEANUP, {"type": "temp_files"}),
    QueueName.SCHEDULED_SEND: (
        JobType.SCHEDULED_SEND,
        {"documentId": "doc-1", "scheduledAt": "2026-01-01T09:00:00Z", "userId": "u-1"},
    ),
    QueueName.DEADLINE_REMINDERS: (
        JobType.DEADLINE_REMINDER,
        {"documentId": "doc-1", "reminderType": "owner", "reminderId": "r-1"},
    ),
}


def recorder(calls: list[str], name: str, delay: float = 0.0, error: str | None = None):
    async def close():
        if delay:
            await asyncio.sleep(delay)
        if error:
            raise RuntimeError(error)
        calls.append(name)

    return close


async def test_higher_priority_closes_first():
    calls: list[str] = []
    manager = ShutdownManager(timeout_s=1)
    manager.register("database", recorder(calls, "database"), priority=0)
    manager.register("pool", recorder(calls, "pool"), priority=20)
    manager.register("scheduler", recorder(calls, "scheduler"), priority=30)

    assert await manager.shutdown() is True
    assert calls == ["scheduler", "pool", "database"]
    assert manager.done.is_set()


async def test_equal_priority_closes_in_reverse_registration_order():
    calls: list[str] = []
    manager = ShutdownManager(timeout_s=1)
    for name in ["first", "second", "third"]:
        manager.register(name, recorder(calls, name))

    await manager.shutdown()

    assert calls == ["third", "second", "first"]


async def test_failure_does_not_stop_other_resources():
    calls: list[str] = []
    manager = ShutdownManager(timeout_s=1)
    manager.register("database", recorder(calls, "database"))
    manager.register("broken", recorder(calls, "broken", error="boom"), priority=10)

    assert await manager.shutdown() is False
    assert calls == ["database"]


async def test_timeout_returns_false():
    calls: list[str] = []
    manager = ShutdownManager(timeout_s=0.05, final_timeout_s=0.05)
    manager.register("slow", recorder(calls, "slow", delay=1))

    assert await manager.shutdown() is False
    assert calls == []
    assert manager.done.is_set()


async def test_connections_close_after_an_earlier_stage_times_out():
    calls: list[str] = []
    manager = ShutdownManager(timeout_s=0.05)
    manager.register("database", recorder(calls, "database"), priority=0)
    manager.register("pools", recorder(calls, "pools", delay=1), priority=20)
    manager.register("scheduler", recorder(calls, "scheduler"), priority=10)

    assert await manager.shutdown() is False
    # The budget was spent on the pools; the scheduler is skipped, the database is not
    assert calls == ["database"]
    assert manager.done.is_set()


async def test_duplicate_shutdown_is_ignored():
    calls: list[str] = []
    manager = ShutdownManager(timeout_s=1)
    manager.register("slow", recorder(calls, "slow", delay=0.05))

    results = await asyncio.gather(manager.shutdown("SIGTERM"), manager.shutdown("SIGINT"))

    assert sorted(results) == [False, True]
    assert calls == ["slow"]


async def test_unregister():
    calls: list[str] = []
    manager = ShutdownManager(timeout_s=1)
    manager.register("kept", recorder(calls, "kept"))
    manager.register("dropped", recorder(calls, "dropped"))
    manager.unregister("dropped")

    await manager.shutdown()

    assert calls == ["kept"]


async def test_context_starts_and_stops_workers(ctx):
    await ctx.start_workers(["email", "cleanup"])

    assert set(ctx.pools) == {"email", "cleanup"}
    assert all(pool.running for pool in ctx.pools.values())
    assert ctx.scheduler.running
    schedules = await ctx.store.list_repeatables("cleanup")
    assert {s.name for s in schedules} >= {"daily-full-cleanup"}

    names = [r.name for r in ctx.shutdown.ordered()]
    assert names[0] == "repeatable-scheduler"
    assert names[-1] == "http-client"

    assert await ctx.close() is True
    assert not any(pool.running for pool in ctx.pools.values())
    assert not ctx.scheduler.running


async def test_context_refuses_second_start(ctx):
    await ctx.start_workers(["email"])
    try:
        with pytest.raises(RuntimeError, match="already running"):
            await ctx.start_workers(["email"])
    finally:
        await ctx.close()


class BlockingHandler:
    async def handle(self, job):
        await asyncio.sleep(30)


async def test_context_close_drains_every_pool_within_one_grace_period(ctx):
    await ctx.start_workers()
    assert set(ctx.pools) == {name.value for name in SLOW_JOBS}

    handler = BlockingHandler()
    for pool in ctx.pools.values():
        registry = JobHandlerRegistry(pool.name)
        for job_type in pool.queue.definition.job_types:
            registry.register(job_type, handler)
        pool.handlers = registry
    for queue_name, (job_type, payload) in SLOW_JOBS.items():
        await ctx.queue(queue_name).enqueue(job_type, payload)
    await wait_until(lambda: all(pool.active_count for pool in ctx.pools.values()))

    started = time.monotonic()
    assert await ctx.close() is True
    elapsed = time.monotonic() - started

    # Six pools drained one after another would need six grace periods
    assert elapsed < ctx.settings.shutdown_grace_s + 1.5
    assert not any(pool.running for pool in ctx.pools.values())
    assert ctx.http_client.is_closed
