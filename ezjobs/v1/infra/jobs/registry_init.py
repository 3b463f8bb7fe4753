"""
Queue, handler and worker pool wiring.

Each named queue gets its definition (accepted job types, defaults,
retention), a handler registry covering exactly those job types and a
worker pool sized from settings.
"""

import logging
from typing import TYPE_CHECKING

from ezjobs.config.settings import Settings
from ezjobs.v1.cleanup.handlers import CleanupHandler
from ezjobs.v1.core.registries import JobHandlerRegistry
from ezjobs.v1.email.jobs import SendEmailHandler
from ezjobs.v1.infra.jobs.backoff import exponential_ms
from ezjobs.v1.infra.jobs.payloads import JobType, QueueName
from ezjobs.v1.infra.jobs.queue import (
    JobOptions,
    Queue,
    QueueDefinition,
    RetentionPolicy,
)
from ezjobs.v1.infra.jobs.ratelimit import TokenBucket
from ezjobs.v1.infra.jobs.store import JobStore
from ezjobs.v1.infra.jobs.worker import PoolTimings, WorkerPool
from ezjobs.v1.pdf.handlers import (
    FlattenHandler,
    MergeHandler,
    OptimizeHandler,
    ThumbnailHandler,
    WatermarkHandler,
)
from ezjobs.v1.pdf.service import PDF_JOB_ATTEMPTS
from ezjobs.v1.scheduling.reminders import DeadlineReminderHandler
from ezjobs.v1.scheduling.scheduled_send import (
    SCHEDULED_SEND_ATTEMPTS,
    SCHEDULED_SEND_BACKOFF,
    ScheduledSendHandler,
)
from ezjobs.v1.webhooks.handlers import WebhookDeliveryHandler, WebhookRetrySweepHandler

if TYPE_CHECKING:
    from ezjobs.context import AppContext

logger = logging.getLogger(__name__)


def build_queue_definitions(settings: Settings) -> dict[QueueName, QueueDefinition]:
    """Definitions for every named queue, with settings-driven defaults."""
    defaults = JobOptions(
        max_attempts=settings.job_max_attempts,
        backoff=exponential_ms(settings.job_backoff_base_ms),
    )
    retention = RetentionPolicy(
        keep_completed=settings.job_keep_completed_count,
        completed_age_s=settings.job_keep_completed_age_s,
        keep_failed=settings.job_keep_failed_count,
        failed_age_s=settings.job_keep_failed_age_s,
    )
    overrides: dict[QueueName, tuple[JobOptions, RetentionPolicy]] = {
        QueueName.PDF_PROCESSING: (
            JobOptions(max_attempts=PDF_JOB_ATTEMPTS, backoff=defaults.backoff),
            retention,
        ),
        QueueName.CLEANUP: (
            JobOptions(max_attempts=defaults.max_attempts, backoff=exponential_ms(60000)),
            RetentionPolicy(
                keep_completed=50,
                completed_age_s=86400,
                keep_failed=100,
                failed_age_s=604800,
            ),
        ),
        QueueName.SCHEDULED_SEND: (
            JobOptions(
                max_attempts=SCHEDULED_SEND_ATTEMPTS, backoff=SCHEDULED_SEND_BACKOFF
            ),
            retention,
        ),
    }

    definitions = {}
    for name in QueueName:
        queue_defaults, queue_retention = overrides.get(name, (defaults, retention))
        definitions[name] = QueueDefinition.for_queue(
            name, queue_defaults, queue_retention
        )
    return definitions


def build_queues(store: JobStore, settings: Settings) -> dict[str, Queue]:
    return {
        name.value: Queue(definition, store)
        for name, definition in build_queue_definitions(settings).items()
    }


def register_job_handlers(ctx: "AppContext") -> dict[str, JobHandlerRegistry]:
    """Build one frozen handler registry per queue."""
    settings = ctx.settings
    registries = {name.value: JobHandlerRegistry(name.value) for name in QueueName}

    # Email
    registries[QueueName.EMAIL.value].register(
        JobType.SEND_EMAIL.value, SendEmailHandler(ctx.email)
    )

    # PDF processing
    pdf = registries[QueueName.PDF_PROCESSING.value]
    collaborators = (ctx.storage, ctx.pdf, ctx.documents)
    pdf.register(JobType.GENERATE_THUMBNAIL.value, ThumbnailHandler(*collaborators))
    pdf.register(JobType.OPTIMIZE_PDF.value, OptimizeHandler(*collaborators))
    pdf.register(JobType.FLATTEN_PDF.value, FlattenHandler(*collaborators))
    pdf.register(JobType.ADD_WATERMARK.value, WatermarkHandler(*collaborators))
    pdf.register(JobType.MERGE_PDFS.value, MergeHandler(*collaborators))

    # Webhooks
    webhooks = registries[QueueName.WEBHOOK_DELIVERY.value]
    webhooks.register(JobType.WEBHOOK_DELIVERY.value, WebhookDeliveryHandler(ctx.delivery))
    webhooks.register(
        JobType.WEBHOOK_RETRY_SWEEP.value, WebhookRetrySweepHandler(ctx.webhooks)
    )

    # Cleanup
    registries[QueueName.CLEANUP.value].register(
        JobType.CLEANUP.value, CleanupHandler(ctx.cleanup)
    )

    # Scheduling
    registries[QueueName.SCHEDULED_SEND.value].register(
        JobType.SCHEDULED_SEND.value,
        ScheduledSendHandler(ctx.documents, ctx.email, settings.app_url),
    )
    registries[QueueName.DEADLINE_REMINDERS.value].register(
        JobType.DEADLINE_REMINDER.value,
        DeadlineReminderHandler(ctx.documents, ctx.email, settings.app_url),
    )

    for registry in registries.values():
        registry.freeze()

    logger.info(
        "Job handlers registered",
        extra={"registered_handlers": {q: r.list() for q, r in registries.items()}},
    )
    return registries


def pool_sizing(settings: Settings, queue_name: QueueName) -> tuple[int, int | None]:
    """(concurrency, job starts per second) for a queue; None means unthrottled."""
    if queue_name == QueueName.WEBHOOK_DELIVERY:
        return settings.webhook_concurrency, settings.webhook_rate_limit
    if queue_name == QueueName.PDF_PROCESSING:
        return settings.pdf_concurrency, settings.pdf_rate_limit
    if queue_name == QueueName.CLEANUP:
        return settings.cleanup_concurrency, None
    return settings.default_concurrency, settings.default_rate_limit


def pool_timings(settings: Settings) -> PoolTimings:
    return PoolTimings(
        poll_interval_s=settings.job_poll_interval_ms / 1000,
        lease_timeout_s=settings.job_lease_timeout_s,
        heartbeat_interval_s=settings.job_heartbeat_interval_s,
        stalled_check_interval_s=settings.job_stalled_check_interval_s,
        maintenance_interval_s=settings.job_maintenance_interval_s,
        error_backoff_s=settings.job_error_backoff_s,
    )


def build_worker_pools(ctx: "AppContext") -> dict[str, WorkerPool]:
    registries = register_job_handlers(ctx)
    timings = pool_timings(ctx.settings)

    pools = {}
    for name in QueueName:
        concurrency, rate_limit = pool_sizing(ctx.settings, name)
        pools[name.value] = WorkerPool(
            ctx.queues[name.value],
            registries[name.value],
            concurrency=concurrency,
            limiter=TokenBucket(max_tokens=rate_limit) if rate_limit else None,
            timings=timings,
        )
    return pools
