"""
Repeatable job registrations installed at startup.
"""

import logging

from ezjobs.v1.infra.jobs.models import RepeatableJob
from ezjobs.v1.infra.jobs.payloads import (
    CleanupPayload,
    CleanupType,
    JobType,
    WebhookRetrySweepPayload,
)
from ezjobs.v1.infra.jobs.queue import Queue

logger = logging.getLogger(__name__)

DAILY_FULL_CLEANUP = "daily-full-cleanup"
TEMP_CLEANUP = "temp-cleanup-6h"
WEBHOOK_RETRY_SWEEP = "webhook-retry-sweep"


async def register_cleanup_schedules(queue: Queue) -> list[RepeatableJob]:
    """Replace the cleanup queue's registrations with the standard ones."""
    removed = await queue.remove_repeatables()
    registered = [
        await queue.add_repeatable(
            DAILY_FULL_CLEANUP,
            JobType.CLEANUP,
            CleanupPayload(type=CleanupType.FULL_CLEANUP, max_age_hours=24),
            cron="0 3 * * *",
        ),
        await queue.add_repeatable(
            TEMP_CLEANUP,
            JobType.CLEANUP,
            CleanupPayload(type=CleanupType.TEMP_FILES, max_age_hours=6),
            cron="0 */6 * * *",
        ),
    ]
    logger.info(
        "Cleanup schedules registered",
        extra={"removed": removed, "registered": len(registered)},
    )
    return registered


async def register_webhook_schedules(
    queue: Queue, every_ms: int = 60000
) -> list[RepeatableJob]:
    removed = await queue.remove_repeatables()
    registered = [
        await queue.add_repeatable(
            WEBHOOK_RETRY_SWEEP,
            JobType.WEBHOOK_RETRY_SWEEP,
            WebhookRetrySweepPayload(),
            every_ms=every_ms,
        )
    ]
    logger.info(
        "Webhook schedules registered",
        extra={"removed": removed, "registered": len(registered)},
    )
    return registered
