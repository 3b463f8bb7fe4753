"""
Storage and retention cleanup.

Temp files are removed by age. Document and signature files are removed when
no database row references them, once they are old enough that an upload in
progress cannot be mistaken for an orphan.
"""

import logging
import time
from typing import Any

from ezjobs.infra.storage import METADATA_SUFFIX, LocalStorage
from ezjobs.v1.documents.gateway import DocumentGateway
from ezjobs.v1.infra.dlq.service import DeadLetterQueueService
from ezjobs.v1.infra.jobs.payloads import CleanupPayload, CleanupType, JobType
from ezjobs.v1.infra.jobs.queue import EnqueueResult, Queue
from ezjobs.v1.webhooks.service import WebhookService

logger = logging.getLogger(__name__)

TEMP_DIR = "temp"
DOCUMENTS_DIR = "documents"
SIGNATURES_DIR = "signatures"
DEFAULT_TEMP_MAX_AGE_HOURS = 24
ORPHAN_MIN_AGE_HOURS = 1
MANUAL_CLEANUP_PRIORITY = 1


def empty_result() -> dict[str, int]:
    return {"deleted": 0, "errors": 0, "bytesFreed": 0}


class CleanupService:
    def __init__(
        self,
        storage: LocalStorage,
        documents: DocumentGateway,
        webhooks: WebhookService | None = None,
        dlq: DeadLetterQueueService | None = None,
        *,
        webhook_event_retention_days: int = 30,
        dlq_retention_days: int = 30,
    ):
        self.storage = storage
        self.documents = documents
        self.webhooks = webhooks
        self.dlq = dlq
        self.webhook_event_retention_days = webhook_event_retention_days
        self.dlq_retention_days = dlq_retention_days

    async def _sweep(
        self,
        directory: str,
        max_age_hours: float,
        keep: set[str] | None = None,
    ) -> dict[str, int]:
        """Delete files under ``directory`` older than the age and not in ``keep``."""
        result = empty_result()
        cutoff = time.time() - max_age_hours * 3600

        async for path, stat in self.storage.iter_files(directory):
            if path.endswith(METADATA_SUFFIX):
                continue
            if stat.st_mtime >= cutoff:
                continue
            if keep is not None and path in keep:
                continue
            try:
                if await self.storage.delete(path):
                    result["deleted"] += 1
                    result["bytesFreed"] += stat.st_size
            except Exception as e:
                result["errors"] += 1
                logger.warning(
                    "Failed to delete file", extra={"path": path, "error": str(e)}
                )
        return result

    async def cleanup_temp_files(
        self, max_age_hours: float = DEFAULT_TEMP_MAX_AGE_HOURS
    ) -> dict[str, int]:
        result = await self._sweep(TEMP_DIR, max_age_hours)
        logger.info("Temp file cleanup", extra={"max_age_hours": max_age_hours, **result})
        return result

    async def cleanup_orphaned_documents(self) -> dict[str, int]:
        referenced = await self.documents.document_file_paths()
        result = await self._sweep(DOCUMENTS_DIR, ORPHAN_MIN_AGE_HOURS, referenced)
        logger.info("Orphaned document cleanup", extra=result)
        return result

    async def cleanup_orphaned_signatures(self) -> dict[str, int]:
        referenced = await self.documents.signature_file_paths()
        result = await self._sweep(SIGNATURES_DIR, ORPHAN_MIN_AGE_HOURS, referenced)
        logger.info("Orphaned signature cleanup", extra=result)
        return result

    async def full_cleanup(
        self, max_age_hours: float = DEFAULT_TEMP_MAX_AGE_HOURS
    ) -> dict[str, Any]:
        """Run every cleanup, including webhook event and dead letter retention."""
        temp = await self.cleanup_temp_files(max_age_hours)
        documents = await self.cleanup_orphaned_documents()
        signatures = await self.cleanup_orphaned_signatures()

        webhook_events = 0
        if self.webhooks is not None:
            webhook_events = await self.webhooks.cleanup_events(
                self.webhook_event_retention_days
            )
        dead_letters = 0
        if self.dlq is not None:
            dead_letters = await self.dlq.cleanup(self.dlq_retention_days)

        summary = {
            "temp": temp,
            "documents": documents,
            "signatures": signatures,
            "webhookEvents": webhook_events,
            "deadLetters": dead_letters,
            "totalDeleted": temp["deleted"] + documents["deleted"] + signatures["deleted"],
            "totalBytesFreed": (
                temp["bytesFreed"] + documents["bytesFreed"] + signatures["bytesFreed"]
            ),
        }
        logger.info(
            "Full cleanup completed",
            extra={
                "total_deleted": summary["totalDeleted"],
                "total_bytes_freed": summary["totalBytesFreed"],
                "webhook_events_deleted": webhook_events,
                "dead_letters_deleted": dead_letters,
            },
        )
        return summary

    async def run(self, cleanup_type: CleanupType, max_age_hours: float | None = None):
        if cleanup_type == CleanupType.TEMP_FILES:
            return await self.cleanup_temp_files(max_age_hours or DEFAULT_TEMP_MAX_AGE_HOURS)
        if cleanup_type == CleanupType.ORPHANED_DOCUMENTS:
            return await self.cleanup_orphaned_documents()
        if cleanup_type == CleanupType.ORPHANED_SIGNATURES:
            return await self.cleanup_orphaned_signatures()
        return await self.full_cleanup(max_age_hours or DEFAULT_TEMP_MAX_AGE_HOURS)


async def trigger_cleanup(
    queue: Queue, cleanup_type: CleanupType, max_age_hours: int | None = None
) -> EnqueueResult:
    """Queue a manual cleanup ahead of scheduled work."""
    return await queue.enqueue(
        JobType.CLEANUP,
        CleanupPayload(type=cleanup_type, max_age_hours=max_age_hours),
        priority=MANUAL_CLEANUP_PRIORITY,
    )
