"""
Job handler for the cleanup queue.
"""

from typing import Any

from ezjobs.config.logging import get_logger
from ezjobs.v1.cleanup.service import CleanupService
from ezjobs.v1.infra.jobs.payloads import CleanupPayload
from ezjobs.v1.infra.jobs.worker import ActiveJob


class CleanupHandler:
    """
    Runs one cleanup pass.

    Payload expected:
    {
        "type": "temp_files" | "orphaned_documents" | "orphaned_signatures" | "full_cleanup",
        "maxAgeHours": 24  # optional
    }
    """

    def __init__(self, cleanup: CleanupService):
        self.cleanup = cleanup

    async def handle(self, job: ActiveJob) -> dict[str, Any] | None:
        payload: CleanupPayload = job.payload
        log = get_logger(__name__).bind(job_id=str(job.id), cleanup_type=payload.type.value)

        log.info("Cleanup started")
        await job.update_progress(10)
        result = await self.cleanup.run(payload.type, payload.max_age_hours)
        await job.update_progress(100)
        log.info("Cleanup finished")
        return result
