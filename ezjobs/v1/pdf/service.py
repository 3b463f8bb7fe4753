"""
Producers for the pdf-processing queue.
"""

from typing import Any

from ezjobs.v1.infra.jobs.payloads import (
    FlattenPdfPayload,
    JobType,
    MergePdfsPayload,
    OptimizePdfPayload,
    ThumbnailPayload,
    WatermarkPayload,
)
from ezjobs.v1.infra.jobs.queue import EnqueueResult, Queue

# Lower runs first.
THUMBNAIL_PRIORITY = 5
OPTIMIZE_PRIORITY = 3
FLATTEN_PRIORITY = 5
WATERMARK_PRIORITY = 5
MERGE_PRIORITY = 7
PDF_JOB_ATTEMPTS = 2


class PdfJobService:
    def __init__(self, queue: Queue):
        self.queue = queue

    async def _add(self, job_type: JobType, payload: Any, priority: int) -> EnqueueResult:
        return await self.queue.enqueue(
            job_type, payload, priority=priority, max_attempts=PDF_JOB_ATTEMPTS
        )

    async def add_thumbnail_job(
        self,
        document_id: str,
        file_path: str,
        max_width: int | None = None,
        max_height: int | None = None,
    ) -> EnqueueResult:
        return await self._add(
            JobType.GENERATE_THUMBNAIL,
            ThumbnailPayload(
                document_id=document_id,
                file_path=file_path,
                max_width=max_width,
                max_height=max_height,
            ),
            THUMBNAIL_PRIORITY,
        )

    async def add_optimize_job(self, document_id: str, file_path: str) -> EnqueueResult:
        return await self._add(
            JobType.OPTIMIZE_PDF,
            OptimizePdfPayload(document_id=document_id, file_path=file_path),
            OPTIMIZE_PRIORITY,
        )

    async def add_flatten_job(self, document_id: str, file_path: str) -> EnqueueResult:
        return await self._add(
            JobType.FLATTEN_PDF,
            FlattenPdfPayload(document_id=document_id, file_path=file_path),
            FLATTEN_PRIORITY,
        )

    async def add_watermark_job(
        self,
        document_id: str,
        file_path: str,
        watermark_text: str,
        options: dict[str, Any] | None = None,
    ) -> EnqueueResult:
        return await self._add(
            JobType.ADD_WATERMARK,
            WatermarkPayload(
                document_id=document_id,
                file_path=file_path,
                watermark_text=watermark_text,
                options=options,
            ),
            WATERMARK_PRIORITY,
        )

    async def add_merge_job(
        self, document_ids: list[str], file_paths: list[str], output_path: str
    ) -> EnqueueResult:
        return await self._add(
            JobType.MERGE_PDFS,
            MergePdfsPayload(
                document_ids=document_ids, file_paths=file_paths, output_path=output_path
            ),
            MERGE_PRIORITY,
        )
