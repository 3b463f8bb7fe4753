"""
Job handlers for the pdf-processing queue.

Each handler reads its input from storage, transforms it through the
PdfService and writes the output back. Recording the result on the document
is best effort: the file work is done, so a failed update is only logged.
"""

import logging
from typing import Any
from uuid import UUID

from ezjobs.infra.pdf import (
    DEFAULT_THUMBNAIL_HEIGHT,
    DEFAULT_THUMBNAIL_WIDTH,
    PdfService,
)
from ezjobs.infra.storage import Storage
from ezjobs.v1.documents.gateway import DocumentGateway
from ezjobs.v1.infra.jobs.payloads import (
    FlattenPdfPayload,
    MergePdfsPayload,
    OptimizePdfPayload,
    ThumbnailPayload,
    WatermarkPayload,
)
from ezjobs.v1.infra.jobs.worker import ActiveJob

logger = logging.getLogger(__name__)


def thumbnail_path(document_id: str) -> str:
    return f"thumbnails/{document_id}.png"


def suffixed_path(file_path: str, suffix: str) -> str:
    """``docs/a.pdf`` -> ``docs/a_<suffix>.pdf``."""
    if file_path.lower().endswith(".pdf"):
        return f"{file_path[:-4]}_{suffix}.pdf"
    return f"{file_path}_{suffix}"


class PdfHandler:
    """Shared collaborators of the PDF handlers."""

    def __init__(self, storage: Storage, pdf: PdfService, documents: DocumentGateway):
        self.storage = storage
        self.pdf = pdf
        self.documents = documents

    async def _record(self, action: str, document_id: str, update: Any) -> None:
        try:
            await update
        except Exception as e:
            logger.warning(
                "Failed to record PDF result on document",
                extra={"action": action, "document_id": document_id, "error": str(e)},
            )


class ThumbnailHandler(PdfHandler):
    async def handle(self, job: ActiveJob) -> dict[str, Any] | None:
        payload: ThumbnailPayload = job.payload

        await job.update_progress(10)
        pdf_bytes = await self.storage.read(payload.file_path)

        await job.update_progress(30)
        image = await self.pdf.generate_thumbnail(
            pdf_bytes,
            payload.max_width or DEFAULT_THUMBNAIL_WIDTH,
            payload.max_height or DEFAULT_THUMBNAIL_HEIGHT,
        )

        await job.update_progress(70)
        saved_path = await self.storage.save(image, thumbnail_path(payload.document_id))

        await job.update_progress(90)
        await self._record(
            "thumbnail",
            payload.document_id,
            self.documents.record_thumbnail(UUID(payload.document_id), saved_path),
        )

        await job.update_progress(100)
        logger.info(
            "Thumbnail generated",
            extra={"document_id": payload.document_id, "thumbnail_path": saved_path},
        )
        return {"thumbnailPath": saved_path, "documentId": payload.document_id}


class OptimizeHandler(PdfHandler):
    """Rewrites the document in place with the optimized bytes."""

    async def handle(self, job: ActiveJob) -> dict[str, Any] | None:
        payload: OptimizePdfPayload = job.payload

        await job.update_progress(10)
        original = await self.storage.read(payload.file_path)

        await job.update_progress(30)
        optimized = await self.pdf.optimize_pdf(original)

        await job.update_progress(70)
        saved_path = await self.storage.save(optimized, payload.file_path)

        await job.update_progress(90)
        await self._record(
            "optimize",
            payload.document_id,
            self.documents.record_optimization(
                UUID(payload.document_id), len(original), len(optimized)
            ),
        )

        await job.update_progress(100)
        size_saved = len(original) - len(optimized)
        logger.info(
            "PDF optimized",
            extra={
                "document_id": payload.document_id,
                "original_size": len(original),
                "optimized_size": len(optimized),
            },
        )
        return {
            "optimizedPath": saved_path,
            "originalSize": len(original),
            "optimizedSize": len(optimized),
            "sizeSaved": size_saved,
        }


class FlattenHandler(PdfHandler):
    async def handle(self, job: ActiveJob) -> dict[str, Any] | None:
        payload: FlattenPdfPayload = job.payload

        await job.update_progress(10)
        pdf_bytes = await self.storage.read(payload.file_path)

        await job.update_progress(30)
        flattened = await self.pdf.flatten_pdf(pdf_bytes)

        await job.update_progress(70)
        saved_path = await self.storage.save(
            flattened, suffixed_path(payload.file_path, "flattened")
        )

        await job.update_progress(100)
        return {"flattenedPath": saved_path, "documentId": payload.document_id}


class WatermarkHandler(PdfHandler):
    async def handle(self, job: ActiveJob) -> dict[str, Any] | None:
        payload: WatermarkPayload = job.payload

        await job.update_progress(10)
        pdf_bytes = await self.storage.read(payload.file_path)

        await job.update_progress(30)
        watermarked = await self.pdf.add_watermark(
            pdf_bytes, payload.watermark_text, payload.options
        )

        await job.update_progress(70)
        saved_path = await self.storage.save(
            watermarked, suffixed_path(payload.file_path, "watermarked")
        )

        await job.update_progress(100)
        return {"watermarkedPath": saved_path, "documentId": payload.document_id}


class MergeHandler(PdfHandler):
    async def handle(self, job: ActiveJob) -> dict[str, Any] | None:
        payload: MergePdfsPayload = job.payload

        await job.update_progress(10)
        documents = [await self.storage.read(path) for path in payload.file_paths]

        await job.update_progress(30)
        merged = await self.pdf.merge_pdfs(documents)

        await job.update_progress(70)
        saved_path = await self.storage.save(merged, payload.output_path)

        await job.update_progress(100)
        logger.info(
            "PDFs merged",
            extra={"file_count": len(payload.file_paths), "output_path": saved_path},
        )
        return {"mergedPath": saved_path, "documentIds": payload.document_ids}
