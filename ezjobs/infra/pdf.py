"""
PDF manipulation contract.

Rendering lives in a separate service; the PDF job handlers only move bytes
between storage and an implementation of ``PdfService``.
"""

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)

DEFAULT_THUMBNAIL_WIDTH = 200
DEFAULT_THUMBNAIL_HEIGHT = 300


class PdfService(Protocol):
    async def generate_thumbnail(
        self, pdf: bytes, max_width: int, max_height: int
    ) -> bytes: ...

    async def optimize_pdf(self, pdf: bytes) -> bytes: ...

    async def flatten_pdf(self, pdf: bytes) -> bytes: ...

    async def add_watermark(
        self, pdf: bytes, text: str, options: dict[str, Any] | None = None
    ) -> bytes: ...

    async def merge_pdfs(self, pdfs: list[bytes]) -> bytes: ...


class PassthroughPdfService:
    """Development implementation that returns documents unchanged."""

    async def generate_thumbnail(
        self, pdf: bytes, max_width: int, max_height: int
    ) -> bytes:
        logger.debug(
            "Thumbnail passthrough",
            extra={"max_width": max_width, "max_height": max_height},
        )
        return pdf

    async def optimize_pdf(self, pdf: bytes) -> bytes:
        return pdf

    async def flatten_pdf(self, pdf: bytes) -> bytes:
        return pdf

    async def add_watermark(
        self, pdf: bytes, text: str, options: dict[str, Any] | None = None
    ) -> bytes:
        return pdf

    async def merge_pdfs(self, pdfs: list[bytes]) -> bytes:
        return b"".join(pdfs)
