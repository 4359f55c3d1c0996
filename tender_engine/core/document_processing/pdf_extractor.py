"""PDF text extraction with PyMuPDF (fitz)."""

import asyncio
from typing import Any

from tender_engine.core.document_processing.base import (
    BaseExtractor,
    EmptyDocument,
    ExtractionResult,
    UnreadableDocument,
)
from tender_engine.core.logging import get_logger

logger = get_logger(__name__)

MAX_PAGES = 300

# Lazy import to avoid loading heavy libraries at module load
fitz = None


def _get_fitz():
    """Lazy load PyMuPDF."""
    global fitz
    if fitz is None:
        import fitz as _fitz

        fitz = _fitz
    return fitz


class PDFExtractor(BaseExtractor):
    """Extracts the text layer of a PDF, page by page."""

    name = "pdf"

    async def extract(
        self,
        file_bytes: bytes,
        filename: str = "document.pdf",
        max_pages: int | None = None,
        **kwargs: Any,
    ) -> ExtractionResult:
        """Extract text from PDF bytes.

        Parsing runs in a worker thread so a large document does not stall the
        event loop.

        Raises:
            UnreadableDocument: If the bytes are empty, too large or not a PDF
            EmptyDocument: If the PDF has no text layer
        """
        valid, error_msg = self.validate_size(file_bytes)
        if not valid:
            raise UnreadableDocument(error_msg, extractor=self.name)

        return await asyncio.to_thread(self._extract_sync, file_bytes, filename, max_pages or MAX_PAGES)

    def _extract_sync(self, file_bytes: bytes, filename: str, max_pages: int) -> ExtractionResult:
        fitz_lib = _get_fitz()

        try:
            doc = fitz_lib.open(stream=file_bytes, filetype="pdf")
        except Exception as e:
            logger.warning(f"Could not open PDF {filename}: {e}")
            raise UnreadableDocument(f"Unreadable PDF: {e}", extractor=self.name) from e

        warnings: list[str] = []
        parts: list[str] = []
        try:
            page_count = len(doc)
            if page_count > max_pages:
                warnings.append(f"PDF has {page_count} pages, truncating to {max_pages}")
                page_count = max_pages

            for page_num in range(page_count):
                text = doc[page_num].get_text("text")
                if text.strip():
                    parts.append(text)
        except Exception as e:
            raise UnreadableDocument(f"PDF extraction failed: {e}", extractor=self.name) from e
        finally:
            doc.close()

        text = "\n\n".join(parts)
        if not text.strip():
            raise EmptyDocument(
                "PDF contains no extractable text (scanned document?)", extractor=self.name
            )

        logger.info(
            f"Extracted PDF {filename}: {page_count} pages, {len(text)} chars",
            extra={"extra_data": {"pages": page_count, "chars": len(text)}},
        )
        return ExtractionResult(
            text=text,
            page_count=page_count,
            metadata={"filename": filename, "text_pages": len(parts)},
            warnings=warnings,
        )


async def extract_pdf_text(file_bytes: bytes, size_limit: int, filename: str = "document.pdf") -> ExtractionResult:
    """Convenience wrapper: extract PDF text under a given size limit."""
    return await PDFExtractor(size_limit=size_limit).extract(file_bytes, filename)
