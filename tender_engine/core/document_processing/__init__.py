"""Document processing package for extracting text from tender documents.

Usage:
    from tender_engine.core.document_processing import (
        ExtractionResult,
        UnreadableDocument,
        EmptyDocument,
        extract_pdf_text,
    )
"""

from tender_engine.core.document_processing.base import (
    BaseExtractor,
    EmptyDocument,
    ExtractionError,
    ExtractionResult,
    UnreadableDocument,
    looks_like_pdf,
)
from tender_engine.core.document_processing.pdf_extractor import (
    PDFExtractor,
    extract_pdf_text,
)

__all__ = [
    "BaseExtractor",
    "EmptyDocument",
    "ExtractionError",
    "ExtractionResult",
    "UnreadableDocument",
    "looks_like_pdf",
    "PDFExtractor",
    "extract_pdf_text",
]
