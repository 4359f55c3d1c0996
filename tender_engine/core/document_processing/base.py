"""Base extractor interface for tender documents.

Extractors turn raw document bytes into plain text plus a page count. Failures
are split in two: a document that cannot be opened at all
(``UnreadableDocument``) and a document that opens but carries no extractable
text, typically a scanned PDF (``EmptyDocument``).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

PDF_MAGIC = b"%PDF"


@dataclass
class ExtractionResult:
    """Result of document text extraction."""

    text: str
    """Full concatenated text, pages separated by blank lines."""

    page_count: int
    """Number of pages read."""

    metadata: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    @property
    def word_count(self) -> int:
        return len(self.text.split())

    def truncated(self, max_chars: int) -> str:
        """First ``max_chars`` characters of the text."""
        return self.text[:max_chars]


class ExtractionError(Exception):
    """Raised when document extraction fails."""

    def __init__(self, message: str, extractor: Optional[str] = None, recoverable: bool = False):
        super().__init__(message)
        self.extractor = extractor
        self.recoverable = recoverable


class UnreadableDocument(ExtractionError):
    """The bytes are not a document the extractor can open."""


class EmptyDocument(ExtractionError):
    """The document opened but holds no extractable text."""


class BaseExtractor(ABC):
    """Base class for document extractors."""

    name: str = "base"

    def __init__(self, size_limit: int = 20 * 1024 * 1024):
        self.size_limit = size_limit

    @abstractmethod
    async def extract(self, file_bytes: bytes, filename: str = "document", **kwargs: Any) -> ExtractionResult:
        """Extract text from a document.

        Raises:
            UnreadableDocument: If the bytes cannot be parsed
            EmptyDocument: If no text could be extracted
        """

    def validate_size(self, file_bytes: bytes) -> tuple[bool, str]:
        """Validate file size against the extractor limit.

        Returns:
            Tuple of (is_valid, error_message)
        """
        size = len(file_bytes)
        if size == 0:
            return False, "File is empty"
        if size > self.size_limit:
            limit_mb = self.size_limit / (1024 * 1024)
            size_mb = size / (1024 * 1024)
            return False, f"File size ({size_mb:.1f} MB) exceeds limit ({limit_mb:.1f} MB)"
        return True, ""


def looks_like_pdf(file_bytes: bytes) -> bool:
    """Check the ``%PDF`` magic bytes."""
    return len(file_bytes) > 4 and file_bytes[:4] == PDF_MAGIC
