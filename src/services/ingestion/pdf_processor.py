"""PDF loading and page batching.

Reads a PDF from a path or raw bytes with PyMuPDF (fitz), computes the
content hash used for de-duplication, and slices ``[1..page_count]`` into
contiguous batch specs.  The extraction itself is done by the document-AI
provider on the whole file; this module never pulls page text.
"""

from __future__ import annotations

import hashlib
from pathlib import Path

import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import structlog

from src.models.document import BatchSpec, PdfDocument, PdfMetadata
from src.utils.errors import ValidationError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_FILENAME = "document.pdf"


def hash_bytes(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


class PdfProcessor:
    """Loads PDFs and plans page batches."""

    def load(self, source: bytes | str | Path, filename: str | None = None) -> PdfDocument:
        """Read a PDF and collect its metadata.

        Parameters
        ----------
        source:
            Raw PDF bytes or a filesystem path.
        filename:
            Display name; defaults to the path's basename, or
            ``document.pdf`` for raw bytes.

        Raises
        ------
        ValidationError
            If the file is missing, unreadable, or has no pages.
        """
        if isinstance(source, (str, Path)):
            path = Path(source)
            if not path.is_file():
                raise ValidationError(f"PDF not found: {path}", field="file")
            content = path.read_bytes()
            filename = filename or path.name
        else:
            content = bytes(source)
            filename = filename or _DEFAULT_FILENAME

        if not content:
            raise ValidationError("PDF is empty", field="file")

        try:
            doc = fitz.open(stream=content, filetype="pdf")
        except Exception as exc:
            raise ValidationError(f"Could not open PDF {filename}: {exc}", field="file") from exc

        try:
            page_count = doc.page_count
            info = doc.metadata or {}
        finally:
            doc.close()

        if page_count < 1:
            raise ValidationError(f"PDF {filename} has no pages", field="file")

        metadata = PdfMetadata(
            filename=filename,
            file_hash=hash_bytes(content),
            file_size=len(content),
            page_count=page_count,
            title=info.get("title") or None,
            author=info.get("author") or None,
        )
        logger.debug(
            "pdf_loaded",
            filename=filename,
            file_size=metadata.file_size,
            page_count=page_count,
        )
        return PdfDocument(content=content, metadata=metadata)

    @staticmethod
    def create_batches(page_count: int, pages_per_batch: int) -> list[BatchSpec]:
        """Partition ``[1..page_count]`` into contiguous ranges.

        ``create_batches(32, 15)`` -> ``[(1, 15), (16, 30), (31, 32)]``.
        """
        if page_count < 1:
            raise ValidationError("page_count must be >= 1", field="page_count")
        if pages_per_batch < 1:
            raise ValidationError("pages_per_batch must be >= 1", field="pages_per_batch")

        return [
            BatchSpec(
                batch_index=index,
                page_start=start,
                page_end=min(start + pages_per_batch - 1, page_count),
            )
            for index, start in enumerate(range(1, page_count + 1, pages_per_batch))
        ]

    @staticmethod
    def describe_page_range(page_start: int, page_end: int) -> str:
        if page_start == page_end:
            return f"page {page_start}"
        return f"pages {page_start}-{page_end}"
