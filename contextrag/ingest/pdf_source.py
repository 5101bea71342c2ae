"""
ContextRAG - PDF Source
=======================

Loads a PDF once, fingerprints it, counts its pages and cuts page-range
excerpts for batch requests. Text extraction is left to the model.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

import fitz  # PyMuPDF

logger = logging.getLogger(__name__)


def compute_hash(data: bytes) -> str:
    """SHA-256 hex digest of the raw file bytes."""
    return hashlib.sha256(data).hexdigest()


@dataclass
class PdfSource:
    """
    In-memory PDF with identity metadata.

    Usage:
        source = PdfSource.from_path("report.pdf")
        excerpt = source.extract_pages(11, 20)
    """
    filename: str
    data: bytes = field(repr=False)
    page_count: int
    content_hash: str

    @classmethod
    def from_bytes(cls, data: bytes, filename: str = "document.pdf") -> "PdfSource":
        if not data:
            raise ValueError("PDF data is empty")
        with fitz.open(stream=data, filetype="pdf") as doc:
            page_count = len(doc)
        return cls(
            filename=filename,
            data=data,
            page_count=page_count,
            content_hash=compute_hash(data),
        )

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "PdfSource":
        path = Path(path)
        return cls.from_bytes(path.read_bytes(), filename=path.name)

    def extract_pages(self, page_start: int, page_end: int) -> bytes:
        """
        Copy pages [page_start, page_end] (1-indexed, inclusive) into a new PDF.

        The whole document is returned unchanged when the range covers it.
        """
        if page_start < 1 or page_end < page_start:
            raise ValueError(f"Invalid page range {page_start}-{page_end}")
        if page_start == 1 and page_end >= self.page_count:
            return self.data

        with fitz.open(stream=self.data, filetype="pdf") as doc:
            start_idx = page_start - 1
            end_idx = min(len(doc), page_end)
            with fitz.open() as excerpt:
                excerpt.insert_pdf(doc, from_page=start_idx, to_page=end_idx - 1)
                data = excerpt.tobytes()

        logger.debug(f"Extracted pages {page_start}-{page_end} from {self.filename}")
        return data
