"""
Unit tests for PdfSource (real PDFs built in memory with PyMuPDF).
"""

import fitz
import pytest

from contextrag.ingest.pdf_source import PdfSource, compute_hash


def make_pdf(page_count: int) -> bytes:
    with fitz.open() as doc:
        for number in range(1, page_count + 1):
            page = doc.new_page()
            page.insert_text((72, 72), f"Page {number} of the agreement")
        return doc.tobytes()


@pytest.fixture
def pdf_bytes():
    return make_pdf(12)


class TestPdfSource:

    def test_from_bytes(self, pdf_bytes):
        source = PdfSource.from_bytes(pdf_bytes, filename="msa.pdf")

        assert source.page_count == 12
        assert source.filename == "msa.pdf"
        assert source.content_hash == compute_hash(pdf_bytes)
        assert len(source.content_hash) == 64

    def test_from_path(self, pdf_bytes, tmp_path):
        path = tmp_path / "lease.pdf"
        path.write_bytes(pdf_bytes)

        source = PdfSource.from_path(path)

        assert source.filename == "lease.pdf"
        assert source.page_count == 12

    def test_empty_data(self):
        with pytest.raises(ValueError):
            PdfSource.from_bytes(b"")

    def test_excerpt_contains_only_requested_pages(self, pdf_bytes):
        source = PdfSource.from_bytes(pdf_bytes)

        excerpt = source.extract_pages(5, 7)

        with fitz.open(stream=excerpt, filetype="pdf") as doc:
            assert len(doc) == 3
            assert "Page 5 of the agreement" in doc[0].get_text()

    def test_excerpt_clamped_to_last_page(self, pdf_bytes):
        excerpt = PdfSource.from_bytes(pdf_bytes).extract_pages(11, 20)

        with fitz.open(stream=excerpt, filetype="pdf") as doc:
            assert len(doc) == 2

    def test_full_range_returns_original(self, pdf_bytes):
        source = PdfSource.from_bytes(pdf_bytes)
        assert source.extract_pages(1, 12) is source.data

    @pytest.mark.parametrize("start,end", [(0, 3), (5, 4)])
    def test_invalid_range(self, pdf_bytes, start, end):
        with pytest.raises(ValueError):
            PdfSource.from_bytes(pdf_bytes).extract_pages(start, end)

    def test_identical_bytes_share_hash(self, pdf_bytes):
        assert PdfSource.from_bytes(pdf_bytes).content_hash == PdfSource.from_bytes(pdf_bytes).content_hash
