"""Unit tests for DocumentLoader."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import fitz
import pytest
from services.document_loader import DocumentLoader, DocumentLoadError, compute_file_hash


def _pdf_bytes(*page_texts):
    pdf = fitz.open()
    for text in page_texts:
        page = pdf.new_page()
        if text:
            page.insert_text((72, 72), text)
    data = pdf.tobytes()
    pdf.close()
    return data


class TestDocumentLoader:
    """Test suite for DocumentLoader."""

    def test_load_pages(self):
        pages = DocumentLoader().load_pages(_pdf_bytes("Binary trees", "", "AVL rotations"))

        assert [p.page_number for p in pages] == [1, 2, 3]
        assert "Binary trees" in pages[0].text
        assert pages[1].text.strip() == ""
        assert pages[2].word_count == 2

    def test_empty_data(self):
        with pytest.raises(DocumentLoadError, match="empty"):
            DocumentLoader().load_pages(b"")

    def test_invalid_pdf(self):
        with pytest.raises(DocumentLoadError, match="Failed to read PDF"):
            DocumentLoader().load_pages(b"this is not a pdf")

    def test_load_pdf_from_disk(self, tmp_path):
        path = tmp_path / "lecture.pdf"
        path.write_bytes(_pdf_bytes("Heaps"))

        document = DocumentLoader().load_pdf(str(path))

        assert document.filename == "lecture.pdf"
        assert document.total_pages == 1

    def test_load_pdf_missing_file(self, tmp_path):
        with pytest.raises(DocumentLoadError, match="File not found"):
            DocumentLoader().load_pdf(str(tmp_path / "missing.pdf"))

    def test_compute_file_hash(self):
        digest = compute_file_hash(b"abc")

        assert digest == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
