"""Document loading service for PDF text extraction."""
import hashlib
import logging
import os
from typing import List
import fitz  # PyMuPDF

from models.document import Document, Page

logger = logging.getLogger(__name__)


class DocumentLoadError(RuntimeError):
    """Raised when a PDF cannot be opened or read."""


def compute_file_hash(data: bytes) -> str:
    """SHA-256 hex digest of the uploaded file, used for whole-document dedup."""
    return hashlib.sha256(data).hexdigest()


class DocumentLoader:
    """Extracts per-page text from PDF files."""

    def load_pages(self, data: bytes) -> List[Page]:
        """
        Extract text page-by-page from in-memory PDF bytes.

        Args:
            data: Raw PDF file content

        Returns:
            Pages in document order, 1-indexed

        Raises:
            DocumentLoadError: If the bytes are not a readable PDF
        """
        if not data:
            raise DocumentLoadError("PDF data is empty")

        try:
            with fitz.open(stream=data, filetype="pdf") as pdf_document:
                pages = [
                    Page(page_number=index + 1, text=page.get_text())
                    for index, page in enumerate(pdf_document)
                ]
        except Exception as e:
            logger.error(f"Failed to read PDF stream: {str(e)}")
            raise DocumentLoadError(f"Failed to read PDF: {str(e)}") from e

        logger.info(f"Extracted {len(pages)} pages from PDF stream")
        return pages

    def load_pdf(self, filepath: str) -> Document:
        """
        Load a single PDF file from disk.

        Raises:
            DocumentLoadError: If the file is missing or unreadable
        """
        if not os.path.exists(filepath):
            raise DocumentLoadError(f"File not found: {filepath}")

        with open(filepath, "rb") as f:
            pages = self.load_pages(f.read())

        return Document(
            filename=os.path.basename(filepath),
            pages=pages,
            total_pages=len(pages)
        )
