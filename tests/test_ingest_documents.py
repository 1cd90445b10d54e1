"""Tests for the local ingestion script."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import pytest
from unittest.mock import Mock, patch
from models.document import Document, Page
import ingest_documents

DOCUMENT_ID = "3f6c1b9e-2d4a-4e8f-9a51-7c0d2e8b1f43"


def _loader(pages):
    loader = Mock()
    loader.load_pdf.return_value = Document(filename="notes.pdf", pages=pages, total_pages=len(pages))
    return loader


class TestIngestDocuments:

    @patch('ingest_documents.setup_logging')
    @patch('ingest_documents.build_pipelines')
    @patch('ingest_documents.DocumentLoader')
    def test_successful_run(self, mock_loader_class, mock_build, mock_setup, tmp_path):
        pdf = tmp_path / "notes.pdf"
        pdf.write_bytes(b"%PDF-1.4")
        mock_loader_class.return_value = _loader([Page(page_number=1, text="Heaps")])

        def run(context):
            context.channel.send("batch_saved", chunkIds=["a", "b"], batchIndex=0)
            context.channel.complete("Done!")

        pipeline = Mock()
        pipeline.run.side_effect = run
        mock_build.return_value = {"lecture": pipeline}

        code = ingest_documents.main([str(pdf), "--doc-type", "lecture", "--document-id", DOCUMENT_ID])

        assert code == 0
        context = pipeline.run.call_args[0][0]
        assert context.document_name == "notes.pdf"
        assert context.has_answers is False
        assert len(context.file_hash) == 64

    @patch('ingest_documents.setup_logging')
    @patch('ingest_documents.build_pipelines')
    @patch('ingest_documents.DocumentLoader')
    def test_error_event_fails_run(self, mock_loader_class, mock_build, mock_setup, tmp_path):
        pdf = tmp_path / "exam.pdf"
        pdf.write_bytes(b"%PDF-1.4")
        mock_loader_class.return_value = _loader([Page(page_number=1, text="Q1")])
        pipeline = Mock()
        pipeline.run.side_effect = lambda context: context.channel.error("Failed to save", "SAVE_ERROR")
        mock_build.return_value = {"exam": pipeline}

        code = ingest_documents.main([str(pdf), "--doc-type", "exam", "--document-id", DOCUMENT_ID, "--has-answers"])

        assert code == 1
        assert pipeline.run.call_args[0][0].has_answers is True

    @patch('ingest_documents.setup_logging')
    @patch('ingest_documents.build_pipelines')
    @patch('ingest_documents.DocumentLoader')
    def test_no_text(self, mock_loader_class, mock_build, mock_setup):
        mock_loader_class.return_value = _loader([Page(page_number=1, text=" ")])

        code = ingest_documents.main(["scan.pdf", "--doc-type", "lecture", "--document-id", DOCUMENT_ID])

        assert code == 1
        mock_build.assert_not_called()

    def test_rejects_unknown_doc_type(self):
        with pytest.raises(SystemExit):
            ingest_documents.parse_args(["notes.pdf", "--doc-type", "slides", "--document-id", DOCUMENT_ID])
