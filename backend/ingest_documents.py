"""
Local ingestion script.

Runs the lecture, exam or assignment pipeline for a PDF on disk against the
configured Supabase project and prints every event in SSE format.

Usage:
    python ingest_documents.py path/to/file.pdf --doc-type lecture --document-id <uuid>
    python ingest_documents.py exam.pdf --doc-type exam --document-id <uuid> --has-answers
"""
import argparse
import sys
import logging
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent))

from config import LOG_LEVEL
from logger import setup_logging
from pipelines.base import PipelineContext
from pipelines.factory import DOC_TYPES, build_pipelines
from services.document_loader import DocumentLoader, DocumentLoadError, compute_file_hash
from services.event_channel import EventChannel, RecordingSink

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ingest a PDF into the study content store")
    parser.add_argument("pdf", help="Path to the PDF file")
    parser.add_argument("--doc-type", choices=DOC_TYPES, required=True)
    parser.add_argument("--document-id", required=True, help="Id of the parent document/paper/assignment row")
    parser.add_argument("--has-answers", action="store_true", help="Exam paper includes reference answers")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main ingestion process. Returns the process exit code."""
    args = parse_args(argv)
    setup_logging(LOG_LEVEL)

    try:
        logger.info(f"Loading {args.pdf}...")
        document = DocumentLoader().load_pdf(args.pdf)
        pages = [p for p in document.pages if p.text.strip()]
        if not pages:
            logger.error("PDF contains no extractable text")
            return 1
        logger.info(f"Loaded {len(pages)} pages with text from {document.filename}")

        with open(args.pdf, "rb") as f:
            file_hash = compute_file_hash(f.read())

        pipeline = build_pipelines()[args.doc_type]
        sink = RecordingSink(echo=lambda line: print(line, end="", flush=True))
        channel = EventChannel(sink)

        pipeline.run(PipelineContext(
            document_id=args.document_id,
            pages=pages,
            channel=channel,
            file_hash=file_hash,
            document_name=document.filename,
            has_answers=args.has_answers,
        ))

        saved = sum(len(e["chunkIds"]) for e in sink.of_kind("batch_saved"))
        if channel.terminal_event == "error":
            logger.error(f"Ingestion failed after saving {saved} items")
            return 1
        logger.info(f"Ingestion complete: {saved} items saved")
        return 0

    except DocumentLoadError as e:
        logger.error(f"Could not read PDF: {e}")
        return 1
    except KeyboardInterrupt:
        logger.warning("Ingestion interrupted by user")
        return 1
    except Exception as e:
        logger.error(f"Ingestion failed: {str(e)}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
