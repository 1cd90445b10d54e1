"""Main entry point for the document ingestion API."""
import asyncio
import logging
import queue
import threading
import uuid
from typing import Dict, Optional

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from config import CORS_ORIGINS, LOG_LEVEL, MAX_UPLOAD_MB, PORT
from logger import setup_logging
from pipelines.base import IngestionPipeline, PipelineContext
from pipelines.factory import DOC_TYPES, build_pipelines
from services.document_loader import DocumentLoader, DocumentLoadError, compute_file_hash
from services.event_channel import EventChannel, format_sse

# Initialize logging
logger = logging.getLogger(__name__)

# Seconds between client disconnect checks while the pipeline is quiet
DISCONNECT_POLL_SECONDS = 0.5

# Initialize FastAPI app
app = FastAPI(
    title="Document Ingestion Service",
    description="Extracts, deduplicates and stores study content from uploaded PDFs",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize services (will be done on startup)
pipelines: Dict[str, IngestionPipeline] = {}
document_loader: Optional[DocumentLoader] = None


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    global pipelines, document_loader

    setup_logging(LOG_LEVEL)
    logger.info("Initializing document ingestion services...")

    try:
        document_loader = DocumentLoader()
        pipelines = build_pipelines()
        logger.info("All services initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}", exc_info=True)
        raise


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "service": "document-ingestion",
        "version": "1.0.0",
        "pipelines": sorted(pipelines),
    }


def run_ingestion(
    data: bytes,
    context: PipelineContext,
    pipeline: IngestionPipeline,
    loader: DocumentLoader
) -> None:
    """Parse the PDF and run the pipeline; every path ends in a terminal event."""
    channel = context.channel
    channel.status("parsing_pdf", "Parsing PDF...")

    try:
        pages = loader.load_pages(data)
    except DocumentLoadError as e:
        logger.error(f"PDF parse failed: {e}", extra={"document_id": context.document_id})
        channel.log(f"Failed to parse PDF: {str(e)}", "error")
        channel.error("Failed to parse PDF. Please check that the file is a valid PDF.", "PDF_PARSE_ERROR")
        return

    pages = [p for p in pages if p.text.strip()]
    if not pages:
        channel.log("PDF contains no extractable text", "error")
        channel.error("PDF contains no extractable text. Scanned documents are not supported.", "EMPTY_DOCUMENT")
        return

    channel.log(f"Parsed {len(pages)} pages", "success")
    context.pages = pages
    pipeline.run(context)


@app.post("/documents/parse")
async def parse_document_endpoint(
    request: Request,
    file: UploadFile = File(...),
    document_id: str = Form(...),
    doc_type: str = Form(...),
    has_answers: bool = Form(False)
):
    """
    Ingest an uploaded PDF and stream progress as Server-Sent Events.

    The pipeline runs on a worker thread; events are relayed through a
    queue. A client disconnect sets the cancellation event so no new
    extraction wave or save batch starts.

    Raises:
        HTTPException: For invalid form fields, oversized files or an
            uninitialized service
    """
    if doc_type not in DOC_TYPES:
        raise HTTPException(status_code=400, detail=f"doc_type must be one of: {', '.join(DOC_TYPES)}")

    try:
        uuid.UUID(document_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="document_id must be a UUID")

    filename = file.filename or ""
    if file.content_type != "application/pdf" and not filename.lower().endswith(".pdf"):
        raise HTTPException(status_code=400, detail="Only PDF files are supported")

    data = await file.read()
    if len(data) > MAX_UPLOAD_MB * 1024 * 1024:
        raise HTTPException(status_code=413, detail=f"File exceeds {MAX_UPLOAD_MB}MB limit")

    pipeline = pipelines.get(doc_type)
    if pipeline is None or document_loader is None:
        raise HTTPException(status_code=503, detail="Service not initialized")

    events: "queue.Queue[Optional[str]]" = queue.Queue()
    cancel_event = threading.Event()
    channel = EventChannel(lambda kind, payload: events.put(format_sse(kind, payload)))
    context = PipelineContext(
        document_id=document_id,
        pages=[],
        channel=channel,
        cancel_event=cancel_event,
        file_hash=compute_file_hash(data),
        document_name=filename or None,
        has_answers=has_answers,
    )
    logger.info(f"Received {doc_type} upload {filename} ({len(data)} bytes)", extra={"document_id": document_id})

    def worker():
        try:
            run_ingestion(data, context, pipeline, document_loader)
        except Exception as e:
            logger.error(f"Ingestion worker crashed: {e}", exc_info=True, extra={"document_id": document_id})
            if not channel.terminated:
                channel.error("Internal server error", "EXTRACTION_ERROR")
        finally:
            events.put(None)

    async def generate_stream():
        """Relay queued events until the worker signals the end of the run."""
        thread = threading.Thread(target=worker, name=f"ingest-{document_id}", daemon=True)
        thread.start()
        try:
            while True:
                try:
                    event = await asyncio.to_thread(events.get, True, DISCONNECT_POLL_SECONDS)
                except queue.Empty:
                    if await request.is_disconnected():
                        logger.info("Client disconnected, cancelling ingestion", extra={"document_id": document_id})
                        cancel_event.set()
                        break
                    continue
                if event is None:
                    break
                yield event.encode("utf-8")
        finally:
            if thread.is_alive():
                cancel_event.set()

    return StreamingResponse(
        generate_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no"  # Disable buffering in nginx
        }
    )


if __name__ == "__main__":
    import uvicorn
    logger.info(f"Starting document ingestion API on port {PORT}")
    uvicorn.run(app, host="0.0.0.0", port=PORT)
