"""
Shared orchestration for the ingestion pipelines.

A pipeline run emits its progress through an EventChannel and always ends
with exactly one terminal event: ``status: complete`` or ``error``. Stages
signal fatal problems by raising PipelineFailure; ``run`` turns those into
the error event.
"""
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from config import SAVE_BATCH_SIZE
from models.chunk import DedupCandidate, ExistingRecord
from models.document import Page
from services.dedup_engine import DedupEngine, DedupResult
from services.error_mapping import classify_pipeline_error
from services.event_channel import EventChannel
from services.repositories import SupabaseItemRepository
from services.section_extractor import ExtractionProgress

logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    """Everything one ingestion run needs besides its collaborators."""
    document_id: str
    pages: List[Page]
    channel: EventChannel
    cancel_event: threading.Event = field(default_factory=threading.Event)
    file_hash: Optional[str] = None
    document_name: Optional[str] = None
    has_answers: bool = False


@dataclass
class AdvisoryResult:
    """Outcome of a side effect whose failure must not fail the run."""
    name: str
    ok: bool
    value: Any = None
    error: Optional[str] = None


def run_advisory(name: str, operation: Callable[..., Any], *args, **kwargs) -> AdvisoryResult:
    """Run ``operation``, logging and capturing any exception instead of raising."""
    try:
        value = operation(*args, **kwargs)
    except Exception as e:
        logger.warning(f"{name} failed (non-fatal): {str(e)}", exc_info=True)
        return AdvisoryResult(name=name, ok=False, error=str(e))
    return AdvisoryResult(name=name, ok=True, value=value)


class PipelineFailure(Exception):
    """Fatal pipeline error with the code and message shown to the client."""

    def __init__(self, code: str, message: str, log_message: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.log_message = log_message or message


class PipelineCancelled(Exception):
    """Raised at a cancellation checkpoint once the cancel event is set."""

    def __init__(self, saved: int = 0):
        super().__init__(f"Cancelled after saving {saved} items")
        self.saved = saved


@dataclass
class SaveProgress:
    """Running counters across the persistence batches of one run."""
    total: int
    saved: int = 0
    batch_index: int = 0


def plural(count: int, singular: str, plural_form: Optional[str] = None) -> str:
    return f"{count} {singular if count == 1 else (plural_form or singular + 's')}"


class IngestionPipeline(ABC):
    """Base class for the lecture, exam and assignment pipelines."""

    name = "ingestion"
    item_label = "items"

    def __init__(
        self,
        dedup_engine: DedupEngine,
        repository: SupabaseItemRepository,
        save_batch_size: int = SAVE_BATCH_SIZE
    ):
        if save_batch_size <= 0:
            raise ValueError("save_batch_size must be positive")
        self.dedup_engine = dedup_engine
        self.repository = repository
        self.save_batch_size = save_batch_size

    def run(self, context: PipelineContext) -> None:
        """
        Execute the pipeline for one document.

        Never raises: every outcome is reported on ``context.channel`` and the
        run ends with exactly one terminal event.
        """
        channel = context.channel
        extra = self._log_extra(context)
        logger.info(f"Starting {self.name} pipeline ({len(context.pages)} pages)", extra=extra)

        try:
            self._execute(context)
        except PipelineCancelled as e:
            logger.info(f"{self.name} pipeline cancelled after saving {e.saved} items", extra=extra)
            channel.log("Processing cancelled", "warning")
            channel.error(
                f"Processing was cancelled. {plural(e.saved, self._singular_label())} "
                f"{'was' if e.saved == 1 else 'were'} saved.",
                "CANCELLED"
            )
        except PipelineFailure as e:
            logger.error(
                f"{self.name} pipeline failed: {e.log_message}",
                extra={**extra, "error_code": e.code}
            )
            channel.log(e.log_message, "error")
            channel.error(e.message, e.code)
        except Exception as e:
            info = classify_pipeline_error(e, "extraction")
            logger.exception(
                f"Unexpected error in {self.name} pipeline: {str(e)}",
                extra={**extra, "error_code": info.code}
            )
            channel.log(info.message, "error")
            channel.error(info.message, info.code)

        if not channel.terminated:
            logger.error(f"{self.name} pipeline returned without a terminal event", extra=extra)
            channel.error("Processing ended unexpectedly", "EXTRACTION_ERROR")

    @abstractmethod
    def _execute(self, context: PipelineContext) -> None:
        """Run the pipeline stages; return after emitting ``complete``."""

    # Stage helpers

    def _extract(self, operation: Callable[[], Any], stage: str = "extraction") -> Any:
        """Run an LLM-backed stage, mapping its failure to a client error code."""
        try:
            return operation()
        except (PipelineCancelled, PipelineFailure):
            raise
        except Exception as e:
            info = classify_pipeline_error(e, stage)
            raise PipelineFailure(info.code, info.message, log_message=f"{info.message}: {str(e)}") from e

    def _progress_reporter(self, context: PipelineContext) -> Callable[[ExtractionProgress], None]:
        def report(progress: ExtractionProgress) -> None:
            context.channel.progress(progress.completed, progress.total)
            if progress.detail:
                context.channel.log(progress.detail, "info")
        return report

    def _warning_reporter(self, context: PipelineContext) -> Callable[[str], None]:
        return lambda message: context.channel.log(message, "warning")

    def _check_cancelled(self, context: PipelineContext, saved: int = 0) -> None:
        if context.cancel_event.is_set():
            raise PipelineCancelled(saved)

    def _fetch_existing(self, context: PipelineContext) -> List[ExistingRecord]:
        """Read the dedup corpus. Without it dedup is unsafe, so failure is fatal."""
        try:
            existing = self.repository.find_existing_with_embeddings(context.document_id)
        except Exception as e:
            raise PipelineFailure(
                "DEDUP_FETCH_ERROR",
                "Failed to check for duplicates. Please try again.",
                log_message=f"Failed to load existing {self.item_label}: {str(e)}"
            ) from e
        logger.debug(f"Loaded {len(existing)} existing {self.item_label}", extra=self._log_extra(context))
        return existing

    def _next_order_num(self, context: PipelineContext) -> int:
        """Order numbers of new items continue after the highest stored one."""
        try:
            return self.repository.max_order_num(context.document_id) + 1
        except Exception as e:
            raise PipelineFailure(
                "SAVE_PREP_ERROR",
                "Failed to prepare save. Please try again.",
                log_message=f"Failed to load existing {self.item_label}: {str(e)}"
            ) from e

    def _deduplicate(
        self,
        context: PipelineContext,
        candidates: List[DedupCandidate],
        existing: List[ExistingRecord],
        existing_key: Optional[Callable[[ExistingRecord], str]] = None
    ) -> DedupResult:
        """Run both dedup passes and report their skip counts on the channel."""
        channel = context.channel
        channel.log(f"Checking for duplicate {self.item_label}...", "info")
        self._check_cancelled(context)

        result = self._extract(
            lambda: self.dedup_engine.filter_new(candidates, existing, existing_key=existing_key),
            stage="embedding"
        )

        if result.exact_skipped:
            channel.log(f"Pass 1: {plural(result.exact_skipped, 'duplicate')} skipped (content match)", "info")
        if result.embedding_called:
            channel.log("Embeddings generated", "success")
            channel.log(
                f"Dedup: {result.existing_embedding_count} existing embeddings found for comparison",
                "info"
            )
        if result.semantic_skipped:
            channel.log(
                f"Pass 2: {plural(result.semantic_skipped, 'duplicate')} skipped "
                f"(embedding similarity >= {self.dedup_engine.similarity_threshold})",
                "info"
            )

        if not result.is_empty:
            survivors = len(result.survivors)
            if result.total_skipped:
                channel.log(
                    f"{survivors} new {self.item_label} ({plural(result.total_skipped, 'duplicate')} skipped)",
                    "success"
                )
            else:
                channel.log(f"{survivors} {self.item_label} to save", "success")

        logger.info(
            f"Dedup kept {len(result.survivors)}/{len(candidates)} "
            f"(exact={result.exact_skipped}, semantic={result.semantic_skipped})",
            extra=self._log_extra(context)
        )
        return result

    def _save_in_batches(
        self,
        context: PipelineContext,
        rows: List[Dict[str, Any]],
        progress: SaveProgress,
        error_code: str = "SAVE_ERROR"
    ) -> List[str]:
        """
        Persist rows sequentially in fixed-size batches.

        Each stored batch is announced with ``batch_saved`` followed by a
        cumulative ``progress`` event.

        Returns:
            Persisted ids, index-aligned with ``rows``

        Raises:
            PipelineCancelled: If cancelled before a batch
            PipelineFailure: With ``error_code`` if a batch insert fails
        """
        channel = context.channel
        ids: List[str] = []

        for start in range(0, len(rows), self.save_batch_size):
            self._check_cancelled(context, progress.saved)

            batch = rows[start:start + self.save_batch_size]
            first = progress.saved + 1
            last = progress.saved + len(batch)
            channel.log(f"Saving {self.item_label} {first}-{last} of {progress.total}...", "info")

            try:
                batch_ids = self.repository.insert_batch(batch)
            except Exception as e:
                saved_note = (
                    f"{plural(progress.saved, self._singular_label())} "
                    f"{'was' if progress.saved == 1 else 'were'} saved successfully."
                    if progress.saved else f"No {self.item_label} were saved."
                )
                raise PipelineFailure(
                    error_code,
                    f"Failed to save {self.item_label} (batch {progress.batch_index + 1}). {saved_note}",
                    log_message=f"Failed to save {self.item_label} {first}-{last}: {str(e)}"
                ) from e

            channel.send("batch_saved", chunkIds=batch_ids, batchIndex=progress.batch_index)
            progress.saved += len(batch_ids)
            progress.batch_index += 1
            channel.progress(progress.saved, progress.total)
            logger.debug(
                f"Saved batch of {len(batch_ids)}",
                extra={**self._log_extra(context), "batch_index": progress.batch_index - 1}
            )
            ids.extend(batch_ids)

        return ids

    def _finish(self, context: PipelineContext, saved: int) -> None:
        """Report success, then record the file hash as an advisory write."""
        context.channel.log(f"Saved {plural(saved, self._singular_label())}", "success")
        context.channel.complete("Done!")
        logger.info(f"{self.name} pipeline saved {saved} items", extra=self._log_extra(context))

        if context.file_hash:
            run_advisory(
                "File hash save",
                self.repository.update_document_metadata,
                context.document_id,
                {"file_hash": context.file_hash}
            )

    def _singular_label(self) -> str:
        return self.item_label[:-1] if self.item_label.endswith("s") else self.item_label

    def _log_extra(self, context: PipelineContext) -> Dict[str, Any]:
        return {"document_id": context.document_id, "pipeline": self.name}
