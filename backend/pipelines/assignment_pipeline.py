"""
Assignment ingestion with hierarchical item storage.

Sub-questions reference their parent by position in the parsed batch. Those
positions are resolved to persisted ids in passes: roots first, then children
whose parent id is known, and finally any item whose parent never resolved is
stored as a root.
"""
import logging
from typing import Any, Dict, List, Optional

from config import MAX_PARENT_RESOLUTION_PASSES
from models.chunk import DedupCandidate, ExistingRecord
from models.question import AssignmentItem
from pipelines.base import IngestionPipeline, PipelineContext, SaveProgress, plural, run_advisory
from services.assignment_parser import AssignmentParser, AssignmentParseResult
from services.chunk_content import build_assignment_item_content
from services.dedup_engine import DedupEngine
from services.repositories import AssignmentItemRepository

logger = logging.getLogger(__name__)


def stored_question(record: ExistingRecord) -> str:
    """Pass 1 key of a stored assignment item: the raw question text."""
    return str(record.metadata.get("questionContent") or record.content)


class AssignmentPipeline(IngestionPipeline):
    """Turns assignment pages into deduplicated items with parent links."""

    name = "assignment"
    item_label = "questions"

    def __init__(
        self,
        assignment_parser: AssignmentParser,
        dedup_engine: DedupEngine,
        repository: AssignmentItemRepository,
        max_parent_passes: int = MAX_PARENT_RESOLUTION_PASSES,
        **kwargs
    ):
        super().__init__(dedup_engine, repository, **kwargs)
        self.assignment_parser = assignment_parser
        self.max_parent_passes = max_parent_passes

    def _execute(self, context: PipelineContext) -> None:
        channel = context.channel
        channel.status("extracting", "Extracting assignment questions...")

        parsed: AssignmentParseResult = self._extract(
            lambda: self.assignment_parser.parse_assignment(
                context.pages,
                assignment_id=context.document_id,
                on_progress=self._progress_reporter(context),
                cancel_event=context.cancel_event
            )
        )
        self._check_cancelled(context)

        for warning in parsed.warnings:
            channel.log(warning, "warning")

        items = parsed.items
        if not items:
            channel.complete("No questions found in document.")
            return

        for index, item in enumerate(items):
            channel.send("item", index=index, type="question", data=item.to_dict(), warnings=item.warnings)
            channel.progress(index + 1, len(items))

        if parsed.outline is not None:
            outline_result = run_advisory(
                "Outline save",
                lambda: self.repository.save_outline(context.document_id, parsed.outline.to_dict())
            )
            if not outline_result.ok:
                channel.log("Outline save failed (non-fatal)", "warning")

        existing = self._fetch_existing(context)
        candidates = []
        for index, item in enumerate(items):
            parent = items[item.parent_index] if item.parent_index is not None else None
            candidates.append(DedupCandidate(
                index=index,
                key=item.content,
                content=build_assignment_item_content(item, parent.content if parent else None)
            ))
        result = self._deduplicate(context, candidates, existing, existing_key=stored_question)
        if result.is_empty:
            channel.complete("No new questions to add (all duplicates).")
            return

        next_order = self._next_order_num(context)
        channel.status("embedding", "Saving questions...")
        saved = self._save_hierarchy(context, items, result.survivors, next_order)
        self._finish(context, saved)

    def _save_hierarchy(
        self,
        context: PipelineContext,
        items: List[AssignmentItem],
        survivors: List[DedupCandidate],
        first_order_num: int
    ) -> int:
        """
        Persist survivors so every child row references an already stored parent.

        Returns:
            Number of stored items
        """
        by_index: Dict[int, DedupCandidate] = {c.index: c for c in survivors}
        order_nums = {c.index: first_order_num + offset for offset, c in enumerate(survivors)}
        # Local batch index -> persisted id; None until stored
        persisted: Dict[int, Optional[str]] = {index: None for index in by_index}
        progress = SaveProgress(total=len(survivors))

        def has_pending_parent(index: int) -> bool:
            parent = items[index].parent_index
            return parent is not None and parent in by_index

        roots = [c.index for c in survivors if not has_pending_parent(c.index)]
        pending = [c.index for c in survivors if has_pending_parent(c.index)]

        promoted = [i for i in roots if items[i].parent_index is not None]
        if promoted:
            context.channel.log(
                f"{plural(len(promoted), 'sub-question')} saved as top-level (parent already stored or skipped)",
                "info"
            )

        self._save_pass(context, items, by_index, order_nums, persisted, roots, progress, "SAVE_ERROR", linked=False)

        passes = 0
        while pending and passes < self.max_parent_passes:
            ready = [i for i in pending if persisted.get(items[i].parent_index) is not None]
            if not ready:
                break
            passes += 1
            self._save_pass(context, items, by_index, order_nums, persisted, ready, progress, "SAVE_CHILD_ERROR", linked=True)
            pending = [i for i in pending if persisted[i] is None]

        if pending:
            logger.warning(
                f"Promoting {len(pending)} items with unresolved parents after {passes} passes",
                extra=self._log_extra(context)
            )
            context.channel.log(
                f"{plural(len(pending), 'question')} with unresolved parents saved as top-level",
                "warning"
            )
            self._save_pass(context, items, by_index, order_nums, persisted, pending, progress, "SAVE_ORPHAN_ERROR", linked=False)

        return progress.saved

    def _save_pass(
        self,
        context: PipelineContext,
        items: List[AssignmentItem],
        by_index: Dict[int, DedupCandidate],
        order_nums: Dict[int, int],
        persisted: Dict[int, Optional[str]],
        indices: List[int],
        progress: SaveProgress,
        error_code: str,
        linked: bool
    ) -> None:
        if not indices:
            return
        rows = [
            self._row(
                context,
                items[i],
                by_index[i],
                order_nums[i],
                persisted[items[i].parent_index] if linked else None
            )
            for i in indices
        ]
        ids = self._save_in_batches(context, rows, progress, error_code=error_code)
        for index, persisted_id in zip(indices, ids):
            persisted[index] = persisted_id

    def _row(
        self,
        context: PipelineContext,
        item: AssignmentItem,
        candidate: DedupCandidate,
        order_num: int,
        parent_id: Optional[str]
    ) -> Dict[str, Any]:
        return {
            self.repository.parent_column: context.document_id,
            "order_num": order_num,
            "type": item.type,
            "content": candidate.content,
            "reference_answer": item.reference_answer,
            "explanation": item.explanation,
            "points": item.points,
            "difficulty": item.difficulty,
            "parent_item_id": parent_id,
            "embedding": candidate.embedding,
            "metadata": {
                "section": item.section,
                "type": item.type,
                "sourcePages": item.source_pages,
                "difficulty": item.difficulty,
                "questionContent": item.content,
                "options": item.options,
                "warnings": item.warnings,
            },
        }
