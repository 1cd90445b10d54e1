"""Lecture ingestion: structure, knowledge points, outline, dedup and chunk storage."""
import logging

from models.chunk import DedupCandidate, ExistingRecord
from models.document import DocumentStructure
from pipelines.base import IngestionPipeline, PipelineContext, SaveProgress, run_advisory
from services.chunk_content import build_knowledge_point_content
from services.dedup_engine import DedupEngine
from services.outline_generator import OutlineGenerator
from services.repositories import LectureChunkRepository
from services.section_extractor import KnowledgePointExtractor
from services.structure_analyzer import StructureAnalyzer

logger = logging.getLogger(__name__)


def stored_title(record: ExistingRecord) -> str:
    """Pass 1 key of a stored lecture chunk."""
    return str(record.metadata.get("title") or "")


class LecturePipeline(IngestionPipeline):
    """Turns lecture pages into deduplicated knowledge point chunks."""

    name = "lecture"
    item_label = "knowledge points"

    def __init__(
        self,
        structure_analyzer: StructureAnalyzer,
        extractor: KnowledgePointExtractor,
        outline_generator: OutlineGenerator,
        dedup_engine: DedupEngine,
        repository: LectureChunkRepository,
        **kwargs
    ):
        super().__init__(dedup_engine, repository, **kwargs)
        self.structure_analyzer = structure_analyzer
        self.extractor = extractor
        self.outline_generator = outline_generator

    def _execute(self, context: PipelineContext) -> None:
        channel = context.channel
        channel.status("extracting", "AI extracting content...")

        structure: DocumentStructure = self._extract(
            lambda: self.structure_analyzer.analyze_structure(context.pages)
        )
        channel.log(f"Identified {len(structure.sections)} sections", "info")

        points = self._extract(
            lambda: self.extractor.extract_sections(
                context.pages,
                structure,
                on_progress=self._progress_reporter(context),
                cancel_event=context.cancel_event,
                on_warning=self._warning_reporter(context)
            )
        )
        self._check_cancelled(context)

        if not points:
            channel.log("No structured content extracted", "warning")
            channel.progress(0, 0)
            channel.complete("No content extracted")
            return

        channel.log(f"Extracted {len(points)} knowledge points", "success")
        for index, point in enumerate(points):
            channel.send("item", index=index, type="knowledge_point", data=point.to_dict())

        channel.status("embedding", "Saving...")

        channel.log("Saving document outline...", "info")
        outline_result = run_advisory("Outline save", self._save_outline, context, structure, points)
        if outline_result.ok:
            channel.log("Document outline saved", "success")
        else:
            channel.log("Outline save failed (non-fatal)", "warning")

        existing = self._fetch_existing(context)
        candidates = [
            DedupCandidate(
                index=index,
                key=point.title,
                content=build_knowledge_point_content(point)
            )
            for index, point in enumerate(points)
        ]
        result = self._deduplicate(context, candidates, existing, existing_key=stored_title)
        if result.is_empty:
            channel.complete("No new knowledge points to add (all duplicates).")
            return

        rows = []
        for candidate in result.survivors:
            point = points[candidate.index]
            metadata = {
                "type": "knowledge_point",
                "title": point.title,
                "definition": point.definition,
                "keyFormulas": point.key_formulas,
                "keyConcepts": point.key_concepts,
                "examples": point.examples,
                "sourcePages": point.source_pages,
            }
            if context.document_name:
                metadata["documentName"] = context.document_name
            rows.append({
                self.repository.parent_column: context.document_id,
                "content": candidate.content,
                "embedding": candidate.embedding,
                "metadata": metadata,
            })

        progress = SaveProgress(total=len(rows))
        channel.progress(0, progress.total)
        self._save_in_batches(context, rows, progress)
        self._finish(context, progress.saved)

    def _save_outline(self, context: PipelineContext, structure: DocumentStructure, points) -> None:
        outline = self.outline_generator.generate_document_outline(context.document_id, structure, points)
        self.repository.save_outline(context.document_id, outline.to_dict())
