"""Knowledge point extraction, one LLM call per document section."""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from config import (
    SECTION_OVERLAP_PAGES,
    SECTION_MAX_PAGES,
    SECTION_BATCH_PAGES,
    SECTION_BATCH_OVERLAP_PAGES,
    SECTION_CONCURRENCY,
)
from models.document import DocumentStructure, Page, SectionInfo
from models.knowledge import KnowledgePoint
from services.llm_client import LLMClient
from services.llm_parsing import coerce_source_pages, coerce_string_list, extract_list, format_pages

logger = logging.getLogger(__name__)


class KnowledgePointPayload(BaseModel):
    """Schema of one knowledge point as returned by the model."""
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1)
    definition: str = Field(min_length=1)
    key_formulas: List[str] = Field(default_factory=list, alias="keyFormulas")
    key_concepts: List[str] = Field(default_factory=list, alias="keyConcepts")
    examples: List[str] = Field(default_factory=list)
    source_pages: List[int] = Field(default_factory=list, alias="sourcePages")

    @field_validator("title", "definition", mode="before")
    @classmethod
    def _strip(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("key_formulas", "key_concepts", "examples", mode="before")
    @classmethod
    def _string_list(cls, value):
        return coerce_string_list(value)

    @field_validator("source_pages", mode="before")
    @classmethod
    def _pages(cls, value):
        return coerce_source_pages(value)

    def to_knowledge_point(self) -> KnowledgePoint:
        return KnowledgePoint(
            title=self.title,
            definition=self.definition,
            key_formulas=self.key_formulas,
            key_concepts=self.key_concepts,
            examples=self.examples,
            source_pages=self.source_pages,
        )


@dataclass
class ExtractionProgress:
    """Progress of a multi-unit extraction, reported after each unit settles."""
    completed: int
    total: int
    detail: str


ProgressCallback = Callable[[ExtractionProgress], None]
WarningCallback = Callable[[str], None]


def _union(first: List[str], second: List[str]) -> List[str]:
    merged = list(first)
    seen = {v.strip().lower() for v in first}
    for value in second:
        key = value.strip().lower()
        if key not in seen:
            seen.add(key)
            merged.append(value)
    return merged


def merge_knowledge_points(points: List[KnowledgePoint]) -> List[KnowledgePoint]:
    """
    Merge knowledge points sharing a case-insensitive title.

    The first occurrence keeps its position and title. On collision the longer
    definition wins, source pages are unioned and optional lists are unioned
    in first-seen order.
    """
    merged: Dict[str, KnowledgePoint] = {}
    for point in points:
        key = point.title_key
        current = merged.get(key)
        if current is None:
            merged[key] = KnowledgePoint(
                title=point.title,
                definition=point.definition,
                key_formulas=list(point.key_formulas),
                key_concepts=list(point.key_concepts),
                examples=list(point.examples),
                source_pages=list(point.source_pages),
            )
            continue

        if len(point.definition) > len(current.definition):
            current.definition = point.definition
        current.key_formulas = _union(current.key_formulas, point.key_formulas)
        current.key_concepts = _union(current.key_concepts, point.key_concepts)
        current.examples = _union(current.examples, point.examples)
        current.source_pages = sorted(set(current.source_pages) | set(point.source_pages))

    return list(merged.values())


SECTION_PROMPT = """You are an expert academic content analyzer. Extract structured knowledge points from one section of a {document_type} on {subject}.

Section: "{title}" (pages {start_page}-{end_page}, content type: {content_type})
Previous section: {previous_title}
Next section: {next_title}

The pages below include a small margin from the neighbouring sections for context. Only extract concepts that belong to "{title}".

For each knowledge point, extract:
- title: A clear, concise title for the concept
- definition: A comprehensive explanation/definition
- keyFormulas: Relevant formulas in LaTeX (omit if none)
- keyConcepts: Related key terms (omit if none)
- examples: Concrete examples mentioned (omit if none)
- sourcePages: Array of page numbers where this concept appears

Rules:
- Each knowledge point must be self-contained
- Do NOT include classroom admin info or table-of-contents entries

Return ONLY a JSON object of the form {{"knowledgePoints": [...]}}. No markdown, no explanation.

Section content:
{pages_text}"""


class KnowledgePointExtractor:
    """Extracts knowledge points section by section with bounded concurrency."""

    def __init__(
        self,
        llm_client: LLMClient,
        overlap_pages: int = SECTION_OVERLAP_PAGES,
        max_pages: int = SECTION_MAX_PAGES,
        batch_pages: int = SECTION_BATCH_PAGES,
        batch_overlap_pages: int = SECTION_BATCH_OVERLAP_PAGES,
        concurrency: int = SECTION_CONCURRENCY
    ):
        """
        Args:
            llm_client: Client used for the per-section extraction prompts
            overlap_pages: Pages of margin added on each side of a section
            max_pages: Slice length above which a section is split into batches
            batch_pages: Pages per batch for oversized sections
            batch_overlap_pages: Pages shared between consecutive batches
            concurrency: Sections extracted concurrently per wave
        """
        if batch_overlap_pages >= batch_pages:
            raise ValueError("batch_overlap_pages must be smaller than batch_pages")
        self.llm_client = llm_client
        self.overlap_pages = overlap_pages
        self.max_pages = max_pages
        self.batch_pages = batch_pages
        self.batch_overlap_pages = batch_overlap_pages
        self.concurrency = max(1, concurrency)

    def extract_sections(
        self,
        pages: List[Page],
        structure: DocumentStructure,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        on_warning: Optional[WarningCallback] = None
    ) -> List[KnowledgePoint]:
        """
        Extract knowledge points from every non-overview section.

        Sections run in waves of ``concurrency``. Every future of a wave is
        awaited before the next wave starts, and results are collected in
        section order once the wave has settled. A set ``cancel_event`` stops
        new waves from starting.

        Args:
            pages: Document pages
            structure: Section layout from the structure analyzer
            on_progress: Called after each section settles
            cancel_event: Cooperative cancellation flag
            on_warning: Called once per failed section

        Returns:
            Knowledge points merged by title across sections

        Raises:
            Exception: The first section error, if every section failed
        """
        sections = structure.sections
        targets = [i for i, s in enumerate(sections) if s.is_extractable]
        total = len(targets)
        if not total:
            logger.info("No extractable sections (all overview)")
            return []

        collected: List[KnowledgePoint] = []
        failures: List[Exception] = []
        completed = 0

        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="section") as executor:
            for wave_start in range(0, total, self.concurrency):
                if cancel_event is not None and cancel_event.is_set():
                    logger.info(f"Extraction cancelled after {completed}/{total} sections")
                    break

                wave = targets[wave_start:wave_start + self.concurrency]
                futures = [
                    executor.submit(self._extract_section, pages, structure, index)
                    for index in wave
                ]
                wait(futures)

                for index, future in zip(wave, futures):
                    section = sections[index]
                    completed += 1
                    error = future.exception()
                    if error is not None:
                        failures.append(error)
                        message = f'Section "{section.title}" failed to extract: {str(error)}'
                        logger.warning(message)
                        if on_warning:
                            on_warning(message)
                        detail = f'Section "{section.title}" failed'
                    else:
                        points = future.result()
                        collected.extend(points)
                        detail = f'Extracted {len(points)} knowledge points from "{section.title}"'
                    if on_progress:
                        on_progress(ExtractionProgress(completed=completed, total=total, detail=detail))

        if failures and len(failures) == completed:
            logger.error(f"All {completed} sections failed to extract")
            raise failures[0]

        merged = merge_knowledge_points(collected)
        logger.info(
            f"Extracted {len(merged)} knowledge points from {completed - len(failures)}/{total} sections"
        )
        return merged

    def section_pages(self, pages: List[Page], section: SectionInfo) -> List[Page]:
        """Pages of a section widened by the overlap margin, clamped to the document."""
        low = section.start_page - self.overlap_pages
        high = section.end_page + self.overlap_pages
        return [p for p in pages if low <= p.page_number <= high]

    def page_batches(self, section_pages: List[Page]) -> List[List[Page]]:
        """Split an oversized slice into overlapping batches."""
        if len(section_pages) <= self.max_pages:
            return [section_pages]

        step = self.batch_pages - self.batch_overlap_pages
        batches = []
        for start in range(0, len(section_pages), step):
            batches.append(section_pages[start:start + self.batch_pages])
            if start + self.batch_pages >= len(section_pages):
                break
        return batches

    def _extract_section(self, pages: List[Page], structure: DocumentStructure, index: int) -> List[KnowledgePoint]:
        section = structure.sections[index]
        slice_pages = self.section_pages(pages, section)
        if not slice_pages:
            logger.warning(f'Section "{section.title}" has no pages in range {section.start_page}-{section.end_page}')
            return []

        previous_title = structure.sections[index - 1].title if index > 0 else "(none)"
        next_title = structure.sections[index + 1].title if index + 1 < len(structure.sections) else "(none)"

        batches = self.page_batches(slice_pages)
        points: List[KnowledgePoint] = []
        for batch in batches:
            prompt = SECTION_PROMPT.format(
                document_type=structure.document_type,
                subject=structure.subject,
                title=section.title,
                start_page=section.start_page,
                end_page=section.end_page,
                content_type=section.content_type.value,
                previous_title=previous_title,
                next_title=next_title,
                pages_text=format_pages(batch)
            )
            raw = self.llm_client.generate_json(prompt)
            points.extend(self._validate(raw, section.title))

        if len(batches) > 1:
            points = merge_knowledge_points(points)
            logger.debug(f'Section "{section.title}" extracted in {len(batches)} batches')
        return points

    @staticmethod
    def _validate(raw: Any, section_title: str) -> List[KnowledgePoint]:
        valid = []
        items = extract_list(raw, "knowledgePoints", "knowledge_points", "items")
        for item in items:
            try:
                valid.append(KnowledgePointPayload.model_validate(item).to_knowledge_point())
            except ValidationError as e:
                logger.debug(f'Dropping invalid knowledge point in "{section_title}": {e.error_count()} errors')
        dropped = len(items) - len(valid)
        if dropped:
            logger.info(f'Dropped {dropped} invalid knowledge points in "{section_title}"')
        return valid
