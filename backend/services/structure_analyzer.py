"""Document structure analysis: split a document's pages into logical sections."""
import logging
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator

from config import SHORT_DOCUMENT_THRESHOLD, STRUCTURE_PAGE_SUMMARY_LENGTH
from models.document import ContentType, DocumentStructure, Page, SectionInfo
from services.llm_client import LLMClient
from services.llm_parsing import format_pages

logger = logging.getLogger(__name__)

FALLBACK_SEGMENT_PAGES = 10


class _SectionPayload(BaseModel):
    title: str = Field(min_length=1)
    startPage: int = Field(gt=0)
    endPage: int = Field(gt=0)
    contentType: ContentType = ContentType.MIXED
    parentSection: Optional[str] = None

    @model_validator(mode="after")
    def _ordered_range(self):
        if self.endPage < self.startPage:
            raise ValueError("endPage before startPage")
        return self


class _StructurePayload(BaseModel):
    subject: str = Field(min_length=1)
    documentType: str = Field(min_length=1)
    sections: List[_SectionPayload] = Field(min_length=1)


STRUCTURE_PROMPT = """You are a document structure analysis expert. Analyze the following academic document and identify its structure.

For each section, provide:
- title: The section/chapter heading
- startPage: First page number
- endPage: Last page number
- contentType: One of "definitions", "theorems", "examples", "exercises", "overview", "mixed"
  - "overview" = table of contents, introduction, references, administrative info
  - "definitions" = concept definitions, explanations
  - "theorems" = proofs, derivations, formulas
  - "examples" = worked examples, case studies
  - "exercises" = practice problems, homework
  - "mixed" = combination of the above

Also identify:
- subject: The academic discipline (e.g., "Computer Science", "Economics")
- documentType: The type of document (e.g., "lecture slides", "textbook chapter", "course notes")

Rules:
- If no clear chapter headings exist, segment by topic changes
- Mark table of contents, cover pages, and reference sections as "overview"
- Sections must cover all pages with no gaps

Return ONLY a JSON object with "subject", "documentType" and "sections". No markdown, no explanation.

Document pages ({page_count} total):
{page_summaries}"""


class StructureAnalyzer:
    """Produces a DocumentStructure from page text, with an LLM and a page-count fallback."""

    def __init__(
        self,
        llm_client: LLMClient,
        short_document_threshold: int = SHORT_DOCUMENT_THRESHOLD,
        page_summary_length: int = STRUCTURE_PAGE_SUMMARY_LENGTH
    ):
        self.llm_client = llm_client
        self.short_document_threshold = short_document_threshold
        self.page_summary_length = page_summary_length

    def analyze_structure(self, pages: List[Page]) -> DocumentStructure:
        """
        Analyze the section layout of a document.

        Short documents become a single "Full Document" section without an
        LLM call. If the LLM fails or returns an invalid layout, the document
        is cut into fixed-size segments instead.
        """
        if not pages:
            return DocumentStructure(subject="Unknown", document_type="unknown", sections=[])

        first_page = pages[0].page_number
        last_page = pages[-1].page_number

        if len(pages) <= self.short_document_threshold:
            return DocumentStructure(
                subject="Unknown",
                document_type="unknown",
                sections=[SectionInfo("Full Document", first_page, last_page, ContentType.MIXED)]
            )

        prompt = STRUCTURE_PROMPT.format(
            page_count=len(pages),
            page_summaries=format_pages(pages, max_chars=self.page_summary_length)
        )

        try:
            raw = self.llm_client.generate_json(prompt)
            payload = _StructurePayload.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Structure analysis validation failed, using fallback: {e.error_count()} errors")
            return self.fallback_structure(pages)
        except Exception as e:
            logger.warning(f"Structure analysis failed, using fallback segmentation: {str(e)}")
            return self.fallback_structure(pages)

        sections = []
        for s in payload.sections:
            start = max(first_page, s.startPage)
            end = min(last_page, s.endPage)
            if start > end:
                continue
            sections.append(SectionInfo(
                title=s.title,
                start_page=start,
                end_page=end,
                content_type=s.contentType,
                parent_section=s.parentSection
            ))

        if not sections:
            logger.warning("Structure analysis returned no sections inside the document")
            return self.fallback_structure(pages)

        logger.info(f"Structure analysis found {len(sections)} sections ({payload.subject})")
        return DocumentStructure(
            subject=payload.subject,
            document_type=payload.documentType,
            sections=sections
        )

    @staticmethod
    def fallback_structure(pages: List[Page]) -> DocumentStructure:
        """Fixed-size "Section N" segments covering every page."""
        sections = []
        numbers = [p.page_number for p in pages]
        for i in range(0, len(numbers), FALLBACK_SEGMENT_PAGES):
            segment = numbers[i:i + FALLBACK_SEGMENT_PAGES]
            sections.append(SectionInfo(
                title=f"Section {len(sections) + 1}",
                start_page=segment[0],
                end_page=segment[-1],
                content_type=ContentType.MIXED
            ))
        return DocumentStructure(subject="Unknown", document_type="unknown", sections=sections)
