"""
Assignment item extraction.

A single LLM call returns sections and items. When the payload as a whole
fails validation, valid items are recovered one by one and the problems are
reported as warnings. Items may point at a parent item of the same batch
through ``parentIndex``; the outline tree and the hierarchical save both rely
on those indices, so they are checked here.
"""
import logging
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from models.document import Page
from models.question import AssignmentItem, AssignmentOutline, AssignmentOutlineNode, AssignmentSection
from services.llm_client import LLMClient
from services.llm_parsing import coerce_source_pages, coerce_string_list, format_pages
from services.section_extractor import ExtractionProgress, ProgressCallback

logger = logging.getLogger(__name__)

DIFFICULTIES = ("easy", "medium", "hard")
SHORT_CONTENT_LENGTH = 20
OUTLINE_TITLE_LENGTH = 80
DISPLAY_MATH_PATTERN = re.compile(r"\$\$.*?\$\$", re.DOTALL)


class AssignmentItemPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_num: int = Field(alias="orderNum")
    content: str = Field(min_length=1)
    options: List[str] = Field(default_factory=list)
    reference_answer: str = Field(default="", alias="referenceAnswer")
    explanation: str = ""
    points: float = Field(default=0.0, ge=0, validation_alias=AliasChoices("points", "score"))
    type: str = ""
    difficulty: str = "medium"
    section: str = "General"
    source_pages: List[int] = Field(default_factory=list, alias="sourcePages")
    parent_index: Optional[int] = Field(default=None, alias="parentIndex")

    @field_validator("options", mode="before")
    @classmethod
    def _options(cls, value):
        return coerce_string_list(value)

    @field_validator("reference_answer", "explanation", "type", mode="before")
    @classmethod
    def _optional_text(cls, value):
        return "" if value is None else value

    @field_validator("points", mode="before")
    @classmethod
    def _points(cls, value):
        return 0.0 if value is None else value

    @field_validator("difficulty", mode="before")
    @classmethod
    def _difficulty(cls, value):
        if value is None:
            return "medium"
        if isinstance(value, str) and value.strip().lower() in DIFFICULTIES:
            return value.strip().lower()
        raise ValueError(f"difficulty must be one of {', '.join(DIFFICULTIES)}")

    @field_validator("section", mode="before")
    @classmethod
    def _section(cls, value):
        return value if isinstance(value, str) and value.strip() else "General"

    @field_validator("source_pages", mode="before")
    @classmethod
    def _pages(cls, value):
        return coerce_source_pages(value)

    def to_item(self) -> AssignmentItem:
        return AssignmentItem(
            order_num=self.order_num,
            content=self.content,
            options=self.options,
            reference_answer=self.reference_answer,
            explanation=self.explanation,
            points=self.points,
            type=self.type,
            difficulty=self.difficulty,
            section=self.section,
            source_pages=self.source_pages,
            parent_index=self.parent_index,
        )


class AssignmentSectionPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1)
    type: str = "mixed"
    source_pages: List[int] = Field(default_factory=list, alias="sourcePages")
    item_indices: List[int] = Field(default_factory=list, alias="itemIndices")

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, value):
        return value or "mixed"

    @field_validator("source_pages", mode="before")
    @classmethod
    def _pages(cls, value):
        return coerce_source_pages(value)

    def to_section(self) -> AssignmentSection:
        return AssignmentSection(
            title=self.title,
            type=self.type,
            source_pages=self.source_pages,
            item_indices=self.item_indices,
        )


class AssignmentPayload(BaseModel):
    sections: List[AssignmentSectionPayload] = Field(min_length=1)
    items: List[AssignmentItemPayload] = Field(min_length=1)


@dataclass
class AssignmentParseResult:
    """Items, sections and outline of one assignment, plus extraction warnings."""
    items: List[AssignmentItem] = field(default_factory=list)
    sections: List[AssignmentSection] = field(default_factory=list)
    outline: Optional[AssignmentOutline] = None
    warnings: List[str] = field(default_factory=list)


def _describe_errors(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in error.errors()
    )


def validate_assignment_items(items: List[AssignmentItem]) -> Dict[int, List[str]]:
    """
    Per-item quality warnings keyed by position in ``items``.

    Checks numbering gaps, empty or very short content, missing reference
    answers, unmatched ``$`` delimiters and duplicated content.
    """
    result: Dict[int, List[str]] = {}
    first_seen: Dict[str, int] = {}

    for i, item in enumerate(items):
        warnings = []
        content = item.content.strip()

        if i > 0:
            expected = items[i - 1].order_num + 1
            if item.order_num != expected:
                warnings.append(f"Question number gap: expected {expected}, got {item.order_num}")

        if not content:
            warnings.append("Empty question content")

        if not item.reference_answer.strip():
            warnings.append("No reference answer")

        inline = DISPLAY_MATH_PATTERN.sub("", item.content)
        if inline.count("$") % 2:
            warnings.append("Possible broken KaTeX formula (unmatched $)")

        if 0 < len(content) < SHORT_CONTENT_LENGTH:
            warnings.append("Suspiciously short content")

        normalized = content.lower()
        if normalized:
            if normalized in first_seen:
                warnings.append(f"Possible duplicate of Q{first_seen[normalized]}")
            else:
                first_seen[normalized] = item.order_num

        result[i] = warnings

    return result


def _in_parent_cycle(items: List[AssignmentItem], index: int) -> bool:
    seen = {index}
    parent = items[index].parent_index
    while parent is not None and 0 <= parent < len(items):
        if parent in seen:
            return True
        seen.add(parent)
        parent = items[parent].parent_index
    return False


def build_assignment_outline(assignment_id: str, items: List[AssignmentItem], subject: str = "") -> AssignmentOutline:
    """Question tree built from ``parent_index``; unresolvable or cyclic parents make roots."""
    nodes = [
        AssignmentOutlineNode(order_num=item.order_num, title=item.content[:OUTLINE_TITLE_LENGTH])
        for item in items
    ]
    roots = []
    for i, item in enumerate(items):
        parent = item.parent_index
        if parent is not None and 0 <= parent < len(nodes) and not _in_parent_cycle(items, i):
            nodes[parent].children.append(nodes[i])
        else:
            roots.append(nodes[i])

    return AssignmentOutline(
        assignment_id=assignment_id,
        title=roots[0].title if roots else "Untitled Assignment",
        subject=subject,
        total_items=len(items),
        items=roots,
        summary=f"{len(roots)} top-level questions, {len(items)} total items.",
    )


ASSIGNMENT_PROMPT = """You are an expert academic assignment/homework content analyzer.

Analyze the following document and extract ALL questions with their full structure.

For each SECTION (group questions by topic, chapter, or question type):
- title: Section heading (e.g. "Part A: Multiple Choice", "Chapter 3 Problems")
- type: Dominant question type (choice/fill_blank/short_answer/calculation/proof/essay/mixed)
- sourcePages: Array of page numbers this section spans
- itemIndices: Array of 0-based item indices belonging to this section

For each ITEM (question):
- orderNum: Sequential number (1, 2, 3...)
- content: Full question text in Markdown (use KaTeX for math: $...$ inline, $$...$$ block)
- options: Array of option texts for multiple choice (empty array if not MC)
- referenceAnswer: The reference answer if present in the document (empty string if none)
- explanation: Step-by-step solution explanation if present (empty string if none)
- points: Point value (0 if not specified)
- type: Question type (choice/fill_blank/short_answer/calculation/proof/essay)
- difficulty: Estimated difficulty (easy/medium/hard)
- section: Title of the parent section
- sourcePages: Array of page numbers where this question appears
- parentIndex: 0-based index of the parent item when this item is a sub-question that depends on a shared stem (null otherwise)

Critical rules:
- Extract EVERY question, do not skip any
- ALL mathematical expressions MUST be in KaTeX format
- Each item's referenceAnswer must correspond to THAT specific question
- Independent sub-parts become separate items; sub-parts sharing a stem keep the stem as the parent item and point at it with parentIndex
- Do NOT include instructions or headers as questions

Return ONLY a JSON object with "sections" and "items" arrays. No markdown, no explanation.

Document ({page_count} pages):
{pages_text}"""


class AssignmentParser:
    """Extracts, validates and outlines assignment items."""

    def __init__(self, llm_client: LLMClient):
        self.llm_client = llm_client

    def parse_assignment(
        self,
        pages: List[Page],
        assignment_id: str = "",
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> AssignmentParseResult:
        """
        Parse an assignment document.

        Args:
            pages: Document pages
            assignment_id: Id recorded on the outline
            on_progress: Called before and after the extraction call
            cancel_event: Cooperative cancellation flag

        Returns:
            AssignmentParseResult; items carry their validation warnings

        Raises:
            LLMClientError: If the extraction call fails or returns invalid JSON
        """
        if cancel_event is not None and cancel_event.is_set():
            return AssignmentParseResult(outline=build_assignment_outline(assignment_id, []))

        if on_progress:
            on_progress(ExtractionProgress(0, 1, f"Sending {len(pages)} pages to AI..."))

        prompt = ASSIGNMENT_PROMPT.format(page_count=len(pages), pages_text=format_pages(pages))
        raw = self.llm_client.generate_json(prompt)
        items, sections, warnings = self._validate(raw)

        warnings.extend(self._check_parent_indices(items))
        for position, item_warnings in validate_assignment_items(items).items():
            items[position].warnings.extend(item_warnings)

        if on_progress:
            detail = f"Extracted {len(items)} questions" if items else "No questions found"
            on_progress(ExtractionProgress(1, 1, detail))

        logger.info(f"Parsed {len(items)} assignment items in {len(sections)} sections")
        return AssignmentParseResult(
            items=items,
            sections=sections,
            outline=build_assignment_outline(assignment_id, items),
            warnings=warnings,
        )

    def _validate(self, raw: Any):
        try:
            payload = AssignmentPayload.model_validate(raw)
            return (
                [i.to_item() for i in payload.items],
                [s.to_section() for s in payload.sections],
                [],
            )
        except ValidationError as e:
            warnings = [f"Schema validation: {_describe_errors(e)}"]

        raw_items = raw.get("items") if isinstance(raw, dict) else None
        raw_sections = raw.get("sections") if isinstance(raw, dict) else None
        raw_items = raw_items if isinstance(raw_items, list) else []
        raw_sections = raw_sections if isinstance(raw_sections, list) else []

        # Raw position -> recovered position, so parent indices survive dropped items
        positions: Dict[int, int] = {}
        items: List[AssignmentItem] = []
        for raw_position, entry in enumerate(raw_items):
            try:
                item = AssignmentItemPayload.model_validate(entry).to_item()
            except ValidationError:
                continue
            positions[raw_position] = len(items)
            items.append(item)

        for item in items:
            if item.parent_index is None:
                continue
            if item.parent_index in positions:
                item.parent_index = positions[item.parent_index]
            else:
                item.warnings.append(f"Parent item {item.parent_index} was not recovered")
                item.parent_index = None

        sections = []
        for entry in raw_sections:
            try:
                section = AssignmentSectionPayload.model_validate(entry).to_section()
            except ValidationError:
                continue
            section.item_indices = [positions[i] for i in section.item_indices if i in positions]
            sections.append(section)

        if items:
            warnings.append(f"Recovered {len(items)}/{len(raw_items)} valid items")
        if not sections and items:
            sections.append(AssignmentSection(title="General", item_indices=list(range(len(items)))))
            warnings.append("Created default section for recovered items")

        logger.warning(warnings[0])
        return items, sections, warnings

    @staticmethod
    def _check_parent_indices(items: List[AssignmentItem]) -> List[str]:
        warnings = []
        for i, item in enumerate(items):
            parent = item.parent_index
            if parent is None:
                continue
            if not 0 <= parent < len(items) or parent == i:
                message = f"Q{item.order_num}: invalid parent index {parent}, treated as top-level"
                item.warnings.append(message)
                warnings.append(message)
                item.parent_index = None
        return warnings
