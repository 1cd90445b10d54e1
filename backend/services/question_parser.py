"""Exam question extraction in page batches."""
import logging
import threading
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from config import QUESTION_PAGE_BATCH_SIZE
from models.document import Page
from models.question import ParsedQuestion
from services.llm_client import LLMClient
from services.llm_parsing import coerce_source_pages, coerce_string_list, extract_list, format_pages
from services.section_extractor import ExtractionProgress, ProgressCallback, WarningCallback

logger = logging.getLogger(__name__)


class QuestionPayload(BaseModel):
    """Schema of one exam question as returned by the model."""
    model_config = ConfigDict(populate_by_name=True)

    question_number: str = Field(alias="questionNumber")
    content: str = Field(min_length=1)
    options: List[str] = Field(default_factory=list)
    reference_answer: str = Field(default="", alias="referenceAnswer")
    explanation: str = ""
    score: float = Field(default=0.0, ge=0)
    type: str = ""
    difficulty: str = ""
    source_page: Optional[int] = Field(default=None, alias="sourcePage")

    @field_validator("question_number", mode="before")
    @classmethod
    def _number_as_text(cls, value):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(int(value)) if float(value).is_integer() else str(value)
        return value

    @field_validator("content", mode="before")
    @classmethod
    def _strip(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("options", mode="before")
    @classmethod
    def _options(cls, value):
        return coerce_string_list(value)

    @field_validator("reference_answer", "explanation", "type", "difficulty", mode="before")
    @classmethod
    def _optional_text(cls, value):
        return "" if value is None else value

    @field_validator("score", mode="before")
    @classmethod
    def _score(cls, value):
        return 0.0 if value is None else value

    @field_validator("source_page", mode="before")
    @classmethod
    def _page(cls, value):
        pages = coerce_source_pages(value)
        return pages[0] if pages else None

    def to_question(self) -> ParsedQuestion:
        return ParsedQuestion(
            question_number=self.question_number,
            content=self.content,
            options=self.options,
            reference_answer=self.reference_answer,
            explanation=self.explanation,
            score=self.score,
            type=self.type,
            difficulty=self.difficulty,
            source_page=self.source_page,
        )


QUESTION_PROMPT = """You are an expert academic content analyzer. Analyze the following exam document and extract each individual question.

For each question, extract:
- questionNumber: The question number/label as shown (e.g. "1", "1a", "Q1")
- content: The full question text including any sub-parts
- options: Array of answer options if it's a multiple choice question (omit if not MC)
{answer_instruction}
- explanation: Worked solution if shown (omit if not shown)
- score: Points/marks allocated if shown (omit if not shown)
- type: Question type (choice/fill_blank/short_answer/calculation/proof/essay)
- difficulty: Estimated difficulty (easy/medium/hard)
- sourcePage: The page number where the question appears

Use KaTeX for math: $...$ inline, $$...$$ block.

Return ONLY a JSON object of the form {{"questions": [...]}}. No markdown, no explanation.

Document content:
{pages_text}"""

ANSWER_INSTRUCTION = "- referenceAnswer: The reference answer or solution provided (extract from the document)"
NO_ANSWER_INSTRUCTION = "- referenceAnswer: Omit this field (no answers provided in document)"


class QuestionParser:
    """Extracts exam questions batch by batch; a failed batch does not stop the rest."""

    def __init__(self, llm_client: LLMClient, page_batch_size: int = QUESTION_PAGE_BATCH_SIZE):
        self.llm_client = llm_client
        self.page_batch_size = max(1, page_batch_size)

    def parse_questions(
        self,
        pages: List[Page],
        has_answers: bool,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        on_warning: Optional[WarningCallback] = None
    ) -> List[ParsedQuestion]:
        """
        Parse questions from an exam paper.

        Args:
            pages: Document pages
            has_answers: Whether the paper contains reference answers
            on_progress: Called after each page batch
            cancel_event: Cooperative cancellation flag, checked between batches
            on_warning: Called once per failed batch

        Returns:
            Questions in document order

        Raises:
            Exception: The first batch error, if every batch failed
        """
        batches = [pages[i:i + self.page_batch_size] for i in range(0, len(pages), self.page_batch_size)]
        total = len(batches)
        questions: List[ParsedQuestion] = []
        failures: List[Exception] = []
        attempted = 0

        for index, batch in enumerate(batches):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Question parsing cancelled after {attempted}/{total} batches")
                break

            attempted += 1
            page_range = f"{batch[0].page_number}-{batch[-1].page_number}"
            try:
                parsed = self._parse_batch(batch, has_answers)
                questions.extend(parsed)
                detail = f"Parsed {len(parsed)} questions from pages {page_range}"
            except Exception as e:
                failures.append(e)
                message = f"Pages {page_range} failed to parse: {str(e)}"
                logger.warning(message)
                if on_warning:
                    on_warning(message)
                detail = f"Pages {page_range} failed"

            if on_progress:
                on_progress(ExtractionProgress(completed=index + 1, total=total, detail=detail))

        if failures and len(failures) == attempted:
            logger.error(f"All {attempted} page batches failed to parse")
            raise failures[0]

        logger.info(f"Parsed {len(questions)} questions from {attempted - len(failures)}/{total} batches")
        return questions

    def _parse_batch(self, pages: List[Page], has_answers: bool) -> List[ParsedQuestion]:
        prompt = QUESTION_PROMPT.format(
            answer_instruction=ANSWER_INSTRUCTION if has_answers else NO_ANSWER_INSTRUCTION,
            pages_text=format_pages(pages)
        )
        raw = self.llm_client.generate_json(prompt)
        return self._validate(raw)

    @staticmethod
    def _validate(raw: Any) -> List[ParsedQuestion]:
        valid = []
        items = extract_list(raw, "questions", "items")
        for item in items:
            try:
                valid.append(QuestionPayload.model_validate(item).to_question())
            except ValidationError as e:
                logger.debug(f"Dropping invalid question: {e.error_count()} errors")
        return valid
