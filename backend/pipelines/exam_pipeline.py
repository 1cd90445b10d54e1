"""Exam paper ingestion: question parsing, dedup and ordered question storage."""
import logging

from models.chunk import DedupCandidate
from pipelines.base import IngestionPipeline, PipelineContext, SaveProgress, run_advisory
from services.chunk_content import build_question_content, option_label
from services.dedup_engine import DedupEngine
from services.question_parser import QuestionParser
from services.repositories import ExamQuestionRepository

logger = logging.getLogger(__name__)


class ExamPipeline(IngestionPipeline):
    """Turns exam pages into deduplicated, numbered questions."""

    name = "exam"
    item_label = "questions"

    def __init__(
        self,
        question_parser: QuestionParser,
        dedup_engine: DedupEngine,
        repository: ExamQuestionRepository,
        **kwargs
    ):
        super().__init__(dedup_engine, repository, **kwargs)
        self.question_parser = question_parser

    def _execute(self, context: PipelineContext) -> None:
        channel = context.channel
        channel.status("extracting", "AI extracting content...")

        questions = self._extract(
            lambda: self.question_parser.parse_questions(
                context.pages,
                context.has_answers,
                on_progress=self._progress_reporter(context),
                cancel_event=context.cancel_event,
                on_warning=self._warning_reporter(context)
            )
        )
        self._check_cancelled(context)

        if not questions:
            channel.progress(0, 0)
            channel.complete("No content extracted")
            return

        channel.log(f"Extracted {len(questions)} questions", "success")
        for index, question in enumerate(questions):
            channel.send("item", index=index, type="question", data=question.to_dict())

        channel.status("embedding", "Saving questions...")

        existing = self._fetch_existing(context)
        candidates = [
            DedupCandidate(
                index=index,
                key=question.content,
                content=build_question_content(question)
            )
            for index, question in enumerate(questions)
        ]
        result = self._deduplicate(context, candidates, existing)
        if result.is_empty:
            channel.complete("No new questions to add (all duplicates).")
            return

        next_order = self._next_order_num(context)
        rows = []
        for offset, candidate in enumerate(result.survivors):
            question = questions[candidate.index]
            rows.append({
                self.repository.parent_column: context.document_id,
                "order_num": next_order + offset,
                "type": question.type,
                "content": question.content,
                "options": (
                    {option_label(i): option for i, option in enumerate(question.options)}
                    if question.options else None
                ),
                "answer": question.reference_answer,
                "explanation": question.explanation,
                "points": question.score,
                "embedding": candidate.embedding,
                "metadata": {
                    "questionNumber": question.question_number,
                    "sourcePage": question.source_page,
                    "difficulty": question.difficulty,
                },
            })

        progress = SaveProgress(total=len(rows))
        self._save_in_batches(context, rows, progress)

        question_types = sorted({row["type"] for row in rows if row["type"]})
        if question_types:
            run_advisory(
                "Question types update",
                self.repository.update_question_types,
                context.document_id,
                question_types
            )

        self._finish(context, progress.saved)
