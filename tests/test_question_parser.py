"""Unit tests for QuestionParser."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import threading

import pytest
from unittest.mock import Mock
from models.document import Page
from services.llm_client import LLMClient
from services.question_parser import QuestionParser, QuestionPayload


def _pages(count):
    return [Page(page_number=n, text=f"Question text on page {n}") for n in range(1, count + 1)]


class TestQuestionParser:
    """Test suite for QuestionParser."""

    def test_parses_questions_in_batches(self):
        llm = Mock(spec=LLMClient)
        llm.generate_json.side_effect = [
            {"questions": [{"questionNumber": 1, "content": "Define entropy.", "score": 5, "sourcePage": 1}]},
            {"questions": [{"questionNumber": "2a", "content": "Which is stable?",
                            "options": ["Quick sort", "Merge sort"], "type": "choice"}]},
        ]
        progress = []

        questions = QuestionParser(llm, page_batch_size=2).parse_questions(
            _pages(3), has_answers=False, on_progress=progress.append
        )

        assert [q.question_number for q in questions] == ["1", "2a"]
        assert questions[0].score == 5
        assert questions[0].source_page == 1
        assert questions[1].options == ["Quick sort", "Merge sort"]
        assert questions[1].type == "choice"
        assert [(p.completed, p.total) for p in progress] == [(1, 2), (2, 2)]
        assert progress[1].detail == "Parsed 1 questions from pages 3-3"

    def test_answer_instruction_follows_flag(self):
        llm = Mock(spec=LLMClient)
        llm.generate_json.return_value = {"questions": []}
        parser = QuestionParser(llm)

        parser.parse_questions(_pages(1), has_answers=True)
        assert "extract from the document" in llm.generate_json.call_args[0][0]

        parser.parse_questions(_pages(1), has_answers=False)
        assert "no answers provided" in llm.generate_json.call_args[0][0]

    def test_failed_batch_warns_and_continues(self):
        llm = Mock(spec=LLMClient)
        llm.generate_json.side_effect = [
            RuntimeError("model overloaded"),
            {"questions": [{"questionNumber": "3", "content": "Prove it."}]},
        ]
        warnings = []

        questions = QuestionParser(llm, page_batch_size=1).parse_questions(
            _pages(2), has_answers=False, on_warning=warnings.append
        )

        assert [q.content for q in questions] == ["Prove it."]
        assert warnings == ["Pages 1-1 failed to parse: model overloaded"]

    def test_all_batches_failing_raises(self):
        llm = Mock(spec=LLMClient)
        llm.generate_json.side_effect = [RuntimeError("first"), RuntimeError("second")]

        with pytest.raises(RuntimeError, match="first"):
            QuestionParser(llm, page_batch_size=1).parse_questions(_pages(2), has_answers=False)

    def test_cancel_between_batches(self):
        llm = Mock(spec=LLMClient)
        cancel_event = threading.Event()

        def respond(prompt, *args, **kwargs):
            cancel_event.set()
            return {"questions": [{"questionNumber": "1", "content": "Q"}]}

        llm.generate_json.side_effect = respond

        questions = QuestionParser(llm, page_batch_size=1).parse_questions(
            _pages(3), has_answers=False, cancel_event=cancel_event
        )

        assert len(questions) == 1
        assert llm.generate_json.call_count == 1

    def test_invalid_questions_are_dropped(self):
        llm = Mock(spec=LLMClient)
        llm.generate_json.return_value = {"questions": [
            {"questionNumber": "1", "content": "Valid"},
            {"questionNumber": "2", "content": "   "},
            {"questionNumber": "3", "content": "Negative", "score": -2},
            {"content": "No number"},
        ]}

        questions = QuestionParser(llm).parse_questions(_pages(1), has_answers=False)

        assert [q.question_number for q in questions] == ["1"]


class TestQuestionPayload:

    def test_nulls_become_defaults(self):
        question = QuestionPayload.model_validate({
            "questionNumber": 4.0,
            "content": "Compute the gradient.",
            "referenceAnswer": None,
            "score": None,
            "sourcePage": "7",
        }).to_question()

        assert question.question_number == "4"
        assert question.reference_answer == ""
        assert question.score == 0.0
        assert question.source_page == 7
