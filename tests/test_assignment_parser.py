"""Unit tests for AssignmentParser, item validation and the assignment outline."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import threading

import pytest
from unittest.mock import Mock
from models.document import Page
from models.question import AssignmentItem
from services.assignment_parser import AssignmentParser, build_assignment_outline, validate_assignment_items
from services.llm_client import LLMClient, LLMClientError, LLMError

PAGES = [Page(page_number=1, text="Homework 3"), Page(page_number=2, text="Problems")]


def _item(order_num, content, **extra):
    entry = {
        "orderNum": order_num,
        "content": content,
        "referenceAnswer": "See solution manual",
        "difficulty": "medium",
        "section": "Part A",
        "sourcePages": [1],
    }
    entry.update(extra)
    return entry


def _payload(items, sections=None):
    return {
        "sections": sections if sections is not None else [{"title": "Part A", "type": "mixed", "itemIndices": [0]}],
        "items": items,
    }


class TestAssignmentParser:
    """Test suite for AssignmentParser."""

    def test_parse_valid_payload(self):
        llm = Mock(spec=LLMClient)
        llm.generate_json.return_value = _payload([
            _item(1, "Consider the function $f(x) = x^2$ on the real line."),
            _item(2, "Compute the derivative of f at zero.", parentIndex=0, points=3),
        ])
        progress = []

        result = AssignmentParser(llm).parse_assignment(PAGES, "assignment-1", on_progress=progress.append)

        assert [i.order_num for i in result.items] == [1, 2]
        assert result.items[1].parent_index == 0
        assert result.items[1].points == 3
        assert result.warnings == []
        assert result.sections[0].title == "Part A"
        assert [p.detail for p in progress] == ["Sending 2 pages to AI...", "Extracted 2 questions"]
        assert result.outline.assignment_id == "assignment-1"
        assert len(result.outline.items) == 1
        assert result.outline.items[0].children[0].order_num == 2

    def test_score_is_accepted_for_points(self):
        llm = Mock(spec=LLMClient)
        llm.generate_json.return_value = _payload([_item(1, "Explain why the sky is blue in detail.", score=4)])

        result = AssignmentParser(llm).parse_assignment(PAGES)

        assert result.items[0].points == 4

    def test_partial_recovery(self):
        """Test invalid items are dropped and parent indices follow the survivors."""
        llm = Mock(spec=LLMClient)
        llm.generate_json.return_value = _payload([
            _item(1, "Describe the three laws of thermodynamics."),
            _item(2, "This one has an impossible difficulty.", difficulty="extreme"),
            _item(3, "Apply the first law to an ideal gas.", parentIndex=0),
            _item(4, "Follow-up to the dropped question above.", parentIndex=1),
        ], sections=[])

        result = AssignmentParser(llm).parse_assignment(PAGES)

        assert [i.order_num for i in result.items] == [1, 3, 4]
        assert result.items[1].parent_index == 0
        assert result.items[2].parent_index is None
        assert "Parent item 1 was not recovered" in result.items[2].warnings
        assert result.warnings[0].startswith("Schema validation: ")
        assert "Recovered 3/4 valid items" in result.warnings
        assert "Created default section for recovered items" in result.warnings
        assert result.sections[0].title == "General"
        assert result.sections[0].item_indices == [0, 1, 2]

    def test_invalid_parent_index_becomes_top_level(self):
        llm = Mock(spec=LLMClient)
        llm.generate_json.return_value = _payload([
            _item(1, "A question that points at itself.", parentIndex=0),
            _item(2, "A question that points past the end.", parentIndex=9),
        ])

        result = AssignmentParser(llm).parse_assignment(PAGES)

        assert all(i.parent_index is None for i in result.items)
        assert "Q1: invalid parent index 0, treated as top-level" in result.warnings
        assert "Q2: invalid parent index 9, treated as top-level" in result.items[1].warnings
        assert len(result.outline.items) == 2

    def test_no_items(self):
        llm = Mock(spec=LLMClient)
        llm.generate_json.return_value = {"sections": [], "items": []}
        progress = []

        result = AssignmentParser(llm).parse_assignment(PAGES, on_progress=progress.append)

        assert result.items == []
        assert progress[-1].detail == "No questions found"
        assert result.outline.title == "Untitled Assignment"

    def test_invalid_json_propagates(self):
        llm = Mock(spec=LLMClient)
        llm.generate_json.side_effect = LLMClientError(LLMError("INVALID_JSON", "LLM returned invalid JSON (5 chars)", {}))

        with pytest.raises(LLMClientError):
            AssignmentParser(llm).parse_assignment(PAGES)

    def test_cancelled_before_start(self):
        llm = Mock(spec=LLMClient)
        cancel_event = threading.Event()
        cancel_event.set()

        result = AssignmentParser(llm).parse_assignment(PAGES, cancel_event=cancel_event)

        assert result.items == []
        llm.generate_json.assert_not_called()


class TestValidateAssignmentItems:
    """Test suite for the per-item quality checks."""

    def test_quality_warnings(self):
        items = [
            AssignmentItem(order_num=1, content="Prove that $\\sqrt{2}$ is irrational.", reference_answer="By contradiction"),
            AssignmentItem(order_num=3, content="Short?", reference_answer="x"),
            AssignmentItem(order_num=4, content="Evaluate $x + 1 for x = 2 please", reference_answer="3"),
            AssignmentItem(order_num=5, content="Prove that $\\sqrt{2}$ is irrational."),
        ]

        warnings = validate_assignment_items(items)

        assert warnings[0] == []
        assert "Question number gap: expected 2, got 3" in warnings[1]
        assert "Suspiciously short content" in warnings[1]
        assert "Possible broken KaTeX formula (unmatched $)" in warnings[2]
        assert "No reference answer" in warnings[3]
        assert "Possible duplicate of Q1" in warnings[3]

    def test_display_math_is_balanced(self):
        items = [AssignmentItem(
            order_num=1,
            content="Solve $$\\int_0^1 x\\,dx$$ and state the result.",
            reference_answer="1/2"
        )]

        assert validate_assignment_items(items) == {0: []}


class TestBuildAssignmentOutline:

    def test_outline_tree(self):
        items = [
            AssignmentItem(order_num=1, content="Stem " * 30),
            AssignmentItem(order_num=2, content="Part a", parent_index=0),
            AssignmentItem(order_num=3, content="Standalone"),
        ]

        outline = build_assignment_outline("a-1", items, subject="Calculus")

        assert len(outline.items[0].title) == 80
        assert outline.summary == "2 top-level questions, 3 total items."
        data = outline.to_dict()
        assert data["assignmentId"] == "a-1"
        assert data["items"][0]["children"][0]["orderNum"] == 2

    def test_parent_cycle_items_become_roots(self):
        items = [
            AssignmentItem(order_num=1, content="First", parent_index=1),
            AssignmentItem(order_num=2, content="Second", parent_index=0),
        ]

        outline = build_assignment_outline("a-1", items)

        assert [node.order_num for node in outline.items] == [1, 2]
        assert all(not node.children for node in outline.items)
        assert outline.to_dict()["totalItems"] == 2
