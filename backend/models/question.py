"""Exam question and assignment item data models."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from models.knowledge import normalize_pages


@dataclass
class ParsedQuestion:
    """A single question extracted from an exam paper."""
    question_number: str
    content: str
    options: List[str] = field(default_factory=list)
    reference_answer: str = ""
    explanation: str = ""
    score: float = 0.0
    type: str = ""
    difficulty: str = ""
    source_page: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with the camelCase keys the client expects."""
        return {
            "questionNumber": self.question_number,
            "content": self.content,
            "options": list(self.options),
            "referenceAnswer": self.reference_answer,
            "explanation": self.explanation,
            "score": self.score,
            "type": self.type,
            "difficulty": self.difficulty,
            "sourcePage": self.source_page,
        }


@dataclass
class AssignmentItem:
    """
    A single question extracted from an assignment.

    ``parent_index`` points at another item of the same parsed batch by
    position (e.g. "1a" inside "1"); it is never a persisted id.
    """
    order_num: int
    content: str
    options: List[str] = field(default_factory=list)
    reference_answer: str = ""
    explanation: str = ""
    points: float = 0.0
    type: str = ""
    difficulty: str = "medium"
    section: str = "General"
    source_pages: List[int] = field(default_factory=list)
    parent_index: Optional[int] = None
    warnings: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.source_pages = normalize_pages(self.source_pages)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orderNum": self.order_num,
            "content": self.content,
            "options": list(self.options),
            "referenceAnswer": self.reference_answer,
            "explanation": self.explanation,
            "points": self.points,
            "type": self.type,
            "difficulty": self.difficulty,
            "section": self.section,
            "sourcePages": list(self.source_pages),
            "parentIndex": self.parent_index,
        }


@dataclass
class AssignmentSection:
    """A group of assignment items sharing a heading or question type."""
    title: str
    type: str = "mixed"
    source_pages: List[int] = field(default_factory=list)
    item_indices: List[int] = field(default_factory=list)


@dataclass
class AssignmentOutlineNode:
    """Node of the assignment outline tree."""
    order_num: int
    title: str
    children: List["AssignmentOutlineNode"] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orderNum": self.order_num,
            "title": self.title,
            "children": [c.to_dict() for c in self.children],
        }


@dataclass
class AssignmentOutline:
    """Question tree of an assignment."""
    assignment_id: str
    title: str
    subject: str
    total_items: int
    items: List[AssignmentOutlineNode]
    summary: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assignmentId": self.assignment_id,
            "title": self.title,
            "subject": self.subject,
            "totalItems": self.total_items,
            "items": [n.to_dict() for n in self.items],
            "summary": self.summary,
        }
