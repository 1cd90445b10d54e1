"""Builders for the text that is embedded and stored for each chunk or item."""
from typing import Optional

from models.knowledge import KnowledgePoint
from models.question import AssignmentItem, ParsedQuestion


def option_label(position: int) -> str:
    """A, B, C ... for multiple choice options."""
    return chr(ord("A") + position)


def build_knowledge_point_content(point: KnowledgePoint) -> str:
    """
    Format: "## Title\\nDefinition" followed by optional formula, concept and
    example blocks.
    """
    parts = [f"## {point.title}", point.definition]
    if point.key_formulas:
        parts.append("Key formulas:\n" + "\n".join(f"- {f}" for f in point.key_formulas))
    if point.key_concepts:
        parts.append("Key concepts: " + ", ".join(point.key_concepts))
    if point.examples:
        parts.append("Examples:\n" + "\n".join(f"- {e}" for e in point.examples))
    return "\n\n".join(parts)


def build_question_content(question: ParsedQuestion) -> str:
    lines = [f"Q{question.question_number}: {question.content}"]
    if question.options:
        lines.append(f"Options: {' | '.join(question.options)}")
    if question.reference_answer:
        lines.append(f"Answer: {question.reference_answer}")
    return "\n".join(lines)


def build_assignment_item_content(item: AssignmentItem, parent_content: Optional[str] = None) -> str:
    """Question, options, answer and explanation in one block for retrieval."""
    parts = []
    if parent_content:
        parts.append(f"Context: {parent_content}")
    parts.append(f"## Q{item.order_num}: {item.content}")

    if item.options:
        parts.append(
            "\nOptions:\n"
            + "\n".join(f"{option_label(i)}. {o}" for i, o in enumerate(item.options))
        )
    if item.reference_answer:
        parts.append(f"\nReference Answer: {item.reference_answer}")
    if item.explanation:
        parts.append(f"\nExplanation: {item.explanation}")

    return "\n".join(parts)
