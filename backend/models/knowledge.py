"""Knowledge point and lecture outline data models."""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List


def normalize_pages(pages: Iterable[int]) -> List[int]:
    """Return page numbers as a sorted list without duplicates."""
    return sorted({int(p) for p in pages})


@dataclass
class KnowledgePoint:
    """A single concept extracted from lecture material."""
    title: str
    definition: str
    key_formulas: List[str] = field(default_factory=list)
    key_concepts: List[str] = field(default_factory=list)
    examples: List[str] = field(default_factory=list)
    source_pages: List[int] = field(default_factory=list)

    def __post_init__(self):
        self.source_pages = normalize_pages(self.source_pages)

    @property
    def title_key(self) -> str:
        """Case-insensitive key used for title-based merging."""
        return self.title.strip().lower()

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with the camelCase keys the client expects."""
        return {
            "title": self.title,
            "definition": self.definition,
            "keyFormulas": list(self.key_formulas),
            "keyConcepts": list(self.key_concepts),
            "examples": list(self.examples),
            "sourcePages": list(self.source_pages),
        }


@dataclass
class OutlineSection:
    """One section of a lecture outline."""
    title: str
    knowledge_points: List[str]
    brief_description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "knowledgePoints": list(self.knowledge_points),
            "briefDescription": self.brief_description,
        }


@dataclass
class DocumentOutline:
    """Navigable outline of a lecture document."""
    document_id: str
    title: str
    subject: str
    total_knowledge_points: int
    sections: List[OutlineSection]
    summary: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "documentId": self.document_id,
            "title": self.title,
            "subject": self.subject,
            "totalKnowledgePoints": self.total_knowledge_points,
            "sections": [s.to_dict() for s in self.sections],
            "summary": self.summary,
        }
