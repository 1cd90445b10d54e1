"""Document data models."""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


@dataclass
class Page:
    """Represents a single page of extracted PDF text."""
    page_number: int  # 1-indexed
    text: str
    word_count: int = 0

    def __post_init__(self):
        if not self.word_count and self.text:
            self.word_count = len(self.text.split())


@dataclass
class Document:
    """Represents a loaded PDF document."""
    filename: str
    pages: List[Page]
    total_pages: int


class ContentType(str, Enum):
    """Kind of material a document section holds."""
    DEFINITIONS = "definitions"
    THEOREMS = "theorems"
    EXAMPLES = "examples"
    EXERCISES = "exercises"
    OVERVIEW = "overview"
    MIXED = "mixed"


@dataclass
class SectionInfo:
    """A logical section of a document, as an inclusive 1-based page range."""
    title: str
    start_page: int
    end_page: int
    content_type: ContentType = ContentType.MIXED
    parent_section: Optional[str] = None

    @property
    def is_extractable(self) -> bool:
        return self.content_type != ContentType.OVERVIEW


@dataclass(frozen=True)
class DocumentStructure:
    """Section layout of a document, produced once by the structure analyzer."""
    subject: str
    document_type: str
    sections: List[SectionInfo] = field(default_factory=list)
