"""Data models for the document ingestion service."""
from .document import Document, Page, ContentType, SectionInfo, DocumentStructure
from .knowledge import KnowledgePoint, OutlineSection, DocumentOutline, normalize_pages
from .question import (
    ParsedQuestion,
    AssignmentItem,
    AssignmentSection,
    AssignmentOutline,
    AssignmentOutlineNode,
)
from .chunk import ExistingRecord, DedupCandidate

__all__ = [
    "Document",
    "Page",
    "ContentType",
    "SectionInfo",
    "DocumentStructure",
    "KnowledgePoint",
    "OutlineSection",
    "DocumentOutline",
    "normalize_pages",
    "ParsedQuestion",
    "AssignmentItem",
    "AssignmentSection",
    "AssignmentOutline",
    "AssignmentOutlineNode",
    "ExistingRecord",
    "DedupCandidate",
]
