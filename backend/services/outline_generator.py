"""Lecture outline generation from document structure and knowledge points."""
import logging
from typing import List

from pydantic import BaseModel, Field, ValidationError

from config import LOCAL_OUTLINE_THRESHOLD
from models.document import DocumentStructure
from models.knowledge import DocumentOutline, KnowledgePoint, OutlineSection
from services.llm_client import LLMClient

logger = logging.getLogger(__name__)

DEFINITION_PREVIEW_LENGTH = 150


class _OutlineSectionPayload(BaseModel):
    title: str = Field(min_length=1)
    knowledgePoints: List[str]
    briefDescription: str = Field(min_length=1)


class _OutlinePayload(BaseModel):
    title: str = Field(min_length=1)
    summary: str = Field(min_length=1)
    sections: List[_OutlineSectionPayload] = Field(min_length=1)


OUTLINE_PROMPT = """You are an academic document outline generator. Create a structured outline for this document.

Subject: {subject}
Document type: {document_type}

Document sections:
{structure_summary}

Knowledge points extracted ({point_count} total):
{points_summary}

Generate an outline with:
- title: A descriptive title for the document
- summary: A 1-2 sentence summary of the document content
- sections: Group knowledge points into logical sections, each with:
  - title: Section heading
  - knowledgePoints: Array of knowledge point titles belonging to this section
  - briefDescription: One sentence describing the section

Rules:
- Every knowledge point must appear in exactly one section
- Order sections logically (introduction, core concepts, advanced topics, exercises)

Return ONLY a JSON object. No markdown, no explanation."""


def build_local_outline(document_id: str, structure: DocumentStructure, points: List[KnowledgePoint]) -> DocumentOutline:
    """Group points under the non-overview sections whose page range they touch."""
    content_sections = [s for s in structure.sections if s.is_extractable]

    sections = []
    for s in content_sections:
        titles = [
            p.title for p in points
            if any(s.start_page <= page <= s.end_page for page in p.source_pages)
        ]
        description = f"Covers {', '.join(titles)}." if titles else f"{s.content_type.value} content."
        sections.append(OutlineSection(title=s.title, knowledge_points=titles, brief_description=description))

    return DocumentOutline(
        document_id=document_id,
        title=content_sections[0].title if content_sections else "Untitled Document",
        subject=structure.subject,
        total_knowledge_points=len(points),
        sections=sections,
        summary=f"Document covering {len(points)} knowledge points across {len(sections)} sections.",
    )


class OutlineGenerator:
    """Builds small outlines locally and asks the LLM for larger ones."""

    def __init__(self, llm_client: LLMClient, local_threshold: int = LOCAL_OUTLINE_THRESHOLD):
        self.llm_client = llm_client
        self.local_threshold = local_threshold

    def generate_document_outline(
        self,
        document_id: str,
        structure: DocumentStructure,
        points: List[KnowledgePoint]
    ) -> DocumentOutline:
        """
        Generate an outline for a lecture document.

        Never raises for LLM problems: an invalid or failed response falls
        back to the local builder.
        """
        if len(points) <= self.local_threshold:
            return build_local_outline(document_id, structure, points)

        prompt = OUTLINE_PROMPT.format(
            subject=structure.subject,
            document_type=structure.document_type,
            structure_summary="\n".join(
                f'- "{s.title}" (pages {s.start_page}-{s.end_page}, {s.content_type.value})'
                for s in structure.sections
            ),
            point_count=len(points),
            points_summary="\n".join(
                f'- "{p.title}": {p.definition[:DEFINITION_PREVIEW_LENGTH]}' for p in points
            )
        )

        try:
            payload = _OutlinePayload.model_validate(self.llm_client.generate_json(prompt))
        except ValidationError as e:
            logger.warning(f"Outline validation failed, using local builder: {e.error_count()} errors")
            return build_local_outline(document_id, structure, points)
        except Exception as e:
            logger.warning(f"Outline generation failed, using local builder: {str(e)}")
            return build_local_outline(document_id, structure, points)

        return DocumentOutline(
            document_id=document_id,
            title=payload.title,
            subject=structure.subject,
            total_knowledge_points=len(points),
            sections=[
                OutlineSection(
                    title=s.title,
                    knowledge_points=s.knowledgePoints,
                    brief_description=s.briefDescription
                )
                for s in payload.sections
            ],
            summary=payload.summary,
        )
