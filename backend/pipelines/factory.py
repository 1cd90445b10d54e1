"""Construction of the ingestion service graph."""
import logging
from typing import Dict, Optional

from pipelines.assignment_pipeline import AssignmentPipeline
from pipelines.base import IngestionPipeline
from pipelines.exam_pipeline import ExamPipeline
from pipelines.lecture_pipeline import LecturePipeline
from services.assignment_parser import AssignmentParser
from services.dedup_engine import DedupEngine
from services.embedding_model import EmbeddingModel
from services.llm_client import LLMClient
from services.outline_generator import OutlineGenerator
from services.question_parser import QuestionParser
from services.repositories import AssignmentItemRepository, ExamQuestionRepository, LectureChunkRepository
from services.section_extractor import KnowledgePointExtractor
from services.structure_analyzer import StructureAnalyzer

logger = logging.getLogger(__name__)

DOC_TYPES = ("lecture", "exam", "assignment")


def build_pipelines(
    llm_client: Optional[LLMClient] = None,
    embedding_model: Optional[EmbeddingModel] = None
) -> Dict[str, IngestionPipeline]:
    """
    Build one pipeline per document type, sharing the LLM client, embedding
    client and dedup engine.

    Raises:
        ValueError: If API keys or Supabase credentials are missing
    """
    llm_client = llm_client or LLMClient()
    embedding_model = embedding_model or EmbeddingModel()
    dedup_engine = DedupEngine(embedding_model)

    pipelines: Dict[str, IngestionPipeline] = {
        "lecture": LecturePipeline(
            structure_analyzer=StructureAnalyzer(llm_client),
            extractor=KnowledgePointExtractor(llm_client),
            outline_generator=OutlineGenerator(llm_client),
            dedup_engine=dedup_engine,
            repository=LectureChunkRepository(),
        ),
        "exam": ExamPipeline(
            question_parser=QuestionParser(llm_client),
            dedup_engine=dedup_engine,
            repository=ExamQuestionRepository(),
        ),
        "assignment": AssignmentPipeline(
            assignment_parser=AssignmentParser(llm_client),
            dedup_engine=dedup_engine,
            repository=AssignmentItemRepository(),
        ),
    }
    logger.info(f"Initialized pipelines: {', '.join(pipelines)}")
    return pipelines
