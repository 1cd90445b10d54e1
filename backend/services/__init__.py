"""Services for the document ingestion backend."""
from .document_loader import DocumentLoader, DocumentLoadError
from .embedding_model import EmbeddingModel
from .llm_client import LLMClient, LLMResponse, LLMError, LLMClientError
from .dedup_engine import DedupEngine, DedupResult
from .event_channel import EventChannel, RecordingSink
from .structure_analyzer import StructureAnalyzer
from .section_extractor import KnowledgePointExtractor, ExtractionProgress
from .question_parser import QuestionParser
from .assignment_parser import AssignmentParser, AssignmentParseResult
from .outline_generator import OutlineGenerator
from .repositories import (
    RepositoryError,
    LectureChunkRepository,
    ExamQuestionRepository,
    AssignmentItemRepository,
)

__all__ = [
    'DocumentLoader', 'DocumentLoadError', 'EmbeddingModel', 'LLMClient', 'LLMResponse', 'LLMError',
    'LLMClientError', 'DedupEngine', 'DedupResult', 'EventChannel', 'RecordingSink', 'StructureAnalyzer',
    'KnowledgePointExtractor', 'ExtractionProgress', 'QuestionParser', 'AssignmentParser',
    'AssignmentParseResult', 'OutlineGenerator', 'RepositoryError', 'LectureChunkRepository',
    'ExamQuestionRepository', 'AssignmentItemRepository'
]
