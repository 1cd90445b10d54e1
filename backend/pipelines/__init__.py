"""Ingestion pipelines, one per document type."""
from .base import (
    AdvisoryResult,
    IngestionPipeline,
    PipelineCancelled,
    PipelineContext,
    PipelineFailure,
    run_advisory,
)
from .lecture_pipeline import LecturePipeline
from .exam_pipeline import ExamPipeline
from .assignment_pipeline import AssignmentPipeline

__all__ = [
    "AdvisoryResult",
    "IngestionPipeline",
    "PipelineCancelled",
    "PipelineContext",
    "PipelineFailure",
    "run_advisory",
    "LecturePipeline",
    "ExamPipeline",
    "AssignmentPipeline",
]
