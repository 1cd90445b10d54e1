"""
Map extraction and embedding failures to client-facing error codes.

Transient AI-service failures (quota, rate limit, unavailability) get their
own codes so the client can say "try again later" instead of "this document
failed to parse".
"""
import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional

from services.llm_client import LLMClientError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineErrorInfo:
    """Client-facing classification of a pipeline failure."""
    code: str
    message: str
    transient: bool = False


QUOTA_EXCEEDED = PipelineErrorInfo(
    "LLM_QUOTA_EXCEEDED", "AI service quota exceeded. Please contact your administrator.", True
)
RATE_LIMITED = PipelineErrorInfo(
    "LLM_RATE_LIMITED", "AI service rate limited. Please retry shortly.", True
)
UNAVAILABLE = PipelineErrorInfo(
    "LLM_UNAVAILABLE", "AI service temporarily unavailable.", True
)
INVALID_KEY = PipelineErrorInfo("LLM_INVALID_KEY", "AI service configuration error.")
CONTENT_BLOCKED = PipelineErrorInfo("LLM_CONTENT_BLOCKED", "Content blocked by safety filters.")

STAGE_FALLBACKS = {
    "extraction": PipelineErrorInfo("EXTRACTION_ERROR", "Failed to extract content from PDF"),
    "embedding": PipelineErrorInfo("EMBEDDING_ERROR", "Failed to generate embeddings"),
}

# Codes raised by LLMClient itself
CLIENT_CODE_MAP = {
    "QUOTA_EXCEEDED": QUOTA_EXCEEDED,
    "RATE_LIMIT_ERROR": RATE_LIMITED,
    "AUTHENTICATION_ERROR": INVALID_KEY,
    "TIMEOUT_ERROR": UNAVAILABLE,
}

QUOTA_PATTERN = re.compile(r"quota|RESOURCE_EXHAUSTED|per day", re.IGNORECASE)
RATE_LIMIT_PATTERN = re.compile(r"\b429\b|rate.?limit", re.IGNORECASE)
BLOCKED_PATTERN = re.compile(r"safety|blocked|HARM_CATEGORY", re.IGNORECASE)


@dataclass(frozen=True)
class MappingRule:
    classifier: Callable[[Exception, Optional[int], str], bool]
    info: PipelineErrorInfo


def _status_code_of(exc: Exception) -> Optional[int]:
    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(exc, "status", None)
    return status if isinstance(status, int) else None


RULES: List[MappingRule] = [
    MappingRule(lambda e, s, m: s == 429 and bool(QUOTA_PATTERN.search(m)), QUOTA_EXCEEDED),
    MappingRule(lambda e, s, m: s == 429, RATE_LIMITED),
    MappingRule(lambda e, s, m: s in (401, 403), INVALID_KEY),
    MappingRule(lambda e, s, m: s in (500, 502, 503, 504), UNAVAILABLE),
    MappingRule(lambda e, s, m: bool(BLOCKED_PATTERN.search(m)), CONTENT_BLOCKED),
    MappingRule(lambda e, s, m: bool(QUOTA_PATTERN.search(m)), QUOTA_EXCEEDED),
    MappingRule(lambda e, s, m: bool(RATE_LIMIT_PATTERN.search(m)), RATE_LIMITED),
]


def classify_pipeline_error(exc: Exception, stage: str = "extraction") -> PipelineErrorInfo:
    """
    Classify an exception raised while extracting or embedding.

    Args:
        exc: The exception that aborted the stage
        stage: "extraction" or "embedding"; selects the generic fallback code

    Returns:
        PipelineErrorInfo with code, client message and transient flag
    """
    if isinstance(exc, LLMClientError) and exc.code in CLIENT_CODE_MAP:
        return CLIENT_CODE_MAP[exc.code]

    status = _status_code_of(exc)
    message = str(exc)
    for rule in RULES:
        if rule.classifier(exc, status, message):
            return rule.info

    return STAGE_FALLBACKS.get(stage, STAGE_FALLBACKS["extraction"])
