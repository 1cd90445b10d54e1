"""Unit tests for pipeline error classification."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

from services.error_mapping import classify_pipeline_error
from services.llm_client import LLMClientError, LLMError


def _client_error(code, status_code=None, message="failed"):
    details = {"status_code": status_code} if status_code else {}
    return LLMClientError(LLMError(code=code, message=message, details=details))


class HttpError(Exception):
    def __init__(self, message, status_code):
        super().__init__(message)
        self.status_code = status_code


class TestClassifyPipelineError:
    """Test suite for classify_pipeline_error."""

    def test_client_codes(self):
        assert classify_pipeline_error(_client_error("QUOTA_EXCEEDED", 429)).code == "LLM_QUOTA_EXCEEDED"
        assert classify_pipeline_error(_client_error("RATE_LIMIT_ERROR", 429)).code == "LLM_RATE_LIMITED"
        assert classify_pipeline_error(_client_error("AUTHENTICATION_ERROR", 401)).code == "LLM_INVALID_KEY"
        assert classify_pipeline_error(_client_error("TIMEOUT_ERROR")).code == "LLM_UNAVAILABLE"

    def test_transient_flag(self):
        assert classify_pipeline_error(_client_error("RATE_LIMIT_ERROR", 429)).transient is True
        assert classify_pipeline_error(_client_error("AUTHENTICATION_ERROR", 401)).transient is False

    def test_status_codes(self):
        assert classify_pipeline_error(HttpError("daily quota reached", 429)).code == "LLM_QUOTA_EXCEEDED"
        assert classify_pipeline_error(HttpError("slow down", 429)).code == "LLM_RATE_LIMITED"
        assert classify_pipeline_error(HttpError("forbidden", 403)).code == "LLM_INVALID_KEY"
        assert classify_pipeline_error(HttpError("bad gateway", 502)).code == "LLM_UNAVAILABLE"

    def test_api_error_with_server_status(self):
        """Test generic API errors fall through to status based rules."""
        error = _client_error("API_ERROR", 503, "Groq API error: Service unavailable")
        assert classify_pipeline_error(error).code == "LLM_UNAVAILABLE"

    def test_message_patterns(self):
        assert classify_pipeline_error(Exception("Response blocked by safety settings")).code == "LLM_CONTENT_BLOCKED"
        assert classify_pipeline_error(Exception("RESOURCE_EXHAUSTED")).code == "LLM_QUOTA_EXCEEDED"
        assert classify_pipeline_error(RuntimeError("Rate limit exceeded. Please wait")).code == "LLM_RATE_LIMITED"

    def test_stage_fallbacks(self):
        info = classify_pipeline_error(ValueError("unexpected token"), "extraction")
        assert info.code == "EXTRACTION_ERROR"
        assert info.message == "Failed to extract content from PDF"

        assert classify_pipeline_error(RuntimeError("boom"), "embedding").code == "EMBEDDING_ERROR"
        assert classify_pipeline_error(RuntimeError("boom"), "other").code == "EXTRACTION_ERROR"

    def test_invalid_json_falls_back_to_stage(self):
        error = _client_error("INVALID_JSON", message="LLM returned invalid JSON (12 chars)")
        assert classify_pipeline_error(error).code == "EXTRACTION_ERROR"
