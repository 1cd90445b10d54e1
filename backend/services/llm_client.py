"""Groq chat client used by the structure, section, question and assignment parsers."""
import json
import re
import time
from dataclasses import dataclass
from typing import Any, Optional, Dict
from groq import Groq
from groq import RateLimitError, AuthenticationError, APIError, APITimeoutError
import logging

from config import GROQ_API_KEY, PARSE_MODEL, LLM_MAX_TOKENS

logger = logging.getLogger(__name__)

# Groq reports exhausted daily budgets through the same 429 as burst limits
QUOTA_PATTERN = re.compile(r"quota|per day|\bTPD\b|\bRPD\b|RESOURCE_EXHAUSTED", re.IGNORECASE)
CODE_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

RATE_LIMIT_RETRY_AFTER_SECONDS = 60


@dataclass
class LLMResponse:
    """Text and usage of one completion."""
    text: str
    tokens_input: int
    tokens_output: int
    latency_ms: int
    model_used: str


@dataclass
class LLMError:
    """Structured error response from LLM operations."""
    code: str
    message: str
    details: Dict[str, Any]


class LLMClientError(Exception):
    """Raised for every failed completion; ``error`` carries the structured cause."""

    def __init__(self, error: LLMError):
        self.error = error
        super().__init__(error.message)

    @property
    def code(self) -> str:
        return self.error.code

    @property
    def status_code(self) -> Optional[int]:
        return self.error.details.get("status_code")


def parse_json_text(text: str) -> Any:
    """
    Parse model output as JSON, tolerating a surrounding markdown code fence.

    Raises:
        ValueError: If the text is empty or not valid JSON
    """
    cleaned = CODE_FENCE_PATTERN.sub("", (text or "").strip())
    if not cleaned:
        raise ValueError("LLM returned an empty response")
    return json.loads(cleaned)


def describe_failure(exc: Exception, model: str, latency_ms: int) -> LLMError:
    """Translate a Groq SDK exception into an ``LLMError``."""
    details: Dict[str, Any] = {
        "model": model,
        "latency_ms": latency_ms,
        "original_error": str(exc),
    }

    if isinstance(exc, RateLimitError):
        details["status_code"] = 429
        if QUOTA_PATTERN.search(str(exc)):
            return LLMError(
                "QUOTA_EXCEEDED", "AI service quota exceeded. Please contact your administrator.", details
            )
        details["retry_after"] = RATE_LIMIT_RETRY_AFTER_SECONDS
        return LLMError("RATE_LIMIT_ERROR", "Rate limit exceeded. Please try again in a few moments.", details)

    if isinstance(exc, AuthenticationError):
        details["status_code"] = getattr(exc, "status_code", 401)
        return LLMError("AUTHENTICATION_ERROR", "Authentication failed. Please check your API key.", details)

    if isinstance(exc, APITimeoutError):
        return LLMError("TIMEOUT_ERROR", "Request timed out. Please try again.", details)

    if isinstance(exc, APIError):
        details["status_code"] = getattr(exc, "status_code", None)
        return LLMError("API_ERROR", f"Groq API error: {exc}", details)

    details["error_type"] = type(exc).__name__
    return LLMError("UNKNOWN_ERROR", f"Unexpected error during generation: {exc}", details)


class LLMClient:
    """Single-prompt completions against Groq, optionally in JSON mode."""

    def __init__(self, api_key: Optional[str] = None, default_model: str = PARSE_MODEL):
        """
        Args:
            api_key: Groq API key (defaults to GROQ_API_KEY from environment)
            default_model: Model used when a call does not name one
        """
        self.api_key = api_key or GROQ_API_KEY
        if not self.api_key:
            raise ValueError("GROQ_API_KEY must be provided or set in environment")

        self.default_model = default_model
        self.client = Groq(api_key=self.api_key)
        logger.info(f"LLMClient initialized with default model: {default_model}")

    def generate(
        self,
        prompt: str,
        model: Optional[str] = None,
        max_tokens: int = LLM_MAX_TOKENS,
        temperature: float = 0.0,
        json_mode: bool = False
    ) -> LLMResponse:
        """
        Run one completion for ``prompt``.

        Args:
            prompt: Complete prompt, sent as a single user message
            model: Model name (defaults to the client's default model)
            max_tokens: Completion token limit
            temperature: Sampling temperature
            json_mode: Ask the API for a JSON object response

        Raises:
            LLMClientError: Structured error with code, message, and details
        """
        model = model or self.default_model
        request: Dict[str, Any] = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if json_mode:
            request["response_format"] = {"type": "json_object"}

        started = time.time()
        try:
            response = self.client.chat.completions.create(**request)
        except Exception as e:
            error = describe_failure(e, model, int((time.time() - started) * 1000))
            logger.error(
                f"Completion failed: model={model}, code={error.code}, error={e}",
                exc_info=True,
                extra={"error_code": error.code}
            )
            raise LLMClientError(error) from e

        result = LLMResponse(
            text=response.choices[0].message.content or "",
            tokens_input=response.usage.prompt_tokens,
            tokens_output=response.usage.completion_tokens,
            latency_ms=int((time.time() - started) * 1000),
            model_used=model
        )
        logger.info(
            f"Completion: model={model}, json_mode={json_mode}, "
            f"tokens={result.tokens_input}/{result.tokens_output}, latency={result.latency_ms}ms"
        )
        return result

    def generate_json(
        self,
        prompt: str,
        model: Optional[str] = None,
        max_tokens: int = LLM_MAX_TOKENS,
        temperature: float = 0.0
    ) -> Any:
        """
        Generate a JSON response and parse it.

        Raises:
            LLMClientError: On API failure, or with code INVALID_JSON when the
                model output cannot be decoded
        """
        response = self.generate(
            prompt=prompt,
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            json_mode=True
        )
        try:
            return parse_json_text(response.text)
        except ValueError as e:
            error = LLMError(
                code="INVALID_JSON",
                message=f"LLM returned invalid JSON ({len(response.text)} chars)",
                details={"model": response.model_used, "original_error": str(e)}
            )
            logger.warning(error.message, extra={"error_code": error.code})
            raise LLMClientError(error) from e
