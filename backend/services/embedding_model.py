"""Sentence embeddings for deduplication, served by the Hugging Face Inference API."""
import time
import logging
from typing import Iterator, List, Optional
import httpx
import numpy as np
from config import HUGGINGFACE_API_KEY, EMBEDDING_MODEL, EMBEDDING_BATCH_SIZE

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 60.0
SLOW_REQUEST_SECONDS = 10.0

# Status codes that end a request immediately, with the message raised to callers
FATAL_STATUS_MESSAGES = {
    429: "Rate limit exceeded. Please try again later.",
    401: "Invalid API key",
}


class _RetryableEmbeddingError(Exception):
    """A failure worth another attempt: cold model, timeout or network error."""


def l2_normalize(vectors: List[List[float]]) -> List[List[float]]:
    """Scale each vector to unit length so that dot product equals cosine similarity."""
    matrix = np.asarray(vectors, dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return (matrix / norms).tolist()


class EmbeddingModel:
    """
    Index-aligned batch embeddings over the HF feature-extraction endpoint.

    The dedup engine calls ``embed_batch`` once per pass, so a whole batch of
    candidates either comes back aligned with its inputs or fails as a unit.
    """

    def __init__(
        self,
        api_key: str = HUGGINGFACE_API_KEY,
        model_name: str = EMBEDDING_MODEL,
        max_retries: int = 5,
        initial_delay: float = 5.0,
        timeout: float = 120.0,
        batch_size: int = EMBEDDING_BATCH_SIZE,
        normalize: bool = True
    ):
        """
        Args:
            api_key: Hugging Face API key
            model_name: Feature-extraction model on the Inference API
            max_retries: Attempts per sub-request before giving up
            initial_delay: First backoff delay in seconds, doubled per retry
            timeout: Request timeout in seconds
            batch_size: Maximum texts sent per HTTP request
            normalize: L2-normalize returned vectors
        """
        if not api_key:
            raise ValueError("HUGGINGFACE_API_KEY environment variable is required")

        self.api_key = api_key
        self.model_name = model_name
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.timeout = timeout
        self.batch_size = max(1, batch_size)
        self.normalize = normalize
        self.api_url = f"https://api-inference.huggingface.co/models/{model_name}"

        logger.info(f"Embedding client ready: {model_name} (batch size {self.batch_size})")

    def embed_text(self, text: str) -> List[float]:
        """Embed one string; see ``embed_batch``."""
        if not text or not text.strip():
            raise ValueError("Text cannot be empty")

        return self.embed_batch([text])[0]

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for multiple texts.

        The result is index-aligned with ``texts``: ``result[i]`` is the
        embedding of ``texts[i]``. Large inputs are sent in sequential
        sub-requests of ``batch_size`` texts.

        Raises:
            ValueError: If texts is empty or any entry is blank
            RuntimeError: If a sub-request fails or returns the wrong count
        """
        if not texts:
            raise ValueError("Texts list cannot be empty")

        blank = [i for i, t in enumerate(texts) if not t or not t.strip()]
        if len(blank) == len(texts):
            raise ValueError("All texts in batch are empty")
        if blank:
            raise ValueError(f"Texts at positions {blank} are empty")

        embeddings: List[List[float]] = []
        for start in range(0, len(texts), self.batch_size):
            chunk = texts[start:start + self.batch_size]
            vectors = self._embed_with_retry(chunk)
            if len(vectors) != len(chunk):
                raise RuntimeError(
                    f"Embedding count mismatch: expected {len(chunk)}, got {len(vectors)}"
                )
            embeddings.extend(vectors)

        return l2_normalize(embeddings) if self.normalize else embeddings

    def _backoff_delays(self) -> Iterator[float]:
        delay = self.initial_delay
        while True:
            yield delay
            delay = min(delay * 2, MAX_BACKOFF_SECONDS)

    def _embed_with_retry(self, texts: List[str]) -> List[List[float]]:
        """
        POST one sub-batch, sleeping between retryable failures.

        Free-tier models are unloaded when idle and answer 503 while they
        warm up, which can take 15-20s.
        """
        delays = self._backoff_delays()
        last_error: Optional[str] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                return self._request(texts, attempt)
            except _RetryableEmbeddingError as e:
                last_error = str(e)

            if attempt < self.max_retries:
                delay = next(delays)
                logger.warning(
                    f"Embedding attempt {attempt}/{self.max_retries} failed ({last_error}); "
                    f"retrying in {delay}s"
                )
                time.sleep(delay)

        message = (
            f"Failed to generate embeddings after {self.max_retries} attempts. "
            f"Last error: {last_error}"
        )
        logger.error(message)
        raise RuntimeError(message)

    def _request(self, texts: List[str], attempt: int) -> List[List[float]]:
        payload = {"inputs": texts, "options": {"wait_for_model": True}}
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

        started = time.time()
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.api_url, headers=headers, json=payload)
        except httpx.TimeoutException:
            raise _RetryableEmbeddingError(f"Request timeout after {self.timeout}s")
        except httpx.RequestError as e:
            raise _RetryableEmbeddingError(f"Network error: {e}")
        elapsed = time.time() - started

        status = response.status_code
        if status == 503:
            estimate = (response.json() if response.text else {}).get("estimated_time")
            raise _RetryableEmbeddingError(f"model loading (estimated {estimate}s)")
        if status in FATAL_STATUS_MESSAGES:
            logger.error(f"Hugging Face API returned {status} for {self.model_name}")
            raise RuntimeError(FATAL_STATUS_MESSAGES[status])
        if status != 200:
            message = f"API request failed with status {status}: {response.text}"
            logger.error(message)
            raise RuntimeError(message)

        vectors = response.json()
        if not isinstance(vectors, list):
            raise RuntimeError("Embedding response is not a list of vectors")

        level = logging.INFO if elapsed > SLOW_REQUEST_SECONDS else logging.DEBUG
        logger.log(level, f"Embedded {len(texts)} texts in {elapsed:.2f}s (attempt {attempt})")
        return vectors

    def warmup(self) -> bool:
        """Send one throwaway request so the first upload does not pay the cold start."""
        started = time.time()
        try:
            self.embed_text("warmup query")
        except Exception as e:
            logger.error(f"Embedding warmup failed: {e}")
            return False
        logger.info(f"Embedding warmup completed in {time.time() - started:.1f}s")
        return True
