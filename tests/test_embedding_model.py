"""Unit tests for EmbeddingModel."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import math

import pytest
from unittest.mock import Mock, patch, MagicMock
import httpx
from services.embedding_model import EmbeddingModel, l2_normalize


def _response(status_code, body=None):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = body
    response.text = "" if body is None else str(body)
    return response


def _cold_model():
    return _response(503, {"estimated_time": 10})


@pytest.fixture
def http_post():
    """Patched ``httpx.Client(...).__enter__().post``."""
    with patch('httpx.Client') as mock_client_class:
        mock_client = MagicMock()
        mock_client_class.return_value = mock_client
        yield mock_client.__enter__.return_value.post


@pytest.fixture
def no_sleep():
    with patch('time.sleep') as mock_sleep:
        yield mock_sleep


class TestEmbeddingModelInput:
    """Argument validation happens before any request."""

    def test_defaults(self):
        model = EmbeddingModel(api_key="hf_test")

        assert model.model_name == "sentence-transformers/all-mpnet-base-v2"
        assert model.api_url.endswith("/models/sentence-transformers/all-mpnet-base-v2")
        assert model.max_retries == 5
        assert model.normalize is True

    def test_missing_api_key(self):
        with pytest.raises(ValueError, match="HUGGINGFACE_API_KEY"):
            EmbeddingModel(api_key=None)

    @pytest.mark.parametrize("text", ["", "   "])
    def test_blank_text(self, text):
        with pytest.raises(ValueError, match="Text cannot be empty"):
            EmbeddingModel(api_key="hf_test").embed_text(text)

    def test_empty_batch(self):
        with pytest.raises(ValueError, match="Texts list cannot be empty"):
            EmbeddingModel(api_key="hf_test").embed_batch([])

    def test_all_blank_batch(self):
        with pytest.raises(ValueError, match="All texts in batch are empty"):
            EmbeddingModel(api_key="hf_test").embed_batch(["", "   ", ""])

    def test_blank_entries_reported_by_position(self):
        """Blank entries would shift alignment, so they are rejected by position."""
        with pytest.raises(ValueError, match=r"positions \[1\]"):
            EmbeddingModel(api_key="hf_test").embed_batch(["text", " ", "more"])


class TestEmbedBatch:
    """Alignment, normalization and sub-batching."""

    def test_vectors_are_returned_in_input_order(self, http_post):
        http_post.return_value = _response(200, [[0.1, 0.2, 0.3], [0.4, 0.5, 0.6]])

        model = EmbeddingModel(api_key="hf_test", normalize=False)

        assert model.embed_batch(["Heap", "Trie"]) == [[0.1, 0.2, 0.3], [0.4, 0.5, 0.6]]
        payload = http_post.call_args[1]["json"]
        assert payload == {"inputs": ["Heap", "Trie"], "options": {"wait_for_model": True}}
        assert http_post.call_args[1]["headers"]["Authorization"] == "Bearer hf_test"

    def test_embed_text_unwraps_single_vector(self, http_post):
        http_post.return_value = _response(200, [[0.1, 0.2, 0.3]])

        assert EmbeddingModel(api_key="hf_test", normalize=False).embed_text("Heap") == [0.1, 0.2, 0.3]

    def test_vectors_are_unit_length(self, http_post):
        http_post.return_value = _response(200, [[3.0, 4.0], [0.0, 2.0]])

        result = EmbeddingModel(api_key="hf_test").embed_batch(["a", "b"])

        assert result[0] == pytest.approx([0.6, 0.8])
        assert result[1] == pytest.approx([0.0, 1.0])
        assert all(math.isclose(sum(v * v for v in vector), 1.0) for vector in result)

    def test_large_input_is_split_in_order(self, http_post):
        http_post.side_effect = [
            _response(200, [[1.0, 0.0], [0.0, 1.0]]),
            _response(200, [[1.0, 1.0]]),
        ]

        model = EmbeddingModel(api_key="hf_test", batch_size=2, normalize=False)
        result = model.embed_batch(["a", "b", "c"])

        assert [c[1]["json"]["inputs"] for c in http_post.call_args_list] == [["a", "b"], ["c"]]
        assert result == [[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]]

    def test_count_mismatch_is_an_error(self, http_post):
        http_post.return_value = _response(200, [[0.1, 0.2]])

        with pytest.raises(RuntimeError, match="Embedding count mismatch"):
            EmbeddingModel(api_key="hf_test").embed_batch(["a", "b"])

    def test_non_list_body_is_an_error(self, http_post):
        http_post.return_value = _response(200, {"error": "bad input"})

        with pytest.raises(RuntimeError, match="not a list of vectors"):
            EmbeddingModel(api_key="hf_test").embed_batch(["a"])


class TestRetries:
    """Cold starts and transport errors are retried; auth and quota are not."""

    def test_cold_model_then_success(self, http_post, no_sleep):
        http_post.side_effect = [_cold_model(), _response(200, [[0.1, 0.2, 0.3]])]

        model = EmbeddingModel(api_key="hf_test", initial_delay=1.0, normalize=False)

        assert model.embed_text("Heap") == [0.1, 0.2, 0.3]
        assert http_post.call_count == 2
        no_sleep.assert_called_once_with(1.0)

    def test_cold_model_exhausts_retries(self, http_post, no_sleep):
        http_post.return_value = _cold_model()

        model = EmbeddingModel(api_key="hf_test", max_retries=3, initial_delay=2.0)

        with pytest.raises(RuntimeError, match="Failed to generate embeddings after 3 attempts"):
            model.embed_text("Heap")

        assert http_post.call_count == 3
        assert [c[0][0] for c in no_sleep.call_args_list] == [2.0, 4.0]

    def test_backoff_is_capped(self):
        model = EmbeddingModel(api_key="hf_test", initial_delay=20.0)
        delays = model._backoff_delays()

        assert [next(delays) for _ in range(4)] == [20.0, 40.0, 60.0, 60.0]

    @pytest.mark.parametrize("error", [
        httpx.TimeoutException("Timeout"),
        httpx.RequestError("Connection reset"),
    ])
    def test_transport_errors_are_retried(self, http_post, no_sleep, error):
        http_post.side_effect = [error, _response(200, [[0.1, 0.2, 0.3]])]

        model = EmbeddingModel(api_key="hf_test", initial_delay=0.1, normalize=False)

        assert model.embed_text("Heap") == [0.1, 0.2, 0.3]
        assert no_sleep.called

    @pytest.mark.parametrize("status, message", [
        (429, "Rate limit exceeded"),
        (401, "Invalid API key"),
        (500, "API request failed with status 500"),
    ])
    def test_fatal_statuses_are_not_retried(self, http_post, no_sleep, status, message):
        http_post.return_value = _response(status)

        with pytest.raises(RuntimeError, match=message):
            EmbeddingModel(api_key="hf_test").embed_text("Heap")

        assert http_post.call_count == 1
        no_sleep.assert_not_called()


class TestWarmup:

    def test_warmup_success(self, http_post):
        http_post.return_value = _response(200, [[0.1, 0.2, 0.3]])

        assert EmbeddingModel(api_key="hf_test").warmup() is True
        assert http_post.called

    def test_warmup_failure_is_reported(self, http_post):
        http_post.side_effect = Exception("API error")

        assert EmbeddingModel(api_key="hf_test").warmup() is False


class TestL2Normalize:
    """Test suite for l2_normalize."""

    def test_zero_vector_is_left_unchanged(self):
        assert l2_normalize([[0.0, 0.0]]) == [[0.0, 0.0]]
