"""
Two-pass deduplication of newly parsed content against the stored corpus.

Pass 1 drops candidates whose normalized key exactly matches an existing
record. Pass 2 embeds the remaining candidates in a single batch and drops
those whose best dot-product similarity against any stored embedding reaches
the threshold. Embeddings are L2-normalized, so dot product is cosine
similarity.

Every ingestion pipeline goes through this one engine so the threshold and
normalization rules cannot drift between document types.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional

import numpy as np

from config import DEDUP_SIMILARITY_THRESHOLD
from models.chunk import DedupCandidate, ExistingRecord
from services.embedding_model import EmbeddingModel

logger = logging.getLogger(__name__)


def normalize_text(text: Optional[str]) -> str:
    """Key normalization for exact matching: trimmed and lowercased."""
    return (text or "").strip().lower()


def parse_embedding(raw: Any) -> Optional[List[float]]:
    """
    Parse a stored embedding into a list of floats.

    Accepts lists, tuples, numpy arrays and JSON strings (pgvector's text
    form). Returns None for anything missing, empty or malformed.
    """
    if raw is None:
        return None
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return None
    if isinstance(raw, np.ndarray):
        raw = raw.tolist()
    if not isinstance(raw, (list, tuple)) or not raw:
        return None
    try:
        vector = [float(v) for v in raw]
    except (TypeError, ValueError):
        return None
    if not all(np.isfinite(vector)):
        return None
    return vector


@dataclass
class DedupResult:
    """Outcome of a dedup run, with per-pass skip counts."""
    survivors: List[DedupCandidate] = field(default_factory=list)
    exact_skipped: int = 0
    semantic_skipped: int = 0
    existing_embedding_count: int = 0
    embedding_called: bool = False

    @property
    def total_skipped(self) -> int:
        return self.exact_skipped + self.semantic_skipped

    @property
    def is_empty(self) -> bool:
        """No new content: the caller completes without persisting anything."""
        return not self.survivors


class DedupEngine:
    """Filters candidates down to content not already in the corpus."""

    def __init__(
        self,
        embedding_model: EmbeddingModel,
        similarity_threshold: float = DEDUP_SIMILARITY_THRESHOLD
    ):
        """
        Args:
            embedding_model: Client used for the pass 2 batch embedding
            similarity_threshold: Similarity at or above which a candidate
                is a duplicate
        """
        self.embedding_model = embedding_model
        self.similarity_threshold = similarity_threshold

    def filter_new(
        self,
        candidates: List[DedupCandidate],
        existing: Iterable[ExistingRecord],
        existing_key: Optional[Callable[[ExistingRecord], str]] = None
    ) -> DedupResult:
        """
        Return the candidates that are genuinely new.

        Args:
            candidates: Parsed content, each carrying its original index
            existing: Records already persisted under the same parent
            existing_key: Selects the text of an existing record compared
                against ``candidate.key`` in pass 1 (defaults to content)

        Returns:
            DedupResult whose survivors keep their original order and have
            ``embedding`` set

        Raises:
            RuntimeError: If the embedding client returns a misaligned batch
        """
        existing = list(existing)
        key_of = existing_key or (lambda record: record.content)
        result = DedupResult()

        # Pass 1: exact match on normalized keys, before any embedding cost
        existing_keys = {normalize_text(key_of(record)) for record in existing}
        existing_keys.discard("")
        remaining = [c for c in candidates if normalize_text(c.key) not in existing_keys]
        result.exact_skipped = len(candidates) - len(remaining)

        if result.exact_skipped:
            logger.info(f"Pass 1 dropped {result.exact_skipped} exact duplicates")

        if not remaining:
            return result

        # Pass 2: one batch embedding call, index-aligned with ``remaining``
        vectors = self.embedding_model.embed_batch([c.content for c in remaining])
        result.embedding_called = True
        if len(vectors) != len(remaining):
            raise RuntimeError(
                f"Embedding count mismatch: expected {len(remaining)}, got {len(vectors)}"
            )
        for candidate, vector in zip(remaining, vectors):
            candidate.embedding = [float(v) for v in vector]

        dimension = len(remaining[0].embedding)
        existing_vectors = []
        for record in existing:
            vector = parse_embedding(record.embedding)
            if vector is None:
                continue
            if len(vector) != dimension:
                logger.warning(
                    f"Ignoring stored embedding of record {record.id}: "
                    f"dimension {len(vector)} != {dimension}"
                )
                continue
            existing_vectors.append(vector)
        result.existing_embedding_count = len(existing_vectors)

        if not existing_vectors:
            result.survivors = remaining
            return result

        candidate_matrix = np.asarray([c.embedding for c in remaining], dtype=np.float64)
        existing_matrix = np.asarray(existing_vectors, dtype=np.float64)
        max_similarity = (candidate_matrix @ existing_matrix.T).max(axis=1)

        result.survivors = [
            candidate
            for candidate, similarity in zip(remaining, max_similarity)
            if similarity < self.similarity_threshold
        ]
        result.semantic_skipped = len(remaining) - len(result.survivors)

        if result.semantic_skipped:
            logger.info(
                f"Pass 2 dropped {result.semantic_skipped} near duplicates "
                f"(similarity >= {self.similarity_threshold})"
            )
        return result
