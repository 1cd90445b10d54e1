"""Chunk data models used by deduplication and persistence."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class ExistingRecord:
    """
    A previously persisted chunk or item.

    ``embedding`` is whatever the store returned: a list of floats, a JSON
    string (pgvector text form), or nothing usable.
    """
    id: str
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    embedding: Any = None
    order_num: Optional[int] = None


@dataclass
class DedupCandidate:
    """Newly parsed content waiting to be checked against the existing corpus."""
    index: int  # Position in the parsed batch
    key: str  # Text compared in the exact-match pass
    content: str  # Text embedded for the similarity pass
    metadata: Dict[str, Any] = field(default_factory=dict)
    embedding: Optional[List[float]] = None
