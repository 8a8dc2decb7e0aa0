from dataclasses import dataclass
from enum import Enum

from .schema import Playbook, Status

DEFAULT_SEARCH_LIMIT = 5


class SearchMode(str, Enum):
    HYBRID = "hybrid"
    LEXICAL = "bm25"
    VECTOR = "vector"


@dataclass
class SearchQuery:
    """A playbook search.

    ``min_score`` of 0 disables the raw-score floor. ``confidence_weight`` in
    [0, 1] blends Wilson confidence into the ranking (0 keeps raw relevance).
    """

    text: str = ""
    mode: SearchMode = SearchMode.HYBRID
    category: str = ""
    status: Status | None = None
    min_score: float = 0.0
    limit: int = DEFAULT_SEARCH_LIMIT
    embedding: list[float] | None = None
    confidence_weight: float = 0.0


@dataclass
class SearchResult:
    playbook: Playbook
    score: float
