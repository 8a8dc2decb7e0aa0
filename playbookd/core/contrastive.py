# playbookd/core/contrastive.py
"""Split ranked results into proven, failed and neutral playbooks."""

from collections.abc import Sequence
from dataclasses import dataclass, field

from .search import SearchQuery, SearchResult

DEFAULT_POSITIVE_MIN_CONFIDENCE = 0.5
DEFAULT_NEGATIVE_MAX_CONFIDENCE = 0.3

# the underlying search over-fetches so low-confidence candidates survive ranking
CANDIDATE_MULTIPLIER = 3


@dataclass
class ContrastiveQuery(SearchQuery):
    positive_min_confidence: float = DEFAULT_POSITIVE_MIN_CONFIDENCE
    negative_max_confidence: float = DEFAULT_NEGATIVE_MAX_CONFIDENCE
    include_neutral: bool = False


@dataclass
class ContrastiveResults:
    query: str
    positive: list[SearchResult] = field(default_factory=list)
    negative: list[SearchResult] = field(default_factory=list)
    # only populated when include_neutral was requested
    neutral: list[SearchResult] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (self.positive or self.negative or self.neutral)


def split_by_confidence(
    results: Sequence[SearchResult], query: ContrastiveQuery, limit: int
) -> ContrastiveResults:
    """Classify each result by its playbook's Wilson confidence.

    The blended search score plays no part here. Each group keeps the input
    order and is truncated to ``limit``.
    """
    split = ContrastiveResults(query=query.text)
    for result in results:
        confidence = result.playbook.confidence
        if confidence >= query.positive_min_confidence:
            split.positive.append(result)
        elif confidence <= query.negative_max_confidence:
            split.negative.append(result)
        elif query.include_neutral:
            split.neutral.append(result)

    split.positive = split.positive[:limit]
    split.negative = split.negative[:limit]
    split.neutral = split.neutral[:limit]
    return split
