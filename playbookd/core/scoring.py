# playbookd/core/scoring.py
"""Wilson-confidence statistics and composite ranking."""

import math
from collections.abc import Sequence
from typing import TYPE_CHECKING

from .schema import Playbook

if TYPE_CHECKING:
    from .search import SearchResult

# z-score for a 95% confidence interval
Z95 = 1.96


def wilson_confidence(successes: int, failures: int) -> float:
    """Lower bound of the Wilson score interval at 95% confidence.

    Penalises small samples, so a playbook with 1/1 successes never outranks
    one with 95/100.
    """
    n = successes + failures
    if n == 0:
        return 0.0
    p = successes / n
    z = Z95

    denominator = 1 + z * z / n
    center = p + z * z / (2 * n)
    spread = z * math.sqrt(p * (1 - p) / n + z * z / (4 * n * n))

    # rounding can push the bound for zero successes a hair below 0
    return max(0.0, (center - spread) / denominator)


def update_stats(playbook: Playbook) -> None:
    """Recompute ``success_rate`` and ``confidence`` from the counters."""
    total = playbook.success_count + playbook.failure_count
    if total == 0:
        playbook.success_rate = 0.0
        playbook.confidence = 0.0
        return
    playbook.success_rate = playbook.success_count / total
    playbook.confidence = wilson_confidence(playbook.success_count, playbook.failure_count)


def normalize_score(score: float, low: float, high: float) -> float:
    """Min-max normalise ``score`` to [0, 1]; 1.0 when all scores are equal."""
    if high == low:
        return 1.0
    return (score - low) / (high - low)


def clamp_weight(weight: float) -> float:
    return min(max(weight, 0.0), 1.0)


def apply_composite_score(
    results: Sequence["SearchResult"], confidence_weight: float
) -> list["SearchResult"]:
    """Blend normalised relevance with playbook confidence and re-rank.

    With a weight of 0 the results come back untouched. Otherwise each score
    becomes ``(1 - w) * normalized + w * confidence`` and results are sorted
    descending. The sort is stable, so ties keep their relevance order.
    """
    w = clamp_weight(confidence_weight)
    if w == 0 or not results:
        return list(results)

    scores = [r.score for r in results]
    low, high = min(scores), max(scores)

    for r in results:
        norm = normalize_score(r.score, low, high)
        r.score = (1 - w) * norm + w * r.playbook.confidence

    return sorted(results, key=lambda r: r.score, reverse=True)
