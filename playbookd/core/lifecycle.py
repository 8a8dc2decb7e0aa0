# playbookd/core/lifecycle.py
"""Outcome-driven lifecycle: draft -> active -> deprecated.

Archival is not part of this automaton; it is reached only through pruning.
"""

from .schema import Playbook, Status

PROMOTION_MIN_SUCCESSES = 3
DEPRECATION_MIN_EXECUTIONS = 5
DEFAULT_DEPRECATION_THRESHOLD = 0.3


def should_promote(playbook: Playbook) -> bool:
    return playbook.status == Status.DRAFT and playbook.success_count >= PROMOTION_MIN_SUCCESSES


def should_deprecate(
    playbook: Playbook, threshold: float = DEFAULT_DEPRECATION_THRESHOLD
) -> bool:
    if playbook.status != Status.ACTIVE:
        return False
    if playbook.total_executions < DEPRECATION_MIN_EXECUTIONS:
        return False
    return playbook.success_rate < threshold


def evaluate_transition(
    playbook: Playbook, threshold: float = DEFAULT_DEPRECATION_THRESHOLD
) -> tuple[Status, Status] | None:
    """Apply at most one promotion and one deprecation step in place.

    Must run after the counters and stats have been updated. Returns the
    ``(from, to)`` pair when the status changed, otherwise ``None``.
    """
    before = playbook.status
    if should_promote(playbook):
        playbook.status = Status.ACTIVE
    if should_deprecate(playbook, threshold):
        playbook.status = Status.DEPRECATED
    if playbook.status == before:
        return None
    return before, playbook.status
