"""Completion arithmetic and the step lifecycle rules.

Everything here is pure: the engine feeds in counts and statuses read from
the stores and writes back whatever these functions decide.
"""

from typing import Iterable, Tuple

from app.core.exceptions import InvalidStepTransitionError
from app.models.verification import PillarStatus, StepStatus


def round_half_up(numerator: int, denominator: int) -> int:
    """Round ``numerator / denominator`` to the nearest integer, halves up.

    Unlike the builtin ``round`` (halves to even), ``12.5`` becomes ``13``.
    """
    if denominator <= 0:
        raise ValueError("denominator must be positive")
    return (2 * numerator + denominator) // (2 * denominator)


def pillar_completion(verified_steps: int, total_steps: int) -> int:
    """Percentage of a pillar's steps that are verified (0 for an empty pillar)."""
    if total_steps <= 0:
        return 0
    return round_half_up(100 * verified_steps, total_steps)


def pillar_status(completion_percentage: int, attempted_steps: int) -> PillarStatus:
    if completion_percentage >= 100:
        return PillarStatus.VERIFIED
    if completion_percentage > 0 or attempted_steps > 0:
        return PillarStatus.IN_PROGRESS
    return PillarStatus.NOT_VERIFIED


def overall_percentage(pillars: Iterable[Tuple[int, int]]) -> int:
    """Weighted score over ``(completion_percentage, weight_percentage)`` pairs.

    Weights are integers summing to 100, so the weighted sum divided by 100
    is the user's overall percentage.
    """
    weighted = sum(completion * weight for completion, weight in pillars)
    return round_half_up(weighted, 100)


def is_fully_verified(statuses: Iterable[str]) -> bool:
    """True when there is at least one pillar and every pillar is verified.

    Decided from the statuses themselves, never from the rounded overall
    score.
    """
    statuses = list(statuses)
    return bool(statuses) and all(status == PillarStatus.VERIFIED.value for status in statuses)


# Status an update may move a step to, keyed by the step's current status.
# ``verified`` is terminal and ``not_verified`` is never re-entered.
# ``failed -> pending`` only happens through a retry, never through an update.
ALLOWED_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.NOT_VERIFIED: frozenset({StepStatus.PENDING, StepStatus.FAILED, StepStatus.VERIFIED}),
    StepStatus.PENDING: frozenset({StepStatus.PENDING, StepStatus.FAILED, StepStatus.VERIFIED}),
    StepStatus.FAILED: frozenset({StepStatus.FAILED, StepStatus.VERIFIED}),
    StepStatus.VERIFIED: frozenset(),
}


def validate_transition(step_id, current: str, requested: StepStatus) -> None:
    """Reject a status change the lifecycle does not allow.

    Raises:
        InvalidStepTransitionError: If ``current -> requested`` is not allowed
    """
    allowed = ALLOWED_TRANSITIONS.get(StepStatus(current), frozenset())
    if requested not in allowed:
        raise InvalidStepTransitionError(step_id, current, requested.value)
