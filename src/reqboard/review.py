"""Multi-level review workflow.

Levels are decided in ascending order. The overall status of a record is
always derived from its levels on read and never stored.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from .errors import InvalidReviewTransition, ReviewLevelNotFound, ReviewOrderViolation
from .models import ReviewLevel, ReviewStatus, User
from .utils import format_timestamp

logger = logging.getLogger(__name__)

OVERALL_PENDING = "pending"
OVERALL_APPROVED = "approved"

REVIEW_STATUS_TRANSITIONS: dict[ReviewStatus, frozenset[ReviewStatus]] = {
    ReviewStatus.PENDING: frozenset({ReviewStatus.APPROVED, ReviewStatus.REJECTED}),
    ReviewStatus.APPROVED: frozenset({ReviewStatus.REJECTED}),
    ReviewStatus.REJECTED: frozenset({ReviewStatus.APPROVED, ReviewStatus.PENDING}),
}

_REVIEW_STATUS_LABELS = {
    ReviewStatus.PENDING: "待评审",
    ReviewStatus.APPROVED: "通过",
    ReviewStatus.REJECTED: "不通过",
}

_OVERALL_STATUS_LABELS = {
    "pending": "待一级评审",
    "level1_approved": "待二级评审",
    "level1_rejected": "一级评审不通过",
    "level2_rejected": "二级评审不通过",
    "approved": "二级评审通过",
}

DEFAULT_LEVEL_NAMES: tuple[str, ...] = ("一级评审", "二级评审")


@dataclass(frozen=True)
class ReviewPolicy:
    """Optional write-time checks for level decisions.

    ``sequential`` refuses a decision on level k until level k-1 is
    approved. ``validate_transitions`` refuses status changes outside
    ``REVIEW_STATUS_TRANSITIONS``.
    """

    sequential: bool = False
    validate_transitions: bool = False


def derive_overall_status(levels: Sequence[ReviewLevel]) -> str:
    """Aggregate status of an ordered review workflow.

    The first level (by ascending ``level``) that is not approved decides:
    rejected gives ``level{k}_rejected``, pending gives
    ``level{k-1}_approved`` (or ``pending`` when k is the first level).
    All approved gives ``approved``; no levels gives ``pending``.
    """
    previous: int | None = None
    for item in sorted(levels, key=lambda entry: entry.level):
        if item.status == ReviewStatus.REJECTED:
            return f"level{item.level}_rejected"
        if item.status == ReviewStatus.PENDING:
            return OVERALL_PENDING if previous is None else f"level{previous}_approved"
        previous = item.level
    return OVERALL_APPROVED if previous is not None else OVERALL_PENDING


def default_review_levels(names: Sequence[str] = DEFAULT_LEVEL_NAMES, *, id_prefix: str = "") -> list[ReviewLevel]:
    """Pending levels numbered contiguously from 1."""
    return [
        ReviewLevel(id=f"{id_prefix}{index}", level=index, level_name=name)
        for index, name in enumerate(names, start=1)
    ]


def is_valid_status_transition(current: ReviewStatus, requested: ReviewStatus) -> bool:
    return requested in REVIEW_STATUS_TRANSITIONS.get(current, frozenset())


def find_level(levels: Sequence[ReviewLevel], level: int) -> ReviewLevel | None:
    return next((item for item in levels if item.level == level), None)


def apply_level_decision(
    levels: Sequence[ReviewLevel],
    level: int,
    status: ReviewStatus,
    *,
    reviewer: User | None = None,
    opinion: str | None = None,
    reviewed_at: str | None = None,
    policy: ReviewPolicy | None = None,
) -> list[ReviewLevel]:
    """Return a copy of *levels* with one level's decision replaced.

    ``reviewed_at`` is stamped (default: now) when the status changes.
    Reviewer and opinion are kept unless given.

    Raises:
        ReviewLevelNotFound: If *level* is not configured.
        ReviewOrderViolation: Under a sequential policy, if a lower level
            is not approved.
        InvalidReviewTransition: Under a validating policy, if the change
            is not an allowed transition.
    """
    policy = policy or ReviewPolicy()
    target = find_level(levels, level)
    if target is None:
        raise ReviewLevelNotFound(level)

    if policy.sequential:
        for item in levels:
            if item.level < level and item.status != ReviewStatus.APPROVED:
                raise ReviewOrderViolation(level, item.level)

    if policy.validate_transitions and status != target.status:
        if not is_valid_status_transition(target.status, status):
            raise InvalidReviewTransition(level, target.status.value, status.value)

    changes: dict[str, object] = {"status": status}
    if status != target.status:
        changes["reviewed_at"] = reviewed_at or format_timestamp()
    if reviewer is not None:
        changes["reviewer"] = reviewer
    if opinion is not None:
        changes["opinion"] = opinion

    updated = target.model_copy(update=changes)
    logger.debug("Review level %d: %s -> %s", level, target.status.value, status.value)
    return [updated if item.level == level else item for item in levels]


def apply_level_opinion(levels: Sequence[ReviewLevel], level: int, opinion: str) -> list[ReviewLevel]:
    target = find_level(levels, level)
    if target is None:
        raise ReviewLevelNotFound(level)
    updated = target.model_copy(update={"opinion": opinion})
    return [updated if item.level == level else item for item in levels]


def requires_review_level(levels: Sequence[ReviewLevel], level: int) -> bool:
    return find_level(levels, level) is not None


def all_reviewers(levels: Sequence[ReviewLevel]) -> list[User]:
    """Distinct reviewers in level order."""
    seen: set[str] = set()
    reviewers: list[User] = []
    for item in sorted(levels, key=lambda entry: entry.level):
        if item.reviewer is not None and item.reviewer.id not in seen:
            seen.add(item.reviewer.id)
            reviewers.append(item.reviewer)
    return reviewers


def review_status_label(status: ReviewStatus) -> str:
    return _REVIEW_STATUS_LABELS.get(status, "未知")


def overall_status_label(overall: str) -> str:
    return _OVERALL_STATUS_LABELS.get(overall, overall)
