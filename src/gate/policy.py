"""Integrity policy - fast-forward only branches, immutable tags."""

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum

import structlog

from .updates import UpdateTuple

logger = structlog.get_logger()

TAG_PREFIX = "refs/tags/"

AncestorCheck = Callable[[str, str], bool]
TagCheck = Callable[[str], bool]


class DenyReason(str, Enum):
    """Why an update was denied."""
    NON_FAST_FORWARD = "non_fast_forward"
    IMMUTABLE_TAG = "immutable_tag_violation"


@dataclass
class PolicyDecision:
    """Allow/deny verdict for one update."""
    update: UpdateTuple
    allowed: bool
    reason: DenyReason | None = None

    @classmethod
    def allow(cls, update: UpdateTuple) -> "PolicyDecision":
        return cls(update=update, allowed=True)

    @classmethod
    def deny(cls, update: UpdateTuple, reason: DenyReason) -> "PolicyDecision":
        return cls(update=update, allowed=False, reason=reason)


def is_tag_reference(ref: str) -> bool:
    return ref.startswith(TAG_PREFIX)


def evaluate_update(
    update: UpdateTuple,
    is_ancestor: AncestorCheck,
    is_tag: TagCheck = is_tag_reference,
) -> PolicyDecision:
    """Decide a single update.

    Existing tags are never moved or deleted, even to the same commit.
    A new reference is always allowed. Anything else must fast-forward:
    the current remote commit has to be an ancestor of the local one.
    Deleting a branch is not a fast-forward.
    """
    if is_tag(update.remote_ref) and not update.is_new:
        return PolicyDecision.deny(update, DenyReason.IMMUTABLE_TAG)

    if update.is_new:
        return PolicyDecision.allow(update)

    if update.is_delete:
        return PolicyDecision.deny(update, DenyReason.NON_FAST_FORWARD)

    if is_ancestor(update.remote_commit, update.local_commit):
        return PolicyDecision.allow(update)

    return PolicyDecision.deny(update, DenyReason.NON_FAST_FORWARD)


def validate_updates(
    updates: Iterable[UpdateTuple],
    is_ancestor: AncestorCheck,
    is_tag: TagCheck = is_tag_reference,
) -> list[PolicyDecision]:
    """Decide every update. No side effects, no retries."""
    decisions = []
    for update in updates:
        decision = evaluate_update(update, is_ancestor, is_tag)
        if not decision.allowed:
            logger.info(
                "Update denied",
                ref=update.remote_ref,
                reason=decision.reason.value,
            )
        decisions.append(decision)
    return decisions


def first_denial(decisions: Iterable[PolicyDecision]) -> PolicyDecision | None:
    for decision in decisions:
        if not decision.allowed:
            return decision
    return None
