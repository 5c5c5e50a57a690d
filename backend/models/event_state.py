"""
Event Lifecycle States

Canonical events move through a review workflow. Only the split between
draft states and everything else matters to the convergence engine:
changes detected on a draft are applied immediately, changes on any other
state are queued for review.
"""
from enum import Enum
from typing import FrozenSet


class EventState(str, Enum):
    SCRAPED_DRAFT = "SCRAPED_DRAFT"
    MANUAL_DRAFT = "MANUAL_DRAFT"
    REJECTED = "REJECTED"
    APPROVED_PENDING_DETAILS = "APPROVED_PENDING_DETAILS"
    READY_TO_PUBLISH = "READY_TO_PUBLISH"
    PUBLISHED = "PUBLISHED"
    CANCELED = "CANCELED"


# Legacy rows may still carry the bare 'DRAFT' status
DRAFT_STATES: FrozenSet[str] = frozenset({
    EventState.SCRAPED_DRAFT.value,
    EventState.MANUAL_DRAFT.value,
    "DRAFT",
})


def is_draft(status) -> bool:
    """Whether source changes may be applied without review."""
    if status is None:
        return False
    value = status.value if isinstance(status, EventState) else str(status)
    return value.upper() in DRAFT_STATES

