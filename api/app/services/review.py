"""Review lifecycle of a listing.

A listing starts ``pending``. Admins move it between any of the three states;
the owner can only edit it while it is not ``approved``, and an owner edit of a
``rejected`` listing sends it back to ``pending``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from app.services.errors import ListingStateConflictError, ListingValidationError


class ReviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


REVIEW_STATUSES = tuple(status.value for status in ReviewStatus)


@dataclass(frozen=True, slots=True)
class ReviewState:
    status: ReviewStatus
    rejection_reason: str | None = None

    def __post_init__(self) -> None:
        if self.status is ReviewStatus.REJECTED:
            if not self.rejection_reason:
                raise ListingValidationError("rejection_reason is required when rejecting a listing")
        elif self.rejection_reason is not None:
            raise ValueError(f"{self.status.value} state cannot carry a rejection reason")

    @classmethod
    def pending(cls) -> ReviewState:
        return cls(ReviewStatus.PENDING)

    @classmethod
    def approved(cls) -> ReviewState:
        return cls(ReviewStatus.APPROVED)

    @classmethod
    def rejected(cls, reason: str) -> ReviewState:
        return cls(ReviewStatus.REJECTED, reason)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ReviewState:
        status = ReviewStatus(row["status"])
        if status is ReviewStatus.REJECTED:
            return cls.rejected(row.get("rejection_reason") or "")
        return cls(status)

    def as_fields(self) -> dict[str, Any]:
        return {"status": self.status.value, "rejection_reason": self.rejection_reason}


def admin_transition(target: str, reason: str | None = None) -> ReviewState:
    """Build the state an admin status update moves a listing into.

    Any source state is accepted; only the target and the reason are checked.
    """
    try:
        status = ReviewStatus(target)
    except ValueError as exc:
        raise ListingValidationError(
            f"invalid status {target!r}; must be one of: {', '.join(REVIEW_STATUSES)}",
        ) from exc

    if status is ReviewStatus.REJECTED:
        normalized_reason = reason.strip() if isinstance(reason, str) else ""
        if not normalized_reason:
            raise ListingValidationError("rejection_reason is required when rejecting a listing")
        return ReviewState.rejected(normalized_reason)
    return ReviewState(status)


def ensure_owner_mutable(state: ReviewState) -> None:
    if state.status is ReviewStatus.APPROVED:
        raise ListingStateConflictError("cannot modify an approved listing; contact support for changes")


def after_owner_edit(state: ReviewState) -> ReviewState:
    if state.status is ReviewStatus.REJECTED:
        return ReviewState.pending()
    return state
