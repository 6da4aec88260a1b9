from __future__ import annotations

import pytest

from app.services.errors import ListingStateConflictError, ListingValidationError
from app.services.review import (
    ReviewState,
    ReviewStatus,
    admin_transition,
    after_owner_edit,
    ensure_owner_mutable,
)


@pytest.mark.parametrize("target", ["pending", "approved"])
def test_admin_transition_clears_reason_for_non_rejected_targets(target: str) -> None:
    state = admin_transition(target, "left over")

    assert state.status is ReviewStatus(target)
    assert state.rejection_reason is None


def test_admin_transition_to_rejected_requires_reason() -> None:
    with pytest.raises(ListingValidationError, match="rejection_reason is required"):
        admin_transition("rejected", "")

    with pytest.raises(ListingValidationError):
        admin_transition("rejected", "   ")

    with pytest.raises(ListingValidationError):
        admin_transition("rejected", None)


def test_admin_transition_to_rejected_keeps_trimmed_reason() -> None:
    state = admin_transition("rejected", "  too niche ")

    assert state == ReviewState.rejected("too niche")
    assert state.as_fields() == {"status": "rejected", "rejection_reason": "too niche"}


def test_admin_transition_rejects_unknown_status() -> None:
    with pytest.raises(ListingValidationError, match="invalid status 'archived'"):
        admin_transition("archived")


def test_rejected_state_cannot_be_built_without_reason() -> None:
    with pytest.raises(ListingValidationError):
        ReviewState(ReviewStatus.REJECTED)


def test_non_rejected_state_cannot_carry_reason() -> None:
    with pytest.raises(ValueError):
        ReviewState(ReviewStatus.APPROVED, "nope")


def test_owner_cannot_mutate_approved_listing() -> None:
    with pytest.raises(ListingStateConflictError):
        ensure_owner_mutable(ReviewState.approved())

    ensure_owner_mutable(ReviewState.pending())
    ensure_owner_mutable(ReviewState.rejected("needs a description"))


def test_owner_edit_resets_rejected_to_pending() -> None:
    assert after_owner_edit(ReviewState.rejected("broken link")) == ReviewState.pending()
    assert after_owner_edit(ReviewState.pending()) == ReviewState.pending()


def test_from_row_reads_status_and_reason() -> None:
    assert ReviewState.from_row({"status": "approved", "rejection_reason": None}) == ReviewState.approved()
    assert ReviewState.from_row({"status": "rejected", "rejection_reason": "spam"}) == ReviewState.rejected("spam")
