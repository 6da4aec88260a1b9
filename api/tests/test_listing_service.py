from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar
from uuid import uuid4

import pytest

from app.core.auth import Principal
from app.services.errors import (
    ListingDuplicateError,
    ListingNotFoundError,
    ListingStateConflictError,
    ListingValidationError,
)
from app.services.listings import ListingService
from app.services.query import ListingFilter
from app.services.store import InMemoryListingStore

T = TypeVar("T")

OWNER_A = Principal(
    subject="aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa",
    scopes={"listing:write"},
    email="ada@example.com",
    first_name="Ada",
    last_name="Lovelace",
)
OWNER_B = Principal(
    subject="bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb",
    scopes={"listing:write"},
    email="grace@example.com",
    first_name="Grace",
    last_name="Hopper",
)
ADMIN_ID = "cccccccc-cccc-cccc-cccc-cccccccccccc"


def _run(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)


def _payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "name": "Bot X",
        "short_description": "fast inference for chat",
        "category": "chatbots",
        "provider": "Example Labs",
        "tags": ["reasoning"],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def store() -> InMemoryListingStore:
    return InMemoryListingStore()


@pytest.fixture
def service(store: InMemoryListingStore) -> ListingService:
    return ListingService(store)


def test_submit_creates_pending_listing_with_slug(service: ListingService, store: InMemoryListingStore) -> None:
    row = _run(service.submit(OWNER_A, _payload()))

    assert row["slug"] == "bot-x"
    assert row["status"] == "pending"
    assert row["rejection_reason"] is None
    assert row["uploaded_by"] == OWNER_A.subject
    assert row["pricing"] == "freemium"
    assert store.users[OWNER_A.subject]["first_name"] == "Ada"


def test_submit_scenario_same_name_across_owners(service: ListingService, store: InMemoryListingStore) -> None:
    first = _run(service.submit(OWNER_A, _payload()))
    second = _run(service.submit(OWNER_B, _payload()))

    assert first["slug"] == "bot-x"
    assert second["slug"] == "bot-x-1"

    probes: list[str] = []
    original_slug_exists = store.slug_exists

    async def recording_slug_exists(candidate: str, exclude_id: str | None = None) -> bool:
        probes.append(candidate)
        return await original_slug_exists(candidate, exclude_id)

    store.slug_exists = recording_slug_exists  # type: ignore[method-assign]
    with pytest.raises(ListingDuplicateError, match="already submitted"):
        _run(service.submit(OWNER_A, _payload()))
    assert probes == []
    assert len(store.listings) == 2


def test_submit_distinct_names_with_same_base_slug(service: ListingService) -> None:
    first = _run(service.submit(OWNER_A, _payload(name="GPT 4!")))
    second = _run(service.submit(OWNER_A, _payload(name="GPT-4")))

    assert first["slug"] == "gpt-4"
    assert second["slug"] == "gpt-4-1"


def test_submit_reports_itemized_validation_errors(service: ListingService) -> None:
    with pytest.raises(ListingValidationError) as exc_info:
        _run(
            service.submit(
                OWNER_A,
                _payload(
                    name="x" * 101,
                    category="spreadsheets",
                    external_url="ftp://example.com",
                    tags=["t" * 31],
                    capabilities=["telepathy"],
                ),
            )
        )

    fields = {error.split(":", 1)[0] for error in exc_info.value.errors}
    assert {"name", "category", "external_url", "tags.0", "capabilities.0"} <= fields


def test_submit_rejects_status_in_payload(service: ListingService) -> None:
    with pytest.raises(ListingValidationError) as exc_info:
        _run(service.submit(OWNER_A, _payload(status="approved")))

    assert any(error.startswith("status:") for error in exc_info.value.errors)


def test_submit_trims_strings_and_blanks_optional_fields(service: ListingService) -> None:
    row = _run(service.submit(OWNER_A, _payload(name="  Bot Y  ", external_url="", model_type="  ")))

    assert row["name"] == "Bot Y"
    assert row["external_url"] is None
    assert row["model_type"] is None


def test_submit_retries_slug_probe_after_unique_violation(store: InMemoryListingStore) -> None:
    service = ListingService(store, slug_conflict_retries=1)
    _run(service.submit(OWNER_B, _payload()))

    calls = {"count": 0}
    original_slug_exists = store.slug_exists

    async def stale_slug_exists(candidate: str, exclude_id: str | None = None) -> bool:
        calls["count"] += 1
        if calls["count"] == 1:
            return False
        return await original_slug_exists(candidate, exclude_id)

    store.slug_exists = stale_slug_exists  # type: ignore[method-assign]
    row = _run(service.submit(OWNER_A, _payload()))

    assert row["slug"] == "bot-x-1"


def test_submit_surfaces_retryable_conflict_when_retries_exhausted(store: InMemoryListingStore) -> None:
    service = ListingService(store, slug_conflict_retries=1)
    _run(service.submit(OWNER_B, _payload()))

    async def always_free(candidate: str, exclude_id: str | None = None) -> bool:
        return False

    store.slug_exists = always_free  # type: ignore[method-assign]
    with pytest.raises(ListingDuplicateError) as exc_info:
        _run(service.submit(OWNER_A, _payload()))

    assert exc_info.value.retryable is True


def test_update_by_non_owner_is_not_found(service: ListingService) -> None:
    row = _run(service.submit(OWNER_A, _payload()))

    with pytest.raises(ListingNotFoundError):
        _run(service.update(OWNER_B.subject, row["id"], _payload(name="Hijacked")))
    with pytest.raises(ListingNotFoundError):
        _run(service.remove(OWNER_B.subject, row["id"]))


def test_update_of_non_owned_approved_listing_is_not_found(service: ListingService) -> None:
    row = _run(service.submit(OWNER_A, _payload()))
    _run(service.admin_set_status(ADMIN_ID, row["id"], "approved"))

    with pytest.raises(ListingNotFoundError):
        _run(service.update(OWNER_B.subject, row["id"], _payload()))


def test_update_of_approved_listing_conflicts_regardless_of_payload(service: ListingService) -> None:
    row = _run(service.submit(OWNER_A, _payload()))
    _run(service.admin_set_status(ADMIN_ID, row["id"], "approved"))

    with pytest.raises(ListingStateConflictError):
        _run(service.update(OWNER_A.subject, row["id"], _payload(short_description="new")))
    with pytest.raises(ListingStateConflictError):
        _run(service.update(OWNER_A.subject, row["id"], {"name": ""}))


def test_update_of_rejected_listing_resets_to_pending(service: ListingService, store: InMemoryListingStore) -> None:
    row = _run(service.submit(OWNER_A, _payload()))
    rejected = _run(service.admin_set_status(ADMIN_ID, row["id"], "rejected", "too niche"))
    assert rejected["rejection_reason"] == "too niche"

    updated = _run(service.update(OWNER_A.subject, row["id"], _payload(short_description="broader scope")))

    assert updated["status"] == "pending"
    assert updated["rejection_reason"] is None
    assert updated["short_description"] == "broader scope"
    assert [event["event_type"] for event in store.review_events] == ["status_changed", "resubmitted"]


def test_update_regenerates_slug_only_when_name_changes(service: ListingService) -> None:
    row = _run(service.submit(OWNER_A, _payload()))

    same_name = _run(service.update(OWNER_A.subject, row["id"], _payload(short_description="edited")))
    assert same_name["slug"] == "bot-x"

    _run(service.submit(OWNER_B, _payload(name="Bot Y")))
    renamed = _run(service.update(OWNER_A.subject, row["id"], _payload(name="Bot Y")))
    assert renamed["slug"] == "bot-y-1"


def test_update_keeps_owner(service: ListingService) -> None:
    row = _run(service.submit(OWNER_A, _payload()))

    with pytest.raises(ListingValidationError):
        _run(service.update(OWNER_A.subject, row["id"], _payload(uploaded_by=OWNER_B.subject)))

    updated = _run(service.update(OWNER_A.subject, row["id"], _payload()))
    assert updated["uploaded_by"] == OWNER_A.subject


def test_remove_deletes_listing_from_owner_view(service: ListingService) -> None:
    row = _run(service.submit(OWNER_A, _payload()))
    _run(service.submit(OWNER_A, _payload(name="Bot Z")))

    _run(service.remove(OWNER_A.subject, row["id"]))

    remaining = _run(service.list_owner(OWNER_A.subject))
    assert [item["name"] for item in remaining] == ["Bot Z"]
    with pytest.raises(ListingNotFoundError):
        _run(service.remove(OWNER_A.subject, row["id"]))


def test_get_requires_approved_and_well_formed_id(service: ListingService) -> None:
    row = _run(service.submit(OWNER_A, _payload()))

    with pytest.raises(ListingValidationError, match="invalid listing id format"):
        _run(service.get("not-a-uuid"))
    with pytest.raises(ListingNotFoundError):
        _run(service.get(row["id"]))
    with pytest.raises(ListingNotFoundError):
        _run(service.get(str(uuid4())))

    _run(service.admin_set_status(ADMIN_ID, row["id"], "approved"))
    assert _run(service.get(row["id"]))["slug"] == "bot-x"


def test_admin_set_status_validation(service: ListingService) -> None:
    row = _run(service.submit(OWNER_A, _payload()))

    with pytest.raises(ListingValidationError):
        _run(service.admin_set_status(ADMIN_ID, row["id"], "rejected", ""))
    with pytest.raises(ListingValidationError):
        _run(service.admin_set_status(ADMIN_ID, row["id"], "published"))
    with pytest.raises(ListingNotFoundError):
        _run(service.admin_set_status(ADMIN_ID, str(uuid4()), "approved"))

    rejected = _run(service.admin_set_status(ADMIN_ID, row["id"], "rejected", "too niche"))
    assert rejected["status"] == "rejected"
    assert rejected["rejection_reason"] == "too niche"

    approved = _run(service.admin_set_status(ADMIN_ID, row["id"], "approved", "ignored"))
    assert approved["status"] == "approved"
    assert approved["rejection_reason"] is None

    back_to_pending = _run(service.admin_set_status(ADMIN_ID, row["id"], "pending"))
    assert back_to_pending["status"] == "pending"


def test_admin_status_changes_are_recorded(service: ListingService) -> None:
    row = _run(service.submit(OWNER_A, _payload()))
    _run(service.admin_set_status(ADMIN_ID, row["id"], "rejected", "duplicate of another listing"))
    _run(service.admin_set_status(ADMIN_ID, row["id"], "approved"))

    events = _run(service.list_review_events(row["id"]))

    assert [(event["from_status"], event["to_status"]) for event in events] == [
        ("pending", "rejected"),
        ("rejected", "approved"),
    ]
    assert events[0]["reason"] == "duplicate of another listing"
    assert events[1]["actor_id"] == ADMIN_ID


def test_list_public_search_matches_name_description_and_tags(service: ListingService) -> None:
    row = _run(service.submit(OWNER_A, _payload(name="Thinker", short_description="fast inference", tags=["Reasoning"])))
    _run(service.admin_set_status(ADMIN_ID, row["id"], "approved"))

    def search(term: str) -> list[str]:
        page = _run(service.list_public(ListingFilter.from_params(search=term)))
        return [item["name"] for item in page.items]

    assert search("reason") == ["Thinker"]
    assert search("INFER") == ["Thinker"]
    assert search("think") == ["Thinker"]
    assert search("xyz") == []
    assert search("fast.*") == []


def test_list_public_only_shows_approved_and_applies_filters(service: ListingService) -> None:
    approved_code = _run(service.submit(OWNER_A, _payload(name="Coder", category="code", pricing="free")))
    approved_paid = _run(service.submit(OWNER_A, _payload(name="Painter", category="image", pricing="paid")))
    _run(service.submit(OWNER_A, _payload(name="Pending One", category="code", pricing="free")))
    for row in (approved_code, approved_paid):
        _run(service.admin_set_status(ADMIN_ID, row["id"], "approved"))

    everything = _run(service.list_public(ListingFilter.from_params(category="all", pricing="all")))
    assert {item["name"] for item in everything.items} == {"Coder", "Painter"}

    code_only = _run(service.list_public(ListingFilter.from_params(category="code")))
    assert [item["name"] for item in code_only.items] == ["Coder"]

    paid_code = _run(service.list_public(ListingFilter.from_params(category="code", pricing="paid")))
    assert paid_code.items == []
    assert paid_code.page_info.total_models == 0


def test_list_public_orders_featured_then_trending_then_newest(
    service: ListingService,
    store: InMemoryListingStore,
) -> None:
    base = datetime(2025, 1, 1, tzinfo=timezone.utc)
    specs = [
        ("Old Plain", False, 10.0, base),
        ("New Plain", False, 10.0, base + timedelta(days=1)),
        ("Trending", False, 90.0, base),
        ("Featured", True, 0.0, base),
        ("Tie A", False, 5.0, base),
        ("Tie B", False, 5.0, base),
    ]
    for name, featured, trending, created_at in specs:
        row = _run(service.submit(OWNER_A, _payload(name=name)))
        _run(service.admin_set_status(ADMIN_ID, row["id"], "approved"))
        store.listings[row["id"]].update(featured=featured, trending_score=trending, created_at=created_at)

    page = _run(service.list_public(ListingFilter()))

    assert [item["name"] for item in page.items] == ["Featured", "Trending", "New Plain", "Old Plain", "Tie A", "Tie B"]


def test_list_public_paginates(service: ListingService, store: InMemoryListingStore) -> None:
    for index in range(95):
        row = _run(service.submit(OWNER_A, _payload(name=f"Model {index}")))
        store.listings[row["id"]]["status"] = "approved"

    last_page = _run(service.list_public(ListingFilter(), page=5, limit=20))
    assert len(last_page.items) == 15
    assert last_page.page_info.total_pages == 5
    assert last_page.page_info.has_next is False
    assert last_page.page_info.has_prev is True

    clamped = _run(service.list_public(ListingFilter(), page=1, limit=1000))
    assert len(clamped.items) == 95


def test_list_admin_sees_every_status_and_validates_filter(service: ListingService) -> None:
    pending = _run(service.submit(OWNER_A, _payload(name="One")))
    rejected = _run(service.submit(OWNER_A, _payload(name="Two")))
    _run(service.admin_set_status(ADMIN_ID, rejected["id"], "rejected", "spam"))

    everything = _run(service.list_admin(ListingFilter()))
    assert {item["id"] for item in everything.items} == {pending["id"], rejected["id"]}

    only_pending = _run(service.list_admin(ListingFilter(status="pending")))
    assert [item["id"] for item in only_pending.items] == [pending["id"]]

    with pytest.raises(ListingValidationError):
        _run(service.list_admin(ListingFilter(status="archived")))


def test_list_owner_is_derived_from_listings(service: ListingService) -> None:
    _run(service.submit(OWNER_A, _payload(name="Mine")))
    _run(service.submit(OWNER_B, _payload(name="Theirs")))

    mine = _run(service.list_owner(OWNER_A.subject))

    assert [item["name"] for item in mine] == ["Mine"]
