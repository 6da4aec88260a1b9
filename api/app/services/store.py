from __future__ import annotations

import copy
from datetime import datetime, timezone
from itertools import count
from typing import Any
from uuid import uuid4

from app.services.query import ListingFilter, ListingOrder
from app.services.repository import (
    LISTING_WRITE_COLUMNS,
    SLUG_CONSTRAINT,
    RepositoryDuplicateError,
    RepositoryNotFoundError,
)

LISTING_DEFAULTS: dict[str, Any] = {
    "long_description": None,
    "tags": [],
    "pricing": "freemium",
    "capabilities": [],
    "is_api_available": False,
    "is_open_source": False,
    "model_type": None,
    "external_url": None,
    "best_for": [],
    "features": [],
    "example_prompts": [],
    "rating": 0.0,
    "reviews_count": 0,
    "installs_count": 0,
    "trending_score": 0.0,
    "featured": False,
    "status": "pending",
    "rejection_reason": None,
}


class InMemoryListingStore:
    """Process-local listing store with the same contract as ``PostgresRepository``.

    Rows are kept in insertion order, and the ordering keys are sorted stably,
    so ties keep that order. Slug uniqueness is checked on every write.
    """

    def __init__(self) -> None:
        self.listings: dict[str, dict[str, Any]] = {}
        self.users: dict[str, dict[str, Any]] = {}
        self.review_events: list[dict[str, Any]] = []
        self._event_ids = count(1)

    async def close(self) -> None:
        return None

    async def ping(self) -> None:
        return None

    async def slug_exists(self, slug: str, exclude_id: str | None = None) -> bool:
        return any(row["slug"] == slug and row_id != exclude_id for row_id, row in self.listings.items())

    async def owner_has_listing_named(self, *, owner_id: str, name: str) -> bool:
        return any(row["uploaded_by"] == owner_id and row["name"] == name for row in self.listings.values())

    async def upsert_owner(
        self,
        *,
        owner_id: str,
        email: str | None,
        first_name: str | None,
        last_name: str | None,
    ) -> None:
        existing = self.users.get(owner_id, {"id": owner_id, "email": None, "first_name": None, "last_name": None})
        self.users[owner_id] = {
            "id": owner_id,
            "email": email or existing["email"],
            "first_name": first_name or existing["first_name"],
            "last_name": last_name or existing["last_name"],
        }

    async def insert_listing(self, *, owner_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        self._ensure_slug_free(fields["slug"], exclude_id=None)
        now = datetime.now(timezone.utc)
        listing_id = str(uuid4())
        row = {**copy.deepcopy(LISTING_DEFAULTS), **copy.deepcopy(fields)}
        row.update(
            {
                "id": listing_id,
                "uploaded_by": owner_id,
                "created_at": now,
                "updated_at": now,
            }
        )
        self.listings[listing_id] = row
        return self._project(row)

    async def get_listing(self, *, listing_id: str, status: str | None = None) -> dict[str, Any]:
        row = self.listings.get(listing_id)
        if row is None or (status is not None and row["status"] != status):
            raise RepositoryNotFoundError("listing not found")
        return self._project(row)

    async def update_listing(self, *, listing_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        unknown = set(fields) - set(LISTING_WRITE_COLUMNS)
        if unknown:
            raise ValueError(f"unsupported listing columns: {sorted(unknown)}")

        row = self.listings.get(listing_id)
        if row is None:
            raise RepositoryNotFoundError("listing not found")
        if "slug" in fields:
            self._ensure_slug_free(fields["slug"], exclude_id=listing_id)
        row.update(copy.deepcopy(fields))
        row["updated_at"] = datetime.now(timezone.utc)
        return self._project(row)

    async def delete_listing(self, *, listing_id: str) -> None:
        if self.listings.pop(listing_id, None) is None:
            raise RepositoryNotFoundError("listing not found")
        self.review_events = [event for event in self.review_events if event["listing_id"] != listing_id]

    async def list_listings(
        self,
        *,
        listing_filter: ListingFilter,
        order: ListingOrder,
        offset: int,
        limit: int,
    ) -> tuple[list[dict[str, Any]], int]:
        rows = [row for row in self.listings.values() if self._matches(row, listing_filter)]
        rows = self._sorted(rows, order)
        return [self._project(row) for row in rows[offset : offset + limit]], len(rows)

    async def list_owner_listings(self, *, owner_id: str) -> list[dict[str, Any]]:
        rows = [row for row in self.listings.values() if row["uploaded_by"] == owner_id]
        return [self._project(row) for row in self._sorted(rows, "newest")]

    async def record_review_event(
        self,
        *,
        listing_id: str,
        event_type: str,
        from_status: str,
        to_status: str,
        reason: str | None,
        actor_id: str | None,
    ) -> None:
        self.review_events.append(
            {
                "id": next(self._event_ids),
                "listing_id": listing_id,
                "event_type": event_type,
                "from_status": from_status,
                "to_status": to_status,
                "reason": reason,
                "actor_id": actor_id,
                "created_at": datetime.now(timezone.utc),
            }
        )

    async def list_review_events(self, *, listing_id: str, limit: int, offset: int) -> list[dict[str, Any]]:
        rows = [event for event in self.review_events if event["listing_id"] == listing_id]
        return [dict(event) for event in rows[offset : offset + limit]]

    def _ensure_slug_free(self, slug: str, *, exclude_id: str | None) -> None:
        if any(row["slug"] == slug and row_id != exclude_id for row_id, row in self.listings.items()):
            raise RepositoryDuplicateError(SLUG_CONSTRAINT)

    @staticmethod
    def _matches(row: dict[str, Any], listing_filter: ListingFilter) -> bool:
        if listing_filter.status and row["status"] != listing_filter.status:
            return False
        if listing_filter.category and row["category"] != listing_filter.category:
            return False
        if listing_filter.pricing and row["pricing"] != listing_filter.pricing:
            return False
        if listing_filter.search:
            needle = listing_filter.search.lower()
            return (
                needle in row["name"].lower()
                or needle in row["short_description"].lower()
                or any(needle in tag.lower() for tag in row["tags"])
            )
        return True

    @staticmethod
    def _sorted(rows: list[dict[str, Any]], order: ListingOrder) -> list[dict[str, Any]]:
        if order == "featured":
            return sorted(
                rows,
                key=lambda row: (row["featured"], row["trending_score"], row["created_at"]),
                reverse=True,
            )
        return sorted(rows, key=lambda row: row["created_at"], reverse=True)

    def _project(self, row: dict[str, Any]) -> dict[str, Any]:
        projected = copy.deepcopy(row)
        owner = self.users.get(row["uploaded_by"], {})
        projected["owner"] = {
            "id": row["uploaded_by"],
            "email": owner.get("email"),
            "first_name": owner.get("first_name"),
            "last_name": owner.get("last_name"),
        }
        return projected
