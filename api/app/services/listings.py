"""Listing submission lifecycle.

``ListingService`` validates payloads, enforces ownership and review-state
rules, assigns slugs and delegates persistence to a repository
(``PostgresRepository`` or ``InMemoryListingStore``).

Ownership and state checks are fetch-then-mutate without a transaction; a
concurrent admin status change and owner edit resolve as last write wins.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from fastapi import Depends
from pydantic import ValidationError

from app.core.auth import Principal
from app.core.config import Settings, get_settings
from app.core.telemetry import listing_span
from app.schemas.listings import EDITABLE_FIELDS, ListingPayload
from app.services.errors import (
    ListingDuplicateError,
    ListingNotFoundError,
    ListingValidationError,
)
from app.services.query import ListingFilter, PageInfo, PageRequest
from app.services.repository import (
    SLUG_CONSTRAINT,
    RepositoryDuplicateError,
    RepositoryNotFoundError,
    get_repository,
)
from app.services.review import (
    ReviewState,
    ReviewStatus,
    admin_transition,
    after_owner_edit,
    ensure_owner_mutable,
)
from app.services.slugs import generate_slug

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ListingPage:
    items: list[dict[str, Any]]
    page_info: PageInfo


class ListingService:
    def __init__(
        self,
        repository: Any,
        *,
        default_page_size: int = 20,
        max_page_size: int = 100,
        slug_conflict_retries: int = 1,
    ) -> None:
        self.repository = repository
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self.slug_conflict_retries = max(0, slug_conflict_retries)

    async def submit(self, owner: Principal, payload: ListingPayload | Mapping[str, Any]) -> dict[str, Any]:
        listing = self._validate_payload(payload)
        if await self.repository.owner_has_listing_named(owner_id=owner.subject, name=listing.name):
            raise ListingDuplicateError("you have already submitted a listing with this name")

        await self.repository.upsert_owner(
            owner_id=owner.subject,
            email=owner.email,
            first_name=owner.first_name,
            last_name=owner.last_name,
        )

        fields = listing.model_dump(include=set(EDITABLE_FIELDS))
        fields.update(ReviewState.pending().as_fields())
        attempt = 0
        with listing_span("submit", owner=owner.subject, category=listing.category) as span:
            while True:
                fields["slug"] = await generate_slug(listing.name, slug_exists=self.repository.slug_exists)
                try:
                    row = await self.repository.insert_listing(owner_id=owner.subject, fields=fields)
                    break
                except RepositoryDuplicateError as exc:
                    attempt = self._check_slug_retry(exc, attempt, fields["slug"])
            span.set_attribute("listing.id", row["id"])
            span.set_attribute("listing.slug_retries", attempt)

        logger.info("listing submitted id=%s slug=%s owner=%s", row["id"], row["slug"], owner.subject)
        return row

    async def update(
        self,
        owner_id: str,
        listing_id: str,
        payload: ListingPayload | Mapping[str, Any],
    ) -> dict[str, Any]:
        current = await self._get_owned(owner_id, listing_id)
        state = ReviewState.from_row(current)
        ensure_owner_mutable(state)
        listing = self._validate_payload(payload)

        fields = listing.model_dump(include=set(EDITABLE_FIELDS))
        next_state = after_owner_edit(state)
        fields.update(next_state.as_fields())

        name_changed = listing.name != current["name"]
        attempt = 0
        with listing_span("update", id=listing_id, owner=owner_id, status=next_state.status.value):
            while True:
                if name_changed:
                    fields["slug"] = await generate_slug(
                        listing.name,
                        slug_exists=self.repository.slug_exists,
                        exclude_id=listing_id,
                    )
                try:
                    row = await self.repository.update_listing(listing_id=listing_id, fields=fields)
                    break
                except RepositoryNotFoundError as exc:
                    raise ListingNotFoundError("listing not found") from exc
                except RepositoryDuplicateError as exc:
                    attempt = self._check_slug_retry(exc, attempt, fields.get("slug"))

        if next_state.status is not state.status:
            await self.repository.record_review_event(
                listing_id=listing_id,
                event_type="resubmitted",
                from_status=state.status.value,
                to_status=next_state.status.value,
                reason=None,
                actor_id=owner_id,
            )
        logger.info(
            "listing updated id=%s owner=%s status=%s->%s",
            listing_id,
            owner_id,
            state.status.value,
            next_state.status.value,
        )
        return row

    async def remove(self, owner_id: str, listing_id: str) -> None:
        await self._get_owned(owner_id, listing_id)
        try:
            with listing_span("remove", id=listing_id, owner=owner_id):
                await self.repository.delete_listing(listing_id=listing_id)
        except RepositoryNotFoundError as exc:
            raise ListingNotFoundError("listing not found") from exc
        logger.info("listing deleted id=%s owner=%s", listing_id, owner_id)

    async def get(self, listing_id: str) -> dict[str, Any]:
        self._validate_listing_id(listing_id)
        try:
            return await self.repository.get_listing(listing_id=listing_id, status=ReviewStatus.APPROVED.value)
        except RepositoryNotFoundError as exc:
            raise ListingNotFoundError("listing not found") from exc

    async def list_public(
        self,
        listing_filter: ListingFilter,
        *,
        page: int | None = None,
        limit: int | None = None,
    ) -> ListingPage:
        return await self._list_page(
            listing_filter.with_status(ReviewStatus.APPROVED.value),
            order="featured",
            page=page,
            limit=limit,
        )

    async def list_owner(self, owner_id: str) -> list[dict[str, Any]]:
        return await self.repository.list_owner_listings(owner_id=owner_id)

    async def list_admin(
        self,
        listing_filter: ListingFilter,
        *,
        page: int | None = None,
        limit: int | None = None,
    ) -> ListingPage:
        if listing_filter.status is not None and listing_filter.status not in {s.value for s in ReviewStatus}:
            raise ListingValidationError(f"invalid status filter {listing_filter.status!r}")
        return await self._list_page(listing_filter, order="newest", page=page, limit=limit)

    async def admin_set_status(
        self,
        actor_id: str,
        listing_id: str,
        target_status: str,
        rejection_reason: str | None = None,
    ) -> dict[str, Any]:
        self._validate_listing_id(listing_id)
        next_state = admin_transition(target_status, rejection_reason)
        try:
            with listing_span("set_status", id=listing_id, actor=actor_id, status=next_state.status.value):
                current = await self.repository.get_listing(listing_id=listing_id)
                row = await self.repository.update_listing(listing_id=listing_id, fields=next_state.as_fields())
        except RepositoryNotFoundError as exc:
            raise ListingNotFoundError("listing not found") from exc

        await self.repository.record_review_event(
            listing_id=listing_id,
            event_type="status_changed",
            from_status=current["status"],
            to_status=next_state.status.value,
            reason=next_state.rejection_reason,
            actor_id=actor_id,
        )
        logger.info(
            "listing status set id=%s actor=%s status=%s->%s",
            listing_id,
            actor_id,
            current["status"],
            next_state.status.value,
        )
        return row

    async def list_review_events(self, listing_id: str, *, limit: int = 50, offset: int = 0) -> list[dict[str, Any]]:
        self._validate_listing_id(listing_id)
        try:
            await self.repository.get_listing(listing_id=listing_id)
        except RepositoryNotFoundError as exc:
            raise ListingNotFoundError("listing not found") from exc
        return await self.repository.list_review_events(listing_id=listing_id, limit=limit, offset=offset)

    async def _list_page(
        self,
        listing_filter: ListingFilter,
        *,
        order: str,
        page: int | None,
        limit: int | None,
    ) -> ListingPage:
        request = PageRequest.build(
            page,
            limit,
            default_limit=self.default_page_size,
            max_limit=self.max_page_size,
        )
        items, total = await self.repository.list_listings(
            listing_filter=listing_filter,
            order=order,
            offset=request.offset,
            limit=request.limit,
        )
        return ListingPage(items=items, page_info=PageInfo.from_total(total, request))

    async def _get_owned(self, owner_id: str, listing_id: str) -> dict[str, Any]:
        self._validate_listing_id(listing_id)
        try:
            row = await self.repository.get_listing(listing_id=listing_id)
        except RepositoryNotFoundError as exc:
            raise ListingNotFoundError("listing not found") from exc
        if row["uploaded_by"] != owner_id:
            raise ListingNotFoundError("listing not found")
        return row

    def _check_slug_retry(self, exc: RepositoryDuplicateError, attempt: int, slug: str | None) -> int:
        if exc.constraint != SLUG_CONSTRAINT:
            raise ListingDuplicateError(str(exc)) from exc
        if attempt >= self.slug_conflict_retries:
            raise ListingDuplicateError(
                "slug was claimed by a concurrent submission; retry the request",
                retryable=True,
            ) from exc
        logger.warning("slug conflict on write slug=%s attempt=%s; probing again", slug, attempt + 1)
        return attempt + 1

    @staticmethod
    def _validate_payload(payload: ListingPayload | Mapping[str, Any]) -> ListingPayload:
        if isinstance(payload, ListingPayload):
            return payload
        try:
            return ListingPayload.model_validate(payload)
        except ValidationError as exc:
            raise ListingValidationError(
                [f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()],
            ) from exc

    @staticmethod
    def _validate_listing_id(listing_id: str) -> None:
        try:
            UUID(listing_id)
        except (TypeError, ValueError) as exc:
            raise ListingValidationError("invalid listing id format") from exc


def get_listing_service(
    repository=Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> ListingService:
    return ListingService(
        repository,
        default_page_size=settings.listing_page_size_default,
        max_page_size=settings.listing_page_size_max,
        slug_conflict_retries=settings.slug_conflict_retries,
    )
