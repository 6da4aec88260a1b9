from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Literal

ListingOrder = Literal["featured", "newest"]

ANY_VALUE = "all"


@dataclass(frozen=True, slots=True)
class ListingFilter:
    status: str | None = None
    category: str | None = None
    pricing: str | None = None
    search: str | None = None

    @classmethod
    def from_params(
        cls,
        *,
        status: str | None = None,
        category: str | None = None,
        pricing: str | None = None,
        search: str | None = None,
    ) -> ListingFilter:
        return cls(
            status=_coerce_choice(status),
            category=_coerce_choice(category),
            pricing=_coerce_choice(pricing),
            search=(search.strip() or None) if search else None,
        )

    def with_status(self, status: str | None) -> ListingFilter:
        return ListingFilter(status=status, category=self.category, pricing=self.pricing, search=self.search)


@dataclass(frozen=True, slots=True)
class PageRequest:
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @classmethod
    def build(cls, page: int | None, limit: int | None, *, default_limit: int = 20, max_limit: int = 100) -> PageRequest:
        normalized_page = max(1, page or 1)
        normalized_limit = default_limit if limit is None else limit
        normalized_limit = min(max(1, normalized_limit), max_limit)
        return cls(page=normalized_page, limit=normalized_limit)


@dataclass(frozen=True, slots=True)
class PageInfo:
    current_page: int
    total_pages: int
    total_models: int
    has_next: bool
    has_prev: bool

    @classmethod
    def from_total(cls, total: int, request: PageRequest) -> PageInfo:
        total_pages = math.ceil(total / request.limit) if total else 0
        return cls(
            current_page=request.page,
            total_pages=total_pages,
            total_models=total,
            has_next=request.page < total_pages,
            has_prev=request.page > 1,
        )


def _coerce_choice(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    if not stripped or stripped == ANY_VALUE:
        return None
    return stripped
