from dataclasses import asdict

from fastapi import APIRouter, Depends, Query

from app.api.errors import require_scopes, to_http_exception
from app.core.security import get_human_principal
from app.schemas.listings import (
    AdminListingPageOut,
    ListingAdminOut,
    ListingCategoryFilter,
    ListingPricingFilter,
    ListingStatusFilter,
    ListingStatusPatchRequest,
    PageInfoOut,
    ReviewEventOut,
)
from app.services.errors import ListingError
from app.services.listings import ListingPage, ListingService, get_listing_service
from app.services.query import ListingFilter
from app.services.repository import RepositoryUnavailableError

router = APIRouter()


def _page_out(result: ListingPage) -> AdminListingPageOut:
    return AdminListingPageOut(
        items=[ListingAdminOut(**row) for row in result.items],
        pagination=PageInfoOut(**asdict(result.page_info)),
    )


@router.get("/listings", response_model=AdminListingPageOut)
async def list_all_listings(
    principal=Depends(get_human_principal),
    service: ListingService = Depends(get_listing_service),
    listing_status: ListingStatusFilter | None = Query(default=None, alias="status"),
    category: ListingCategoryFilter | None = Query(default=None),
    pricing: ListingPricingFilter | None = Query(default=None),
    search: str | None = Query(default=None, max_length=100),
    page: int | None = Query(default=None, ge=1),
    limit: int | None = Query(default=None, ge=1),
) -> AdminListingPageOut:
    require_scopes(principal, {"review:read"})
    listing_filter = ListingFilter.from_params(
        status=listing_status,
        category=category,
        pricing=pricing,
        search=search,
    )
    try:
        result = await service.list_admin(listing_filter, page=page, limit=limit)
    except (ListingError, RepositoryUnavailableError) as exc:
        raise to_http_exception(exc) from exc
    return _page_out(result)


@router.get("/listings/pending", response_model=AdminListingPageOut)
async def list_pending_listings(
    principal=Depends(get_human_principal),
    service: ListingService = Depends(get_listing_service),
    page: int | None = Query(default=None, ge=1),
    limit: int | None = Query(default=None, ge=1),
) -> AdminListingPageOut:
    require_scopes(principal, {"review:read"})
    try:
        result = await service.list_admin(ListingFilter(status="pending"), page=page, limit=limit)
    except (ListingError, RepositoryUnavailableError) as exc:
        raise to_http_exception(exc) from exc
    return _page_out(result)


@router.patch("/listings/{listing_id}/status", response_model=ListingAdminOut)
async def patch_listing_status(
    listing_id: str,
    payload: ListingStatusPatchRequest,
    principal=Depends(get_human_principal),
    service: ListingService = Depends(get_listing_service),
) -> ListingAdminOut:
    require_scopes(principal, {"review:write"})
    try:
        row = await service.admin_set_status(
            principal.subject,
            listing_id,
            payload.status,
            payload.rejection_reason,
        )
    except (ListingError, RepositoryUnavailableError) as exc:
        raise to_http_exception(exc) from exc
    return ListingAdminOut(**row)


@router.get("/listings/{listing_id}/events", response_model=list[ReviewEventOut])
async def list_listing_events(
    listing_id: str,
    principal=Depends(get_human_principal),
    service: ListingService = Depends(get_listing_service),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[ReviewEventOut]:
    require_scopes(principal, {"review:read"})
    try:
        rows = await service.list_review_events(listing_id, limit=limit, offset=offset)
    except (ListingError, RepositoryUnavailableError) as exc:
        raise to_http_exception(exc) from exc
    return [ReviewEventOut(**row) for row in rows]
