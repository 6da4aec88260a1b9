from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Body, Depends, Query, Response, status

from app.api.errors import require_scopes, to_http_exception
from app.core.security import get_human_principal
from app.schemas.listings import (
    ListingCategoryFilter,
    ListingOwnerOut,
    ListingPageOut,
    ListingPricingFilter,
    ListingPublicOut,
    OwnerListingsOut,
    PageInfoOut,
)
from app.services.errors import ListingError
from app.services.listings import ListingService, get_listing_service
from app.services.query import ListingFilter
from app.services.repository import RepositoryUnavailableError

router = APIRouter()


@router.get("", response_model=ListingPageOut)
async def list_listings(
    category: ListingCategoryFilter | None = Query(default=None),
    pricing: ListingPricingFilter | None = Query(default=None),
    search: str | None = Query(default=None, max_length=100),
    page: int | None = Query(default=None, ge=1),
    limit: int | None = Query(default=None, ge=1),
    service: ListingService = Depends(get_listing_service),
) -> ListingPageOut:
    listing_filter = ListingFilter.from_params(category=category, pricing=pricing, search=search)
    try:
        result = await service.list_public(listing_filter, page=page, limit=limit)
    except (ListingError, RepositoryUnavailableError) as exc:
        raise to_http_exception(exc) from exc
    return ListingPageOut(
        items=[ListingPublicOut(**row) for row in result.items],
        pagination=PageInfoOut(**asdict(result.page_info)),
    )


@router.get("/mine", response_model=OwnerListingsOut)
async def list_my_listings(
    principal=Depends(get_human_principal),
    service: ListingService = Depends(get_listing_service),
) -> OwnerListingsOut:
    require_scopes(principal, {"listing:write"})
    try:
        rows = await service.list_owner(principal.subject)
    except (ListingError, RepositoryUnavailableError) as exc:
        raise to_http_exception(exc) from exc
    return OwnerListingsOut(items=[ListingOwnerOut(**row) for row in rows], count=len(rows))


@router.get("/{listing_id}", response_model=ListingPublicOut)
async def get_listing(
    listing_id: str,
    service: ListingService = Depends(get_listing_service),
) -> ListingPublicOut:
    try:
        row = await service.get(listing_id)
    except (ListingError, RepositoryUnavailableError) as exc:
        raise to_http_exception(exc) from exc
    return ListingPublicOut(**row)


@router.post("", response_model=ListingOwnerOut, status_code=status.HTTP_201_CREATED)
async def create_listing(
    payload: dict[str, Any] = Body(...),
    principal=Depends(get_human_principal),
    service: ListingService = Depends(get_listing_service),
) -> ListingOwnerOut:
    require_scopes(principal, {"listing:write"})
    try:
        row = await service.submit(principal, payload)
    except (ListingError, RepositoryUnavailableError) as exc:
        raise to_http_exception(exc) from exc
    return ListingOwnerOut(**row)


@router.put("/{listing_id}", response_model=ListingOwnerOut)
async def update_listing(
    listing_id: str,
    payload: dict[str, Any] = Body(...),
    principal=Depends(get_human_principal),
    service: ListingService = Depends(get_listing_service),
) -> ListingOwnerOut:
    require_scopes(principal, {"listing:write"})
    try:
        row = await service.update(principal.subject, listing_id, payload)
    except (ListingError, RepositoryUnavailableError) as exc:
        raise to_http_exception(exc) from exc
    return ListingOwnerOut(**row)


@router.delete("/{listing_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_listing(
    listing_id: str,
    principal=Depends(get_human_principal),
    service: ListingService = Depends(get_listing_service),
) -> Response:
    require_scopes(principal, {"listing:write"})
    try:
        await service.remove(principal.subject, listing_id)
    except (ListingError, RepositoryUnavailableError) as exc:
        raise to_http_exception(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
