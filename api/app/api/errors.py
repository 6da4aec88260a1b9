from fastapi import HTTPException, status

from app.services.errors import (
    ListingDuplicateError,
    ListingError,
    ListingNotFoundError,
    ListingStateConflictError,
    ListingValidationError,
)
from app.services.repository import RepositoryUnavailableError


def to_http_exception(exc: ListingError | RepositoryUnavailableError) -> HTTPException:
    if isinstance(exc, ListingValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail={"message": exc.message, "errors": exc.errors},
        )
    if isinstance(exc, ListingNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ListingDuplicateError) and exc.retryable:
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc), headers={"Retry-After": "1"})
    if isinstance(exc, (ListingStateConflictError, ListingDuplicateError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, RepositoryUnavailableError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="internal error")


def require_scopes(principal, required: set[str]) -> None:
    try:
        principal.require_scopes(required)
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
