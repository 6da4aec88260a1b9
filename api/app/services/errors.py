class ListingError(Exception):
    """Base listing service error."""


class ListingValidationError(ListingError):
    """Raised when a payload, id or status target fails validation."""

    def __init__(self, errors: list[str] | str, message: str = "validation error") -> None:
        if isinstance(errors, str):
            errors = [errors]
        self.errors = errors
        self.message = message
        super().__init__(f"{message}: {'; '.join(errors)}")


class ListingNotFoundError(ListingError):
    """Raised when a listing does not exist or is not visible to the caller."""


class ListingStateConflictError(ListingError):
    """Raised when the review state forbids the requested mutation."""


class ListingDuplicateError(ListingError):
    """Raised when a name or slug collides with an existing listing."""

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        self.retryable = retryable
        super().__init__(message)
