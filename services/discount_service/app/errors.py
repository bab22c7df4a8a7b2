"""Exceptions raised by the discount engine."""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status


class DiscountEngineError(Exception):
    """Base class for engine errors."""


class DiscountValidationError(DiscountEngineError):
    """Malformed dates or out-of-range discount values."""


class CampaignValidationError(DiscountValidationError):
    """A campaign with a bad window, value or target list."""


class ConflictError(DiscountEngineError):
    """A campaign target is already reserved, or a write raced a newer version."""

    def __init__(self, message: str, *, conflicting_ids: list[int] | None = None) -> None:
        super().__init__(message)
        self.conflicting_ids = list(conflicting_ids or [])


class NotFoundError(DiscountEngineError):
    """A campaign, product, variant or target does not exist."""


class PersistenceError(DiscountEngineError):
    """Writing a single item failed; batches log it and move on."""

    def __init__(self, message: str, *, product_id: int | None = None) -> None:
        super().__init__(message)
        self.product_id = product_id


def to_http_exception(exc: DiscountEngineError) -> HTTPException:
    """Map an engine error onto the HTTP status the API reports for it."""

    detail: Any = str(exc)
    if isinstance(exc, NotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, ConflictError):
        status_code = status.HTTP_409_CONFLICT
        detail = {"message": str(exc), "conflictingIds": exc.conflicting_ids}
    elif isinstance(exc, DiscountValidationError):
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=status_code, detail=detail)
