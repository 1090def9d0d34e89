"""
Campus Eats — Domain error → HTTP status
"""
from fastapi import HTTPException, status

from campus_eats.core.errors import (
    BusinessRuleError,
    CampusEatsError,
    DataFormatError,
    EmptyOrderError,
    ForbiddenError,
    InvalidQuantityError,
    InvalidStatusError,
    NotFoundError,
)

# Checked in order; the first matching class wins.
_STATUS_BY_ERROR: list[tuple[type[CampusEatsError], int]] = [
    (DataFormatError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (EmptyOrderError, status.HTTP_400_BAD_REQUEST),
    (InvalidStatusError, status.HTTP_400_BAD_REQUEST),
    (InvalidQuantityError, status.HTTP_400_BAD_REQUEST),
    (BusinessRuleError, status.HTTP_409_CONFLICT),
]


def status_for(exc: CampusEatsError) -> int:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def to_http(exc: CampusEatsError) -> HTTPException:
    return HTTPException(status_code=status_for(exc), detail=exc.message)
