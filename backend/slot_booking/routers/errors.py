from fastapi import HTTPException, status

from ..domain.errors import (
    AlreadyCancelledError,
    CapacityConflictError,
    DomainError,
    DuplicateBookingError,
    ForbiddenError,
    HasActiveBookingsError,
    IntervalConflictError,
    InvalidCapacityError,
    InvalidIdentifierError,
    InvalidIntervalError,
    InvalidQueryError,
    NotFoundError,
    SlotFullError,
    UnauthorizedError,
)

_STATUS_BY_ERROR: dict[type[DomainError], int] = {
    InvalidIdentifierError: status.HTTP_400_BAD_REQUEST,
    InvalidIntervalError: status.HTTP_400_BAD_REQUEST,
    InvalidCapacityError: status.HTTP_400_BAD_REQUEST,
    InvalidQueryError: status.HTTP_400_BAD_REQUEST,
    AlreadyCancelledError: status.HTTP_400_BAD_REQUEST,
    UnauthorizedError: status.HTTP_401_UNAUTHORIZED,
    ForbiddenError: status.HTTP_403_FORBIDDEN,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    DuplicateBookingError: status.HTTP_409_CONFLICT,
    SlotFullError: status.HTTP_409_CONFLICT,
    IntervalConflictError: status.HTTP_409_CONFLICT,
    CapacityConflictError: status.HTTP_409_CONFLICT,
    HasActiveBookingsError: status.HTTP_409_CONFLICT,
}


def http_error(exc: DomainError) -> HTTPException:
    status_code = _STATUS_BY_ERROR.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    return HTTPException(status_code=status_code, detail=exc.to_dict())
