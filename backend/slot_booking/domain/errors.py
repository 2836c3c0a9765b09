"""Domain errors raised by the booking and slot use cases.

Each class maps to exactly one failure kind. Routers translate them into HTTP
responses; nothing below the router layer knows about status codes.
"""

from __future__ import annotations

from typing import Any, Optional


class DomainError(Exception):
    kind: str = "Internal"

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.resource_id = resource_id

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.field is not None:
            payload["field"] = self.field
        if self.resource_id is not None:
            payload["resource_id"] = self.resource_id
        return payload


class InvalidIdentifierError(DomainError):
    kind = "InvalidIdentifier"


class InvalidIntervalError(DomainError):
    kind = "InvalidInterval"


class InvalidCapacityError(DomainError):
    kind = "InvalidCapacity"


class InvalidQueryError(DomainError):
    kind = "InvalidQuery"


class NotFoundError(DomainError):
    kind = "NotFound"


class UnauthorizedError(DomainError):
    kind = "Unauthorized"


class ForbiddenError(DomainError):
    kind = "Forbidden"


class DuplicateBookingError(DomainError):
    kind = "DuplicateBooking"


class SlotFullError(DomainError):
    kind = "SlotFull"


class IntervalConflictError(DomainError):
    kind = "IntervalConflict"


class CapacityConflictError(DomainError):
    kind = "CapacityConflict"


class HasActiveBookingsError(DomainError):
    kind = "HasActiveBookings"


class AlreadyCancelledError(DomainError):
    kind = "AlreadyCancelled"


class InternalError(DomainError):
    kind = "Internal"
