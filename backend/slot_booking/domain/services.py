import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .errors import (
    CapacityConflictError,
    InvalidCapacityError,
    InvalidIdentifierError,
    InvalidIntervalError,
    InvalidQueryError,
)


@dataclass(frozen=True)
class SlotQuery:
    page: int
    limit: int
    starts_from: Optional[datetime] = None
    ends_to: Optional[datetime] = None
    tags: tuple[str, ...] = field(default_factory=tuple)
    available_only: bool = False

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def parse_id(value: object, *, field: str) -> str:
    """Return the canonical form of a UUID identifier or raise InvalidIdentifierError."""
    try:
        return str(uuid.UUID(str(value)))
    except (TypeError, ValueError) as exc:
        raise InvalidIdentifierError(f"{field} is not a valid identifier", field=field) from exc


def to_utc_instant(value: datetime, *, field: str) -> datetime:
    """Convert an aware datetime to the naive UTC form stored in the database."""
    if value.tzinfo is None or value.utcoffset() is None:
        raise InvalidIntervalError(f"{field} must include a timezone", field=field)
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def intervals_overlap(
    start_a: datetime,
    end_a: datetime,
    start_b: datetime,
    end_b: datetime,
) -> bool:
    """Half-open intervals conflict unless they are disjoint; touching ends do not conflict."""
    return start_a < end_b and start_b < end_a


def validate_interval(starts_at: datetime, ends_at: datetime) -> None:
    if starts_at >= ends_at:
        raise InvalidIntervalError("starts_at must be earlier than ends_at", field="ends_at")


def validate_capacity(capacity: int) -> None:
    if capacity < 1:
        raise InvalidCapacityError("capacity must be >= 1", field="capacity")


def validate_capacity_change(capacity: int, booked_count: int, *, slot_id: str) -> None:
    validate_capacity(capacity)
    if capacity < booked_count:
        raise CapacityConflictError(
            f"cannot reduce capacity to {capacity}: {booked_count} seats already booked",
            field="capacity",
            resource_id=slot_id,
        )


def build_slot_query(
    *,
    page: int,
    limit: int,
    max_limit: int,
    starts_from: Optional[datetime],
    ends_to: Optional[datetime],
    tags: Optional[str],
    available_only: bool,
) -> SlotQuery:
    if page < 1:
        raise InvalidQueryError("page must be >= 1", field="page")
    if limit < 1 or limit > max_limit:
        raise InvalidQueryError(f"limit must be between 1 and {max_limit}", field="limit")
    start, end = validate_date_range(starts_from, ends_to)
    tag_list = tuple(dict.fromkeys(t.strip() for t in (tags or "").split(",") if t.strip()))
    return SlotQuery(
        page=page,
        limit=limit,
        starts_from=start,
        ends_to=end,
        tags=tag_list,
        available_only=available_only,
    )


def validate_date_range(
    starts_from: Optional[datetime],
    ends_to: Optional[datetime],
) -> tuple[Optional[datetime], Optional[datetime]]:
    start = _query_instant(starts_from, field="from")
    end = _query_instant(ends_to, field="to")
    if start is not None and end is not None and start > end:
        raise InvalidQueryError("from must not be later than to", field="from")
    return start, end


def _query_instant(value: Optional[datetime], *, field: str) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return to_utc_instant(value, field=field)
    except InvalidIntervalError as exc:
        raise InvalidQueryError(exc.message, field=field) from exc
