import logging
from datetime import datetime
from typing import Iterable, Optional

from ..domain.errors import ForbiddenError, HasActiveBookingsError, IntervalConflictError, NotFoundError
from ..domain.repositories import SlotRepository
from ..domain.services import (
    SlotQuery,
    parse_id,
    to_utc_instant,
    validate_capacity,
    validate_capacity_change,
    validate_interval,
)
from ..models import Slot

logger = logging.getLogger(__name__)


async def find_conflicting_slot(
    slot_repo: SlotRepository,
    *,
    owner_id: str,
    starts_at: datetime,
    ends_at: datetime,
    exclude_slot_id: str | None = None,
) -> Slot | None:
    return await slot_repo.find_overlapping(owner_id, starts_at, ends_at, exclude_slot_id)


async def has_overlap(
    slot_repo: SlotRepository,
    *,
    owner_id: str,
    starts_at: datetime,
    ends_at: datetime,
    exclude_slot_id: str | None = None,
) -> bool:
    conflict = await find_conflicting_slot(
        slot_repo,
        owner_id=owner_id,
        starts_at=starts_at,
        ends_at=ends_at,
        exclude_slot_id=exclude_slot_id,
    )
    return conflict is not None


async def _ensure_no_overlap(
    slot_repo: SlotRepository,
    *,
    owner_id: str,
    starts_at: datetime,
    ends_at: datetime,
    exclude_slot_id: str | None = None,
) -> None:
    await slot_repo.lock_owner(owner_id)
    conflict = await find_conflicting_slot(
        slot_repo,
        owner_id=owner_id,
        starts_at=starts_at,
        ends_at=ends_at,
        exclude_slot_id=exclude_slot_id,
    )
    if conflict is not None:
        logger.info("slot interval conflicts with slot %s of owner %s", conflict.id, owner_id)
        raise IntervalConflictError(
            "slot time overlaps with another slot you created",
            field="starts_at",
            resource_id=conflict.id,
        )


async def create_slot(
    slot_repo: SlotRepository,
    *,
    owner_id: str,
    starts_at: datetime,
    ends_at: datetime,
    capacity: int,
    tags: Iterable[str] = (),
) -> Slot:
    start = to_utc_instant(starts_at, field="starts_at")
    end = to_utc_instant(ends_at, field="ends_at")
    validate_interval(start, end)
    validate_capacity(capacity)
    await _ensure_no_overlap(slot_repo, owner_id=owner_id, starts_at=start, ends_at=end)
    slot = await slot_repo.create(
        owner_id=owner_id,
        starts_at=start,
        ends_at=end,
        capacity=capacity,
        tags=tags,
    )
    return slot


async def get_slot(slot_repo: SlotRepository, *, slot_id: str) -> Slot:
    canonical_id = parse_id(slot_id, field="slot_id")
    slot = await slot_repo.get(canonical_id)
    if slot is None:
        raise NotFoundError("slot not found", resource_id=canonical_id)
    return slot


async def list_slots(slot_repo: SlotRepository, *, query: SlotQuery) -> tuple[list[Slot], int]:
    return await slot_repo.list_page(query)


async def _load_owned_for_update(slot_repo: SlotRepository, *, slot_id: str, owner_id: str) -> Slot:
    canonical_id = parse_id(slot_id, field="slot_id")
    slot = await slot_repo.get_for_update(canonical_id)
    if slot is None:
        raise NotFoundError("slot not found", resource_id=canonical_id)
    if slot.created_by != owner_id:
        raise ForbiddenError("you can only modify your own slots", resource_id=canonical_id)
    return slot


async def update_slot(
    slot_repo: SlotRepository,
    *,
    slot_id: str,
    owner_id: str,
    starts_at: Optional[datetime] = None,
    ends_at: Optional[datetime] = None,
    capacity: Optional[int] = None,
    tags: Optional[Iterable[str]] = None,
) -> Slot:
    # The row lock makes the capacity check below race-free against concurrent bookings.
    slot = await _load_owned_for_update(slot_repo, slot_id=slot_id, owner_id=owner_id)

    new_start, new_end = slot.starts_at, slot.ends_at
    interval_changed = starts_at is not None or ends_at is not None
    if interval_changed:
        if starts_at is not None:
            new_start = to_utc_instant(starts_at, field="starts_at")
        if ends_at is not None:
            new_end = to_utc_instant(ends_at, field="ends_at")
        validate_interval(new_start, new_end)
    if capacity is not None:
        validate_capacity_change(capacity, slot.booked_count, slot_id=slot.id)
    if interval_changed:
        await _ensure_no_overlap(
            slot_repo,
            owner_id=owner_id,
            starts_at=new_start,
            ends_at=new_end,
            exclude_slot_id=slot.id,
        )

    # Everything is validated; apply the merged changes.
    slot.starts_at = new_start
    slot.ends_at = new_end
    if capacity is not None:
        slot.capacity = capacity
    if tags is not None:
        slot.tags = tags
    return await slot_repo.save(slot)


async def delete_slot(slot_repo: SlotRepository, *, slot_id: str, owner_id: str) -> Slot:
    slot = await _load_owned_for_update(slot_repo, slot_id=slot_id, owner_id=owner_id)
    if slot.booked_count > 0:
        raise HasActiveBookingsError(
            f"slot has {slot.booked_count} active bookings",
            resource_id=slot.id,
        )
    await slot_repo.delete(slot)
    return slot
