import logging
from datetime import datetime
from typing import Optional

from ..domain.errors import (
    AlreadyCancelledError,
    DuplicateBookingError,
    ForbiddenError,
    InternalError,
    InvalidQueryError,
    NotFoundError,
    SlotFullError,
)
from ..domain.repositories import ReservationRepository, SlotRepository
from ..domain.services import parse_id, validate_date_range
from ..models import Reservation, ReservationStatus, Slot
from ..utils.time import utc_now_naive

logger = logging.getLogger(__name__)


async def book_slot(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    *,
    slot_id: str,
    user_id: str,
) -> tuple[Reservation, Slot]:
    """Reserve one seat of a slot for a user.

    Must run inside a transaction owned by the caller: any error raised after
    the counter increment has to roll back the increment as well.
    """
    canonical_id = parse_id(slot_id, field="slot_id")

    # Cheap pre-check so guaranteed duplicates never contend on the slot row.
    # The authoritative guard is the (slot_id, user_id) unique constraint below.
    existing = await res_repo.find_for_pair(canonical_id, user_id)
    if existing is not None and existing.status == ReservationStatus.ACTIVE:
        raise DuplicateBookingError(
            "you have already booked this slot",
            field="slot_id",
            resource_id=existing.id,
        )

    if not await slot_repo.increment_booked_if_available(canonical_id):
        if await slot_repo.exists(canonical_id):
            raise SlotFullError("no seats available in this slot", resource_id=canonical_id)
        raise NotFoundError("slot not found", resource_id=canonical_id)

    reservation = await res_repo.find_for_pair(canonical_id, user_id, for_update=True)
    if reservation is None:
        reservation = await res_repo.create(canonical_id, user_id, ReservationStatus.ACTIVE)
    elif reservation.status == ReservationStatus.ACTIVE:
        # A concurrent request for the same pair committed between the pre-check and the lock.
        raise DuplicateBookingError(
            "you have already booked this slot",
            field="slot_id",
            resource_id=reservation.id,
        )
    else:
        reservation.status = ReservationStatus.ACTIVE
        reservation.booked_at = utc_now_naive()
        reservation = await res_repo.save(reservation)
        logger.info("reactivated reservation %s for slot %s", reservation.id, canonical_id)

    slot = await slot_repo.get(canonical_id)
    if slot is None:
        raise InternalError("slot disappeared while booking", resource_id=canonical_id)
    return reservation, slot


async def cancel_reservation(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    *,
    reservation_id: str,
    user_id: str,
) -> tuple[Reservation, Optional[Slot]]:
    canonical_id = parse_id(reservation_id, field="reservation_id")
    reservation = await res_repo.get_for_update(canonical_id)
    if reservation is None:
        raise NotFoundError("reservation not found", resource_id=canonical_id)
    if reservation.user_id != user_id:
        raise ForbiddenError("you can only cancel your own reservations", resource_id=canonical_id)
    if reservation.status == ReservationStatus.CANCELLED:
        raise AlreadyCancelledError("reservation is already cancelled", resource_id=canonical_id)
    if reservation.slot_id is None:
        raise InternalError("active reservation has no slot", resource_id=canonical_id)

    reservation.status = ReservationStatus.CANCELLED
    reservation = await res_repo.save(reservation)

    # Safe as a plain decrement: the status guard above means this seat was counted exactly once.
    if not await slot_repo.decrement_booked(reservation.slot_id):
        logger.error(
            "occupancy counter out of sync for slot %s while cancelling %s",
            reservation.slot_id,
            canonical_id,
        )
        raise InternalError("occupancy counter out of sync", resource_id=reservation.slot_id)

    slot = await slot_repo.get(reservation.slot_id)
    return reservation, slot


async def list_user_reservations(
    res_repo: ReservationRepository,
    *,
    user_id: str,
    status: Optional[str] = None,
    starts_from: Optional[datetime] = None,
    ends_to: Optional[datetime] = None,
) -> list[tuple[Reservation, Optional[Slot]]]:
    status_value: ReservationStatus | None = None
    if status is not None:
        try:
            status_value = ReservationStatus(status.upper())
        except ValueError as exc:
            raise InvalidQueryError("status must be either ACTIVE or CANCELLED", field="status") from exc
    start, end = validate_date_range(starts_from, ends_to)
    return await res_repo.list_by_user(user_id, status=status_value, starts_from=start, ends_to=end)
