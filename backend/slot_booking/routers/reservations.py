import logging
from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import Actor, get_current_actor, get_session, require_candidate
from ..domain.errors import DomainError, InternalError
from ..infrastructure.repositories import SqlAlchemyReservationRepository, SqlAlchemySlotRepository
from ..models import ReservationStatus
from ..schemas import ReservationCreate, ReservationRead
from ..usecases import reservations as reservation_usecase
from ..utils.audit_log import emit_audit_log
from .errors import http_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["bookings"], dependencies=[Depends(get_current_actor)])


def _audit(**kwargs: Any) -> None:
    try:
        emit_audit_log(**kwargs)
    except RuntimeError as exc:
        logger.error("audit log failed for %s", kwargs.get("action"))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=InternalError("failed to record audit log").to_dict(),
        ) from exc


@router.post("", response_model=ReservationRead, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    payload: ReservationCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_candidate),
) -> ReservationRead:
    slot_repo = SqlAlchemySlotRepository(session)
    res_repo = SqlAlchemyReservationRepository(session)
    # Leaving the block with an exception rolls back the counter increment together with the reservation.
    async with session.begin():
        try:
            reservation, slot = await reservation_usecase.book_slot(
                slot_repo,
                res_repo,
                slot_id=payload.slot_id,
                user_id=actor.user_id,
            )
        except DomainError as exc:
            raise http_error(exc) from exc
        result = ReservationRead.from_db(reservation=reservation, slot=slot)
        # An audit failure here rolls the booking back.
        _audit(
            action="booking.created",
            actor_id=actor.user_id,
            slot_id=result.slot_id,
            reservation_id=result.reservation_id,
            status_to=ReservationStatus.ACTIVE,
            booked_count=slot.booked_count,
            capacity=slot.capacity,
        )
    return result


@router.get("/my", response_model=List[ReservationRead])
async def list_my_reservations(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    from_: Optional[datetime] = Query(default=None, alias="from", description="ISO 8601 with timezone"),
    to: Optional[datetime] = Query(default=None, description="ISO 8601 with timezone"),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_candidate),
) -> list[ReservationRead]:
    res_repo = SqlAlchemyReservationRepository(session)
    try:
        rows = await reservation_usecase.list_user_reservations(
            res_repo,
            user_id=actor.user_id,
            status=status_filter,
            starts_from=from_,
            ends_to=to,
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    return [ReservationRead.from_db(reservation=res, slot=slot) for res, slot in rows]


@router.post("/{reservation_id}/cancel", response_model=ReservationRead)
async def cancel_reservation(
    reservation_id: str,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_candidate),
) -> ReservationRead:
    slot_repo = SqlAlchemySlotRepository(session)
    res_repo = SqlAlchemyReservationRepository(session)
    async with session.begin():
        try:
            reservation, slot = await reservation_usecase.cancel_reservation(
                slot_repo,
                res_repo,
                reservation_id=reservation_id,
                user_id=actor.user_id,
            )
        except DomainError as exc:
            raise http_error(exc) from exc
        result = ReservationRead.from_db(reservation=reservation, slot=slot)
        _audit(
            action="booking.cancelled",
            actor_id=actor.user_id,
            slot_id=result.slot_id,
            reservation_id=result.reservation_id,
            status_from=ReservationStatus.ACTIVE,
            status_to=ReservationStatus.CANCELLED,
            booked_count=slot.booked_count if slot is not None else None,
        )
    return result
