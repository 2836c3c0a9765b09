from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional, Tuple, cast

from sqlalchemy import Select, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..domain.errors import DuplicateBookingError
from ..domain.repositories import ReservationRepository, SlotRepository
from ..domain.services import SlotQuery
from ..models import RESERVATION_PAIR_CONSTRAINT, Reservation, ReservationStatus, Slot, SlotTag, User, new_id
from ..utils.time import utc_now_naive


class SqlAlchemySlotRepository(SlotRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def _select(self) -> Select[Tuple[Slot]]:
        # Counter updates bypass the identity map, so always overwrite cached state.
        return (
            select(Slot)
            .options(selectinload(Slot.tag_rows))
            .execution_options(populate_existing=True)
        )

    async def get(self, slot_id: str) -> Slot | None:
        return await self.session.scalar(self._select().where(Slot.id == slot_id))

    async def get_for_update(self, slot_id: str) -> Slot | None:
        return await self.session.scalar(self._select().where(Slot.id == slot_id).with_for_update())

    async def exists(self, slot_id: str) -> bool:
        return await self.session.scalar(select(Slot.id).where(Slot.id == slot_id)) is not None

    async def lock_owner(self, owner_id: str) -> None:
        # Serializes overlap-check-then-write for one owner's slots.
        await self.session.execute(select(User.id).where(User.id == owner_id).with_for_update())

    async def find_overlapping(
        self,
        owner_id: str,
        starts_at: datetime,
        ends_at: datetime,
        exclude_slot_id: str | None = None,
    ) -> Slot | None:
        stmt = (
            select(Slot)
            .where(
                Slot.created_by == owner_id,
                Slot.starts_at < ends_at,
                Slot.ends_at > starts_at,
            )
            .order_by(Slot.starts_at)
            .limit(1)
        )
        if exclude_slot_id is not None:
            stmt = stmt.where(Slot.id != exclude_slot_id)
        return await self.session.scalar(stmt)

    async def create(
        self,
        *,
        owner_id: str,
        starts_at: datetime,
        ends_at: datetime,
        capacity: int,
        tags: Iterable[str],
    ) -> Slot:
        now = utc_now_naive()
        slot = Slot(
            id=new_id(),
            starts_at=starts_at,
            ends_at=ends_at,
            capacity=capacity,
            booked_count=0,
            created_by=owner_id,
            created_at=now,
            updated_at=now,
        )
        slot.tags = tags
        self.session.add(slot)
        await self.session.flush()
        return slot

    async def save(self, slot: Slot) -> Slot:
        slot.updated_at = utc_now_naive()
        self.session.add(slot)
        await self.session.flush()
        return slot

    async def delete(self, slot: Slot) -> None:
        await self.session.delete(slot)
        await self.session.flush()

    async def list_page(self, query: SlotQuery) -> tuple[list[Slot], int]:
        conditions = []
        if query.starts_from is not None:
            conditions.append(Slot.starts_at >= query.starts_from)
        if query.ends_to is not None:
            conditions.append(Slot.ends_at <= query.ends_to)
        if query.tags:
            conditions.append(Slot.tag_rows.any(SlotTag.tag.in_(query.tags)))
        if query.available_only:
            conditions.append(Slot.booked_count < Slot.capacity)

        total = await self.session.scalar(select(func.count(Slot.id)).where(*conditions))
        stmt = (
            self._select()
            .where(*conditions)
            .order_by(Slot.starts_at, Slot.id)
            .offset(query.offset)
            .limit(query.limit)
        )
        rows = await self.session.scalars(stmt)
        return list(rows.all()), int(total or 0)

    async def increment_booked_if_available(self, slot_id: str) -> bool:
        # Single conditional UPDATE: the capacity check and the write cannot interleave.
        stmt = (
            update(Slot)
            .where(Slot.id == slot_id, Slot.booked_count < Slot.capacity)
            .values(booked_count=Slot.booked_count + 1, updated_at=utc_now_naive())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return cast(int, result.rowcount) == 1  # type: ignore[attr-defined]

    async def decrement_booked(self, slot_id: str) -> bool:
        stmt = (
            update(Slot)
            .where(Slot.id == slot_id, Slot.booked_count > 0)
            .values(booked_count=Slot.booked_count - 1, updated_at=utc_now_naive())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return cast(int, result.rowcount) == 1  # type: ignore[attr-defined]


class SqlAlchemyReservationRepository(ReservationRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_for_pair(
        self,
        slot_id: str,
        user_id: str,
        *,
        for_update: bool = False,
    ) -> Reservation | None:
        stmt = select(Reservation).where(
            Reservation.slot_id == slot_id,
            Reservation.user_id == user_id,
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return await self.session.scalar(stmt)

    async def get_for_update(self, reservation_id: str) -> Reservation | None:
        stmt = (
            select(Reservation)
            .where(Reservation.id == reservation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return await self.session.scalar(stmt)

    async def create(self, slot_id: str, user_id: str, status: ReservationStatus) -> Reservation:
        now = utc_now_naive()
        reservation = Reservation(
            id=new_id(),
            slot_id=slot_id,
            user_id=user_id,
            status=status,
            booked_at=now,
            created_at=now,
            updated_at=now,
        )
        self.session.add(reservation)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            # Foreign key and other constraint failures are not duplicates; let them surface as Internal.
            if RESERVATION_PAIR_CONSTRAINT not in str(exc.orig):
                raise
            raise DuplicateBookingError(
                "a reservation for this slot already exists",
                field="slot_id",
                resource_id=slot_id,
            ) from exc
        return reservation

    async def save(self, reservation: Reservation) -> Reservation:
        reservation.updated_at = utc_now_naive()
        self.session.add(reservation)
        await self.session.flush()
        return reservation

    async def list_by_user(
        self,
        user_id: str,
        status: ReservationStatus | None = None,
        starts_from: datetime | None = None,
        ends_to: datetime | None = None,
    ) -> List[Tuple[Reservation, Optional[Slot]]]:
        stmt = (
            select(Reservation, Slot)
            .outerjoin(Slot, Reservation.slot_id == Slot.id)
            .options(selectinload(Slot.tag_rows))
            .where(Reservation.user_id == user_id)
            .order_by(Reservation.booked_at.desc(), Reservation.id)
        )
        if status is not None:
            stmt = stmt.where(Reservation.status == status)
        if starts_from is not None:
            stmt = stmt.where(Slot.starts_at >= starts_from)
        if ends_to is not None:
            stmt = stmt.where(Slot.ends_at <= ends_to)
        rows = await self.session.execute(stmt)
        return cast(List[Tuple[Reservation, Optional[Slot]]], list(rows.all()))
