"""In-memory stand-ins for the SQLAlchemy repositories.

Every repository call yields to the event loop first, so concurrent use cases
interleave between steps the way separate database sessions would. Conditional
counter updates stay atomic (no await between check and write), row locks are
held until the surrounding transaction ends, and mutations are undone when the
transaction exits with an exception.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Callable, Iterable, Optional

from slot_booking.domain.errors import DuplicateBookingError
from slot_booking.domain.services import SlotQuery, intervals_overlap
from slot_booking.models import Reservation, ReservationStatus, Slot, new_id

_current_tx: ContextVar[Optional["FakeTransaction"]] = ContextVar("fake_tx", default=None)

BASE_TIME = datetime(2030, 1, 7, 9, 0)


def utc(hour: int, minute: int = 0, *, day_offset: int = 0) -> datetime:
    """Aware UTC datetime on the reference day, as the API layer would pass it."""
    naive = BASE_TIME.replace(hour=hour, minute=minute) + timedelta(days=day_offset)
    return naive.replace(tzinfo=timezone.utc)


def naive(hour: int, minute: int = 0, *, day_offset: int = 0) -> datetime:
    return utc(hour, minute, day_offset=day_offset).replace(tzinfo=None)


class FakeTransaction:
    def __init__(self) -> None:
        self.undo: list[Callable[[], None]] = []
        self.locks: dict[str, asyncio.Lock] = {}


class InMemoryStore:
    def __init__(self) -> None:
        self.slots: dict[str, Slot] = {}
        self.reservations: dict[str, Reservation] = {}
        self._reservation_state: dict[str, tuple[ReservationStatus, datetime]] = {}
        self._row_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self.commits = 0
        self.rollbacks = 0
        self.slot_repo = FakeSlotRepo(self)
        self.res_repo = FakeReservationRepo(self)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[FakeTransaction]:
        tx = FakeTransaction()
        token = _current_tx.set(tx)
        try:
            yield tx
        except BaseException:
            for undo in reversed(tx.undo):
                undo()
            self.rollbacks += 1
            raise
        else:
            self.commits += 1
        finally:
            _current_tx.reset(token)
            for lock in tx.locks.values():
                lock.release()

    def record(self, undo: Callable[[], None]) -> None:
        tx = _current_tx.get()
        if tx is not None:
            tx.undo.append(undo)

    async def lock_row(self, key: str) -> None:
        tx = _current_tx.get()
        if tx is None or key in tx.locks:
            return
        lock = self._row_locks[key]
        await lock.acquire()
        tx.locks[key] = lock

    # Seeding helpers (synchronous, outside any transaction).

    def add_slot(
        self,
        *,
        owner_id: str,
        starts_at: datetime,
        ends_at: datetime,
        capacity: int = 1,
        tags: Iterable[str] = (),
    ) -> Slot:
        slot = Slot(
            id=new_id(),
            starts_at=starts_at,
            ends_at=ends_at,
            capacity=capacity,
            booked_count=0,
            created_by=owner_id,
            created_at=BASE_TIME,
            updated_at=BASE_TIME,
        )
        slot.tags = tags
        self.slots[slot.id] = slot
        return slot

    def active_count(self, slot_id: str) -> int:
        return sum(
            1
            for r in self.reservations.values()
            if r.slot_id == slot_id and r.status == ReservationStatus.ACTIVE
        )

    def assert_consistent(self) -> None:
        for slot in self.slots.values():
            assert slot.booked_count == self.active_count(slot.id), slot.id
            assert 0 <= slot.booked_count <= slot.capacity, slot.id


class FakeSlotRepo:
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store

    async def get(self, slot_id: str) -> Slot | None:
        await asyncio.sleep(0)
        return self.store.slots.get(slot_id)

    async def get_for_update(self, slot_id: str) -> Slot | None:
        await asyncio.sleep(0)
        await self.store.lock_row(f"slot:{slot_id}")
        return self.store.slots.get(slot_id)

    async def exists(self, slot_id: str) -> bool:
        await asyncio.sleep(0)
        return slot_id in self.store.slots

    async def lock_owner(self, owner_id: str) -> None:
        await asyncio.sleep(0)
        await self.store.lock_row(f"user:{owner_id}")

    async def find_overlapping(
        self,
        owner_id: str,
        starts_at: datetime,
        ends_at: datetime,
        exclude_slot_id: str | None = None,
    ) -> Slot | None:
        await asyncio.sleep(0)
        candidates = sorted(
            (
                s
                for s in self.store.slots.values()
                if s.created_by == owner_id
                and s.id != exclude_slot_id
                and intervals_overlap(s.starts_at, s.ends_at, starts_at, ends_at)
            ),
            key=lambda s: s.starts_at,
        )
        return candidates[0] if candidates else None

    async def create(
        self,
        *,
        owner_id: str,
        starts_at: datetime,
        ends_at: datetime,
        capacity: int,
        tags: Iterable[str],
    ) -> Slot:
        await asyncio.sleep(0)
        slot = self.store.add_slot(
            owner_id=owner_id,
            starts_at=starts_at,
            ends_at=ends_at,
            capacity=capacity,
            tags=tags,
        )
        self.store.record(lambda: self.store.slots.pop(slot.id, None))
        return slot

    async def save(self, slot: Slot) -> Slot:
        await asyncio.sleep(0)
        return slot

    async def delete(self, slot: Slot) -> None:
        await asyncio.sleep(0)
        self.store.slots.pop(slot.id, None)
        orphaned = [r for r in self.store.reservations.values() if r.slot_id == slot.id]
        for reservation in orphaned:
            reservation.slot_id = None

        def _undo() -> None:
            self.store.slots[slot.id] = slot
            for reservation in orphaned:
                reservation.slot_id = slot.id

        self.store.record(_undo)

    async def list_page(self, query: SlotQuery) -> tuple[list[Slot], int]:
        await asyncio.sleep(0)
        rows = list(self.store.slots.values())
        if query.starts_from is not None:
            rows = [s for s in rows if s.starts_at >= query.starts_from]
        if query.ends_to is not None:
            rows = [s for s in rows if s.ends_at <= query.ends_to]
        if query.tags:
            rows = [s for s in rows if set(s.tags) & set(query.tags)]
        if query.available_only:
            rows = [s for s in rows if s.booked_count < s.capacity]
        rows.sort(key=lambda s: (s.starts_at, s.id))
        return rows[query.offset : query.offset + query.limit], len(rows)

    async def increment_booked_if_available(self, slot_id: str) -> bool:
        await asyncio.sleep(0)
        # An UPDATE waits for any FOR UPDATE lock on the row and keeps its own until the end.
        await self.store.lock_row(f"slot:{slot_id}")
        slot = self.store.slots.get(slot_id)
        if slot is None or slot.booked_count >= slot.capacity:
            return False
        slot.booked_count += 1
        self.store.record(lambda: setattr(slot, "booked_count", slot.booked_count - 1))
        return True

    async def decrement_booked(self, slot_id: str) -> bool:
        await asyncio.sleep(0)
        await self.store.lock_row(f"slot:{slot_id}")
        slot = self.store.slots.get(slot_id)
        if slot is None or slot.booked_count <= 0:
            return False
        slot.booked_count -= 1
        self.store.record(lambda: setattr(slot, "booked_count", slot.booked_count + 1))
        return True


class FakeReservationRepo:
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store

    def _pair(self, slot_id: str, user_id: str) -> Reservation | None:
        for reservation in self.store.reservations.values():
            if reservation.slot_id == slot_id and reservation.user_id == user_id:
                return reservation
        return None

    async def find_for_pair(
        self,
        slot_id: str,
        user_id: str,
        *,
        for_update: bool = False,
    ) -> Reservation | None:
        await asyncio.sleep(0)
        if for_update:
            await self.store.lock_row(f"pair:{slot_id}:{user_id}")
        return self._pair(slot_id, user_id)

    async def get_for_update(self, reservation_id: str) -> Reservation | None:
        await asyncio.sleep(0)
        await self.store.lock_row(f"reservation:{reservation_id}")
        return self.store.reservations.get(reservation_id)

    async def create(self, slot_id: str, user_id: str, status: ReservationStatus) -> Reservation:
        await asyncio.sleep(0)
        if self._pair(slot_id, user_id) is not None:
            raise DuplicateBookingError("a reservation for this slot already exists", resource_id=slot_id)
        reservation = Reservation(
            id=new_id(),
            slot_id=slot_id,
            user_id=user_id,
            status=status,
            booked_at=BASE_TIME,
            created_at=BASE_TIME,
            updated_at=BASE_TIME,
        )
        self.store.reservations[reservation.id] = reservation
        self.store._reservation_state[reservation.id] = (reservation.status, reservation.booked_at)

        def _undo() -> None:
            self.store.reservations.pop(reservation.id, None)
            self.store._reservation_state.pop(reservation.id, None)

        self.store.record(_undo)
        return reservation

    async def save(self, reservation: Reservation) -> Reservation:
        await asyncio.sleep(0)
        previous = self.store._reservation_state[reservation.id]
        self.store._reservation_state[reservation.id] = (reservation.status, reservation.booked_at)

        def _undo() -> None:
            reservation.status, reservation.booked_at = previous
            self.store._reservation_state[reservation.id] = previous

        self.store.record(_undo)
        return reservation

    async def list_by_user(
        self,
        user_id: str,
        status: ReservationStatus | None = None,
        starts_from: datetime | None = None,
        ends_to: datetime | None = None,
    ) -> list[tuple[Reservation, Slot | None]]:
        await asyncio.sleep(0)
        rows: list[tuple[Reservation, Slot | None]] = []
        for reservation in self.store.reservations.values():
            if reservation.user_id != user_id:
                continue
            if status is not None and reservation.status != status:
                continue
            slot = self.store.slots.get(reservation.slot_id) if reservation.slot_id else None
            if starts_from is not None and (slot is None or slot.starts_at < starts_from):
                continue
            if ends_to is not None and (slot is None or slot.ends_at > ends_to):
                continue
            rows.append((reservation, slot))
        rows.sort(key=lambda row: row[0].booked_at, reverse=True)
        return rows
