from __future__ import annotations

from datetime import datetime
from typing import Iterable, Protocol

from ..models import Reservation, ReservationStatus, Slot
from .services import SlotQuery


class SlotRepository(Protocol):
    async def get(self, slot_id: str) -> Slot | None: ...

    async def get_for_update(self, slot_id: str) -> Slot | None: ...

    async def exists(self, slot_id: str) -> bool: ...

    async def lock_owner(self, owner_id: str) -> None: ...

    async def find_overlapping(
        self,
        owner_id: str,
        starts_at: datetime,
        ends_at: datetime,
        exclude_slot_id: str | None = None,
    ) -> Slot | None: ...

    async def create(
        self,
        *,
        owner_id: str,
        starts_at: datetime,
        ends_at: datetime,
        capacity: int,
        tags: Iterable[str],
    ) -> Slot: ...

    async def save(self, slot: Slot) -> Slot: ...

    async def delete(self, slot: Slot) -> None: ...

    async def list_page(self, query: SlotQuery) -> tuple[list[Slot], int]: ...

    async def increment_booked_if_available(self, slot_id: str) -> bool:
        """Atomically add one seat when booked_count < capacity. Returns False when no row matched."""
        ...

    async def decrement_booked(self, slot_id: str) -> bool: ...


class ReservationRepository(Protocol):
    async def find_for_pair(
        self,
        slot_id: str,
        user_id: str,
        *,
        for_update: bool = False,
    ) -> Reservation | None: ...

    async def get_for_update(self, reservation_id: str) -> Reservation | None: ...

    async def create(self, slot_id: str, user_id: str, status: ReservationStatus) -> Reservation:
        """Insert a reservation. Raises DuplicateBookingError if the pair already exists."""
        ...

    async def save(self, reservation: Reservation) -> Reservation: ...

    async def list_by_user(
        self,
        user_id: str,
        status: ReservationStatus | None = None,
        starts_from: datetime | None = None,
        ends_to: datetime | None = None,
    ) -> list[tuple[Reservation, Slot | None]]: ...
