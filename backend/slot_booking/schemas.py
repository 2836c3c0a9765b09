from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_serializer

from .models import Reservation, ReservationStatus, Slot
from .utils.time import utc_naive_to_aware


class SlotCreate(BaseModel):
    starts_at: datetime
    ends_at: datetime
    capacity: int
    tags: List[str] = Field(default_factory=list)


class SlotUpdate(BaseModel):
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    capacity: Optional[int] = None
    tags: Optional[List[str]] = None


class SlotRead(BaseModel):
    slot_id: str
    starts_at: datetime
    ends_at: datetime
    capacity: int
    booked_count: int
    available_seats: int
    created_by: str
    tags: List[str]
    created_at: datetime
    updated_at: datetime

    @field_serializer("starts_at", "ends_at", "created_at", "updated_at")
    def _ser_datetime(self, dt: datetime) -> str:
        return dt.isoformat()

    @classmethod
    def from_db(cls, *, slot: Slot) -> "SlotRead":
        return cls(
            slot_id=slot.id,
            starts_at=utc_naive_to_aware(slot.starts_at),
            ends_at=utc_naive_to_aware(slot.ends_at),
            capacity=slot.capacity,
            booked_count=slot.booked_count,
            available_seats=slot.available_seats,
            created_by=slot.created_by,
            tags=slot.tags,
            created_at=utc_naive_to_aware(slot.created_at),
            updated_at=utc_naive_to_aware(slot.updated_at),
        )


class SlotPage(BaseModel):
    items: List[SlotRead]
    page: int
    limit: int
    total: int


class SlotDeleted(BaseModel):
    slot_id: str
    message: str = "slot deleted"


class ReservationCreate(BaseModel):
    slot_id: str


class ReservationRead(BaseModel):
    reservation_id: str
    slot_id: Optional[str]
    user_id: str
    status: ReservationStatus
    booked_at: datetime
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)
    available_seats: Optional[int] = None

    @field_serializer("booked_at", "starts_at", "ends_at")
    def _ser_datetime(self, dt: Optional[datetime]) -> Optional[str]:
        return dt.isoformat() if dt is not None else None

    @classmethod
    def from_db(cls, *, reservation: Reservation, slot: Optional[Slot]) -> "ReservationRead":
        return cls(
            reservation_id=reservation.id,
            slot_id=reservation.slot_id,
            user_id=reservation.user_id,
            status=reservation.status,
            booked_at=utc_naive_to_aware(reservation.booked_at),
            starts_at=utc_naive_to_aware(slot.starts_at) if slot is not None else None,
            ends_at=utc_naive_to_aware(slot.ends_at) if slot is not None else None,
            tags=slot.tags if slot is not None else [],
            available_seats=slot.available_seats if slot is not None else None,
        )
