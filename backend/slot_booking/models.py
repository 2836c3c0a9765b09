from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Iterable, Optional

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql.sqltypes import DateTime, Integer, String

ID_LENGTH = 36
TAG_LENGTH = 64
RESERVATION_PAIR_CONSTRAINT = "uq_res_slot_user"


def new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class UserRole(StrEnum):
    ADMIN = "ADMIN"
    CANDIDATE = "CANDIDATE"


class ReservationStatus(StrEnum):
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)

    id: Mapped[str] = mapped_column(String(ID_LENGTH), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        Enum(
            UserRole,
            values_callable=lambda enum_cls: [e.value for e in enum_cls],
            native_enum=False,
        ),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class Slot(Base):
    __tablename__ = "slots"
    __table_args__ = (
        CheckConstraint("starts_at < ends_at", name="chk_slots_time"),
        CheckConstraint("capacity >= 1", name="chk_slots_capacity"),
        CheckConstraint("booked_count >= 0 AND booked_count <= capacity", name="chk_slots_booked_count"),
        Index("idx_slots_owner_time", "created_by", "starts_at"),
        Index("idx_slots_starts_at", "starts_at"),
    )

    id: Mapped[str] = mapped_column(String(ID_LENGTH), primary_key=True, default=new_id)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    booked_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_by: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    tag_rows: Mapped[list["SlotTag"]] = relationship(
        back_populates="slot",
        cascade="all, delete-orphan",
        order_by="SlotTag.id",
    )
    reservations: Mapped[list["Reservation"]] = relationship(back_populates="slot", passive_deletes=True)

    @property
    def tags(self) -> list[str]:
        return [row.tag for row in self.tag_rows]

    @tags.setter
    def tags(self, values: Iterable[str]) -> None:
        # Reuse rows for kept tags so the (slot_id, tag) constraint never sees a transient duplicate.
        existing = {row.tag: row for row in self.tag_rows}
        self.tag_rows = [existing.get(tag) or SlotTag(tag=tag) for tag in normalize_tags(values)]

    @property
    def available_seats(self) -> int:
        return self.capacity - (self.booked_count or 0)


class SlotTag(Base):
    __tablename__ = "slot_tags"
    __table_args__ = (
        UniqueConstraint("slot_id", "tag", name="uq_slot_tags"),
        Index("idx_slot_tags_tag", "tag"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slot_id: Mapped[str] = mapped_column(ForeignKey("slots.id", ondelete="CASCADE"), nullable=False)
    tag: Mapped[str] = mapped_column(String(TAG_LENGTH), nullable=False)

    slot: Mapped["Slot"] = relationship(back_populates="tag_rows")


class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        UniqueConstraint("slot_id", "user_id", name=RESERVATION_PAIR_CONSTRAINT),
        Index("idx_res_slot", "slot_id"),
        Index("idx_res_user", "user_id"),
    )

    id: Mapped[str] = mapped_column(String(ID_LENGTH), primary_key=True, default=new_id)
    # NULL once the slot is deleted; only slots without active reservations can be deleted.
    slot_id: Mapped[Optional[str]] = mapped_column(ForeignKey("slots.id", ondelete="SET NULL"), nullable=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    status: Mapped[ReservationStatus] = mapped_column(
        Enum(
            ReservationStatus,
            values_callable=lambda enum_cls: [e.value for e in enum_cls],
            native_enum=False,
        ),
        nullable=False,
        default=ReservationStatus.ACTIVE,
    )
    booked_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    slot: Mapped[Optional["Slot"]] = relationship(back_populates="reservations")


def normalize_tags(values: Iterable[str]) -> list[str]:
    """Strip, drop blanks and de-duplicate while keeping the caller's order."""
    cleaned = (value.strip() for value in values)
    return list(dict.fromkeys(tag for tag in cleaned if tag))
