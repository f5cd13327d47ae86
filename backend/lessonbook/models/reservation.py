# backend/lessonbook/models/reservation.py
"""
Reservation models for the lessonbook engine.

A reservation is an exclusive hold on one resource's time window. Single
lessons have capacity 1; group courses carry a capacity and a supervisor
sub-limit and collect participants until full.

Reservations are never physically deleted: cancellation is a status flag so
invoices referencing them keep their history.
"""

from enum import Enum
import logging
from typing import Any

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base

logger = logging.getLogger(__name__)


class ReservationStatus(str, Enum):
    """Reservation lifecycle statuses."""

    HELD = "HELD"  # Created, waiting for payment or payment-method selection
    CONFIRMED = "CONFIRMED"  # Paid or payment method accepted
    COMPLETED = "COMPLETED"  # Lesson took place (marked after the fact)
    CANCELLED = "CANCELLED"  # Expired, declined or cancelled by the customer

    @classmethod
    def active(cls) -> tuple["ReservationStatus", ...]:
        """Statuses that occupy their time window."""
        return (cls.HELD, cls.CONFIRMED)


class ResourceType(str, Enum):
    """What kind of session the reservation books."""

    SINGLE_LESSON = "single_lesson"
    GROUP_COURSE = "group_course"


class Reservation(Base):
    """
    Exclusive hold on a resource/time window.

    Design: the time window is stored directly on the reservation so it stays
    meaningful even if the slot templates change afterwards.
    """

    __tablename__ = "reservations"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))

    resource_id = Column(String(64), nullable=False, index=True)
    resource_type = Column(String(20), nullable=False, default=ResourceType.SINGLE_LESSON.value)
    lesson_type = Column(String(100), nullable=True)
    booked_by_identity = Column(String(64), nullable=True, index=True)

    scheduled_date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    buffer_minutes = Column(Integer, nullable=False, default=0)

    capacity = Column(Integer, nullable=False, default=1)
    supervisor_limit = Column(Integer, nullable=False, default=0)
    current_participant_count = Column(Integer, nullable=False, default=0)
    supervisor_count = Column(Integer, nullable=False, default=0)

    status = Column(String(20), nullable=False, default=ReservationStatus.HELD.value, index=True)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_by = Column(String(64), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    participants = relationship(
        "ReservationParticipant",
        back_populates="reservation",
        order_by="ReservationParticipant.position",
        lazy="selectin",
    )
    invoices = relationship("Invoice", back_populates="reservation")

    __table_args__ = (
        CheckConstraint(
            "status IN ('HELD', 'CONFIRMED', 'COMPLETED', 'CANCELLED')",
            name="ck_reservations_status",
        ),
        CheckConstraint(
            "resource_type IN ('single_lesson', 'group_course')",
            name="ck_reservations_resource_type",
        ),
        CheckConstraint("duration_minutes > 0", name="ck_reservations_duration_positive"),
        CheckConstraint("start_time < end_time", name="ck_reservations_time_order"),
        CheckConstraint("capacity >= 1", name="ck_reservations_capacity_positive"),
        CheckConstraint(
            "current_participant_count >= 0 AND current_participant_count <= capacity",
            name="ck_reservations_participants_within_capacity",
        ),
        CheckConstraint(
            "supervisor_count >= 0 AND supervisor_count <= supervisor_limit "
            "AND supervisor_count <= current_participant_count",
            name="ck_reservations_supervisors_within_limit",
        ),
        Index("idx_reservations_resource_date_status", "resource_id", "scheduled_date", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status in {s.value for s in ReservationStatus.active()}

    @property
    def seats_left(self) -> int:
        return max(0, int(self.capacity) - int(self.current_participant_count))

    def __repr__(self) -> str:
        return (
            f"<Reservation {self.id}: resource={self.resource_id}, date={self.scheduled_date}, "
            f"time={self.start_time}-{self.end_time}, "
            f"seats={self.current_participant_count}/{self.capacity}, status={self.status}>"
        )


class ReservationParticipant(Base):
    """One seat in a reservation: a known identity or a guest contact."""

    __tablename__ = "reservation_participants"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    reservation_id = Column(
        String(26), ForeignKey("reservations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    identity_id = Column(String(64), nullable=True)
    guest_name = Column(String(255), nullable=True)
    guest_email = Column(String(255), nullable=True)
    guest_phone = Column(String(50), nullable=True)
    is_supervisor = Column(Boolean, nullable=False, default=False)
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    reservation = relationship("Reservation", back_populates="participants")

    __table_args__ = (
        CheckConstraint(
            "identity_id IS NOT NULL OR guest_name IS NOT NULL",
            name="ck_participants_identity_or_guest",
        ),
    )

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if self.is_supervisor is None:
            self.is_supervisor = False

    def __repr__(self) -> str:
        who = self.identity_id or self.guest_name
        role = "supervisor" if self.is_supervisor else "participant"
        return f"<ReservationParticipant {who} ({role}) reservation={self.reservation_id}>"


class SlotLock(Base):
    """
    Compare-and-set token for one resource/day.

    Every reservation commit bumps ``version`` conditionally; a writer whose
    availability snapshot was taken at an older version loses and re-checks.
    """

    __tablename__ = "slot_locks"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    resource_id = Column(String(64), nullable=False)
    lock_date = Column(Date, nullable=False)
    version = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("resource_id", "lock_date", name="uq_slot_locks_resource_date"),
    )

    def __repr__(self) -> str:
        return f"<SlotLock {self.resource_id}@{self.lock_date} v{self.version}>"
