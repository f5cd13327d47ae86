# backend/lessonbook/models/schedule.py
"""
Schedule models for the lessonbook engine.

This module defines the slot template store: recurring weekly availability
plus the date-scoped overrides that admins author on top of it.

Classes:
    SlotTemplate: Recurring weekly window (day of week + time range + buffer)
    BlockedRange: Full or partial day blackout for a date
    ExtraWindow: Ad-hoc added window for a date, optionally reserved for one customer
"""

import logging

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    Time,
)
from sqlalchemy.sql import func
import ulid

from ..database import Base

logger = logging.getLogger(__name__)


class SlotTemplate(Base):
    """Recurring weekly availability. Soft-deactivated, never deleted."""

    __tablename__ = "slot_templates"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    day_of_week = Column(Integer, nullable=False, index=True)  # 0 = Monday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    buffer_minutes = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_slot_templates_day_of_week"),
        CheckConstraint("start_time < end_time", name="ck_slot_templates_time_order"),
        CheckConstraint("buffer_minutes >= 0", name="ck_slot_templates_buffer_non_negative"),
        Index("idx_slot_templates_day_active", "day_of_week", "is_active"),
    )

    def __repr__(self) -> str:
        return (
            f"<SlotTemplate day={self.day_of_week} {self.start_time}-{self.end_time} "
            f"buffer={self.buffer_minutes} active={self.is_active}>"
        )


class BlockedRange(Base):
    """Date-scoped blackout; a null time range blocks the whole day."""

    __tablename__ = "blocked_ranges"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)
    reason = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "(start_time IS NULL AND end_time IS NULL) OR "
            "(start_time IS NOT NULL AND end_time IS NOT NULL AND start_time < end_time)",
            name="ck_blocked_ranges_time_pair",
        ),
    )

    @property
    def is_full_day(self) -> bool:
        return self.start_time is None and self.end_time is None

    def __repr__(self) -> str:
        span = "all day" if self.is_full_day else f"{self.start_time}-{self.end_time}"
        return f"<BlockedRange {self.date} {span} - {self.reason or 'No reason'}>"


class ExtraWindow(Base):
    """Date-scoped extra availability, optionally visible to a single identity."""

    __tablename__ = "extra_windows"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    reason = Column(String(255), nullable=True)
    reserved_for_identity = Column(String(64), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_extra_windows_time_order"),
    )

    def is_visible_to(self, identity: str | None) -> bool:
        """Unrestricted windows are public; reserved ones only match their identity."""
        return self.reserved_for_identity is None or self.reserved_for_identity == identity

    def __repr__(self) -> str:
        return (
            f"<ExtraWindow {self.date} {self.start_time}-{self.end_time} "
            f"reserved_for={self.reserved_for_identity}>"
        )
