# backend/lessonbook/models/event_outbox.py
"""
Transactional outbox for domain events.

Reservation, invoice and payment hold transitions write an outbox row in the
same transaction as the state change. A Celery dispatcher later hands the
rows to the configured notification provider.
"""

from __future__ import annotations

from enum import Enum

from sqlalchemy import Column, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
import ulid

from ..database import Base


class EventOutboxStatus(str, Enum):
    """Delivery state of an outbox row."""

    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class EventOutbox(Base):
    """One domain event awaiting (or done with) delivery."""

    __tablename__ = "event_outbox"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    event_type = Column(String(100), nullable=False, index=True)
    aggregate_id = Column(String(64), nullable=False, index=True)
    idempotency_key = Column(String(255), nullable=False)
    payload = Column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"),
        nullable=False,
        default=dict,
    )
    status = Column(String(20), nullable=False, default=EventOutboxStatus.PENDING.value)
    attempt_count = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_event_outbox_idempotency_key"),
        Index("idx_event_outbox_status_next_attempt", "status", "next_attempt_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<EventOutbox {self.event_type} aggregate={self.aggregate_id} "
            f"status={self.status} attempts={self.attempt_count}>"
        )
