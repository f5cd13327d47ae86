# backend/lessonbook/repositories/event_outbox_repository.py
"""
Repository for the domain event outbox.

Enqueue happens inside the caller's transaction so an event exists if and
only if the state change that produced it committed.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Optional, cast

from sqlalchemy import Select, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.orm import Session
import ulid

from ..database.session_utils import get_dialect_name
from ..models.event_outbox import EventOutbox, EventOutboxStatus

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class EventOutboxRepository:
    """Data access helpers for event outbox rows."""

    def __init__(self, db: Session):
        self.db = db
        self._dialect = get_dialect_name(db).lower()

    def enqueue(
        self,
        event_type: str,
        aggregate_id: str,
        payload: Optional[dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> EventOutbox:
        """
        Insert a new outbox row unless one already exists for the idempotency key.

        Returns the persisted row (existing or newly created).
        """
        now = _now_utc()
        key = idempotency_key or f"{event_type}:{aggregate_id}"
        event_id = str(ulid.ULID())
        values = {
            "id": event_id,
            "event_type": event_type,
            "aggregate_id": aggregate_id,
            "payload": payload or {},
            "idempotency_key": key,
            "status": EventOutboxStatus.PENDING.value,
            "attempt_count": 0,
            "next_attempt_at": now,
        }

        if self._dialect == "postgresql":
            stmt = (
                pg_insert(EventOutbox)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["idempotency_key"])
            )
        else:
            stmt = insert(EventOutbox).values(**values)
            if self._dialect == "sqlite":
                stmt = stmt.prefix_with("OR IGNORE")
        result = self.db.execute(stmt)
        if not getattr(result, "rowcount", 0):
            logger.debug("Outbox event %s already enqueued", key)

        existing = self.db.execute(
            select(EventOutbox).where(EventOutbox.idempotency_key == key)
        ).scalar_one_or_none()
        if existing is None:
            raise RuntimeError("Outbox row not found after enqueue")
        return cast(EventOutbox, existing)

    def fetch_pending(self, limit: int = 200) -> list[EventOutbox]:
        """Pending events eligible for delivery, oldest attempt first."""
        stmt: Select[Any] = (
            select(EventOutbox)
            .where(EventOutbox.status == EventOutboxStatus.PENDING.value)
            .where(EventOutbox.next_attempt_at <= _now_utc())
            .order_by(EventOutbox.next_attempt_at.asc(), EventOutbox.id.asc())
            .limit(limit)
        )
        if self._dialect == "postgresql":
            stmt = stmt.with_for_update(skip_locked=True)
        return cast(list[EventOutbox], self.db.execute(stmt).scalars().all())

    def get_by_id(self, event_id: str) -> Optional[EventOutbox]:
        return cast(Optional[EventOutbox], self.db.get(EventOutbox, event_id))

    def list_for_aggregate(self, aggregate_id: str) -> list[EventOutbox]:
        stmt = (
            select(EventOutbox)
            .where(EventOutbox.aggregate_id == aggregate_id)
            .order_by(EventOutbox.created_at.asc(), EventOutbox.id.asc())
        )
        return cast(list[EventOutbox], self.db.execute(stmt).scalars().all())

    def mark_sent(self, event_id: str, attempt_count: int) -> None:
        now = _now_utc()
        self.db.execute(
            update(EventOutbox)
            .where(EventOutbox.id == event_id)
            .values(
                status=EventOutboxStatus.SENT.value,
                attempt_count=attempt_count,
                last_error=None,
                next_attempt_at=now,
                updated_at=now,
            )
        )
        self.db.flush()

    def mark_failed(
        self,
        event_id: str,
        *,
        attempt_count: int,
        backoff_seconds: int,
        error: str | None = None,
        terminal: bool = False,
    ) -> None:
        """Record a failed delivery and schedule the next attempt (or give up)."""
        now = _now_utc()
        values: dict[str, Any] = {
            "attempt_count": attempt_count,
            "updated_at": now,
            "last_error": (error[:1000] if error else None),
        }
        if terminal:
            values["status"] = EventOutboxStatus.FAILED.value
            values["next_attempt_at"] = now
        else:
            values["status"] = EventOutboxStatus.PENDING.value
            values["next_attempt_at"] = now + timedelta(seconds=max(backoff_seconds, 1))

        self.db.execute(update(EventOutbox).where(EventOutbox.id == event_id).values(**values))
        self.db.flush()
