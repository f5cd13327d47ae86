"""Event publisher - writes domain events to the transactional outbox."""
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol

from lessonbook.repositories.event_outbox_repository import EventOutboxRepository


class Event(Protocol):
    """Protocol for event types."""

    event_type: str

    @property
    def aggregate_id(self) -> str:
        ...

    def to_dict(self) -> Dict[str, Any]:
        ...


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


class EventPublisher:
    """Publishes domain events to the outbox for async delivery."""

    def __init__(self, outbox_repository: EventOutboxRepository):
        self.outbox_repo = outbox_repository

    def publish(self, event: Event, idempotency_key: Optional[str] = None) -> None:
        """
        Enqueue an event in the caller's transaction.

        The default idempotency key is ``<event_type>:<aggregate_id>``, so each
        aggregate emits a given event type at most once unless the caller
        supplies a more specific key.
        """
        payload = {key: _jsonable(value) for key, value in event.to_dict().items()}
        self.outbox_repo.enqueue(
            event_type=event.event_type,
            aggregate_id=event.aggregate_id,
            payload=payload,
            idempotency_key=idempotency_key,
        )
