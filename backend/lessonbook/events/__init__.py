"""Domain events emitted by the lessonbook engine."""

from lessonbook.events.domain_events import (
    InvoiceCancelled,
    InvoiceFailed,
    InvoicePaid,
    PaymentHoldExpired,
    ReservationCancelled,
    ReservationConfirmed,
    ReservationHeld,
)
from lessonbook.events.publisher import EventPublisher

__all__ = [
    "EventPublisher",
    "InvoiceCancelled",
    "InvoiceFailed",
    "InvoicePaid",
    "PaymentHoldExpired",
    "ReservationCancelled",
    "ReservationConfirmed",
    "ReservationHeld",
]
