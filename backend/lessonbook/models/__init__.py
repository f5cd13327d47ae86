"""
Database models for the lessonbook engine.

The models are organized by component:
- Slot template store (weekly templates, blocked ranges, extra windows)
- Reservations, participants and the per resource/day slot lock
- Invoices, line items and stored credits
- Event outbox
"""

from .event_outbox import EventOutbox, EventOutboxStatus
from .invoice import (
    INVOICE_TRANSITIONS,
    Invoice,
    InvoiceItem,
    InvoiceStatus,
    PayerTrustLevel,
    SettlementMethod,
    StoredCredit,
)
from .reservation import (
    Reservation,
    ReservationParticipant,
    ReservationStatus,
    ResourceType,
    SlotLock,
)
from .schedule import BlockedRange, ExtraWindow, SlotTemplate

__all__ = [
    "BlockedRange",
    "EventOutbox",
    "EventOutboxStatus",
    "ExtraWindow",
    "INVOICE_TRANSITIONS",
    "Invoice",
    "InvoiceItem",
    "InvoiceStatus",
    "PayerTrustLevel",
    "Reservation",
    "ReservationParticipant",
    "ReservationStatus",
    "ResourceType",
    "SettlementMethod",
    "SlotLock",
    "SlotTemplate",
    "StoredCredit",
]
