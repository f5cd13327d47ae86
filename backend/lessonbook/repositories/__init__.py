"""
Repository layer for the lessonbook engine.

Repositories encapsulate data access; services own transactions.
"""

from .base_repository import BaseRepository
from .credit_repository import CreditRepository
from .event_outbox_repository import EventOutboxRepository
from .factory import RepositoryFactory
from .invoice_repository import InvoiceRepository
from .reservation_repository import ReservationRepository
from .schedule_repository import ScheduleRepository

__all__ = [
    "BaseRepository",
    "CreditRepository",
    "EventOutboxRepository",
    "InvoiceRepository",
    "RepositoryFactory",
    "ReservationRepository",
    "ScheduleRepository",
]
