# backend/lessonbook/repositories/factory.py
"""
Repository Factory for the lessonbook engine.

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .credit_repository import CreditRepository
    from .event_outbox_repository import EventOutboxRepository
    from .invoice_repository import InvoiceRepository
    from .reservation_repository import ReservationRepository
    from .schedule_repository import ScheduleRepository


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Centralizes repository creation to ensure consistent initialization
    and makes it easy to swap implementations in tests.
    """

    @staticmethod
    def create_schedule_repository(db: Session) -> "ScheduleRepository":
        """Create repository for the slot template store."""
        from .schedule_repository import ScheduleRepository

        return ScheduleRepository(db)

    @staticmethod
    def create_reservation_repository(db: Session) -> "ReservationRepository":
        """Create repository for reservations, participants and slot locks."""
        from .reservation_repository import ReservationRepository

        return ReservationRepository(db)

    @staticmethod
    def create_invoice_repository(db: Session) -> "InvoiceRepository":
        """Create repository for invoices and their guarded transitions."""
        from .invoice_repository import InvoiceRepository

        return InvoiceRepository(db)

    @staticmethod
    def create_credit_repository(db: Session) -> "CreditRepository":
        from .credit_repository import CreditRepository

        return CreditRepository(db)

    @staticmethod
    def create_event_outbox_repository(db: Session) -> "EventOutboxRepository":
        from .event_outbox_repository import EventOutboxRepository

        return EventOutboxRepository(db)
