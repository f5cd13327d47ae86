# backend/lessonbook/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

Services built for one request share its session, so a settlement and the
reservation confirmation it triggers commit in the same transaction.
"""

from functools import lru_cache
import logging

from fastapi import Depends
from sqlalchemy.orm import Session

from ...integrations import HostedCheckoutGateway, get_checkout_gateway
from ...services.availability_service import AvailabilityService
from ...services.invoice_service import InvoiceService
from ...services.payment_hold_service import PaymentHoldService
from ...services.reservation_service import ReservationService
from ...services.schedule_service import ScheduleService
from .database import get_db

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_checkout_gateway_singleton() -> HostedCheckoutGateway:
    """Gateway clients are process-wide."""
    return get_checkout_gateway()


def get_schedule_service(db: Session = Depends(get_db)) -> ScheduleService:
    return ScheduleService(db)


def get_availability_service(db: Session = Depends(get_db)) -> AvailabilityService:
    return AvailabilityService(db)


def get_reservation_service(
    db: Session = Depends(get_db),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> ReservationService:
    return ReservationService(db, availability_service=availability_service)


def get_payment_hold_service(
    db: Session = Depends(get_db),
    reservation_service: ReservationService = Depends(get_reservation_service),
) -> PaymentHoldService:
    return PaymentHoldService(
        db,
        reservation_service=reservation_service,
        event_publisher=reservation_service.event_publisher,
    )


def get_invoice_service(
    db: Session = Depends(get_db),
    reservation_service: ReservationService = Depends(get_reservation_service),
    payment_hold_service: PaymentHoldService = Depends(get_payment_hold_service),
    checkout_gateway: HostedCheckoutGateway = Depends(get_checkout_gateway_singleton),
) -> InvoiceService:
    """
    Get invoice service instance.

    Args:
        db: Database session
        reservation_service: Confirms and cancels reservations in the same session
        payment_hold_service: Expires lapsed holds on settlement attempts
        checkout_gateway: Hosted checkout adapter

    Returns:
        InvoiceService instance
    """
    return InvoiceService(
        db,
        reservation_service=reservation_service,
        payment_hold_service=payment_hold_service,
        checkout_gateway=checkout_gateway,
        event_publisher=reservation_service.event_publisher,
    )
