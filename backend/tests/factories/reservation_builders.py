"""Builders for reservation requests and thread-local service graphs."""

from typing import Optional

from sqlalchemy.orm import Session

from lessonbook.events import EventPublisher
from lessonbook.integrations import FakeCheckoutGateway
from lessonbook.models.reservation import ResourceType
from lessonbook.repositories.event_outbox_repository import EventOutboxRepository
from lessonbook.schemas.reservation import ParticipantIn, ResourceSpec
from lessonbook.services.invoice_service import InvoiceService
from lessonbook.services.payment_hold_service import PaymentHoldService
from lessonbook.services.reservation_service import ReservationService


def single_lesson(resource_id: str = "car-1", lesson_type: str = "manual") -> ResourceSpec:
    return ResourceSpec(resource_id=resource_id, lesson_type=lesson_type)


def group_course(
    capacity: int = 4, supervisor_limit: int = 1, resource_id: str = "room-1"
) -> ResourceSpec:
    return ResourceSpec(
        resource_type=ResourceType.GROUP_COURSE,
        resource_id=resource_id,
        capacity=capacity,
        supervisor_limit=supervisor_limit,
        lesson_type="risk-1",
    )


def student(name: str = "Alex Student", identity_id: Optional[str] = None) -> ParticipantIn:
    return ParticipantIn(identity_id=identity_id, guest_name=name)


def supervisor(name: str = "Sam Supervisor") -> ParticipantIn:
    return ParticipantIn(guest_name=name, is_supervisor=True)


def build_services(
    session: Session,
) -> tuple[ReservationService, PaymentHoldService, InvoiceService]:
    """Service graph for a session opened outside the fixtures (worker threads)."""
    publisher = EventPublisher(EventOutboxRepository(session))
    reservations = ReservationService(session, event_publisher=publisher)
    holds = PaymentHoldService(session, reservation_service=reservations, event_publisher=publisher)
    invoices = InvoiceService(
        session,
        reservation_service=reservations,
        payment_hold_service=holds,
        checkout_gateway=FakeCheckoutGateway(),
        event_publisher=publisher,
    )
    return reservations, holds, invoices
