from concurrent.futures import ThreadPoolExecutor
from datetime import time, timedelta
from decimal import Decimal
import threading

import pytest

from lessonbook.core.exceptions import (
    CapacityExceededException,
    InvalidStateException,
    NotFoundException,
    SlotUnavailableException,
    SupervisorLimitExceededException,
    ValidationException,
)
from lessonbook.core.timezone_utils import get_school_today
from lessonbook.models.reservation import ReservationStatus
from lessonbook.schemas.invoice import InvoiceLineItemIn
from lessonbook.schemas.reservation import ResourceSpec
from lessonbook.services.notification_provider import message_kind_for
from lessonbook.services.reservation_service import ReservationService
from tests.factories.reservation_builders import (
    build_services,
    group_course,
    single_lesson,
    student,
    supervisor,
)


class TestCreateReservation:
    def test_creates_held_reservation(self, reservation_service, weekday_templates, lesson_date, outbox):
        reservation = reservation_service.create_reservation(
            single_lesson(), lesson_date, time(10, 0), 60, [student()], identity="cust-1"
        )

        assert reservation.status == ReservationStatus.HELD.value
        assert reservation.start_time == time(10, 0)
        assert reservation.end_time == time(11, 0)
        assert reservation.capacity == 1
        assert reservation.current_participant_count == 1
        assert [p.guest_name for p in reservation.participants] == ["Alex Student"]
        assert [e.event_type for e in outbox.list_for_aggregate(reservation.id)] == ["reservation.held"]

    def test_overlapping_request_is_rejected(self, reservation_service, weekday_templates, lesson_date):
        reservation_service.create_reservation(single_lesson(), lesson_date, time(10, 0), 60, [student()])

        with pytest.raises(SlotUnavailableException):
            reservation_service.create_reservation(
                single_lesson(), lesson_date, time(10, 30), 60, [student("Other")]
            )

    def test_adjacent_request_is_accepted(self, reservation_service, weekday_templates, lesson_date):
        reservation_service.create_reservation(single_lesson(), lesson_date, time(10, 0), 60, [student()])

        second = reservation_service.create_reservation(
            single_lesson(), lesson_date, time(11, 0), 60, [student("Other")]
        )
        assert second.status == ReservationStatus.HELD.value

    def test_request_outside_template_is_rejected(self, reservation_service, weekday_templates, lesson_date):
        with pytest.raises(SlotUnavailableException):
            reservation_service.create_reservation(
                single_lesson(), lesson_date, time(16, 30), 60, [student()]
            )

    def test_request_inside_reserved_extra_window_needs_identity(
        self, schedule_service, reservation_service, lesson_date
    ):
        schedule_service.add_extra_window(
            lesson_date, time(7, 0), time(8, 0), reserved_for_identity="cust-9"
        )

        with pytest.raises(SlotUnavailableException):
            reservation_service.create_reservation(single_lesson(), lesson_date, time(7, 0), 60, [student()])

        reservation = reservation_service.create_reservation(
            single_lesson(), lesson_date, time(7, 0), 60, [student()], identity="cust-9"
        )
        assert reservation.booked_by_identity == "cust-9"

    def test_window_ending_at_2359_cannot_fit_lesson_ending_at_midnight(self, schedule_service, reservation_service, lesson_date):
        schedule_service.add_extra_window(lesson_date, time(22, 0), time(23, 59))

        with pytest.raises(SlotUnavailableException):
            reservation_service.create_reservation(single_lesson(), lesson_date, time(23, 0), 60, [student()])

    def test_past_date_is_rejected(self, reservation_service, weekday_templates):
        with pytest.raises(ValidationException):
            reservation_service.create_reservation(
                single_lesson(), get_school_today() - timedelta(days=1), time(10, 0), 60, [student()]
            )

    def test_lesson_crossing_midnight_is_rejected(self, reservation_service, lesson_date):
        with pytest.raises(ValidationException):
            reservation_service.create_reservation(single_lesson(), lesson_date, time(23, 30), 60, [student()])

    def test_duration_bounds(self, reservation_service, weekday_templates, lesson_date):
        with pytest.raises(ValidationException):
            reservation_service.create_reservation(single_lesson(), lesson_date, time(10, 0), 5, [student()])

    def test_single_lesson_takes_one_participant(self, reservation_service, weekday_templates, lesson_date):
        with pytest.raises(CapacityExceededException):
            reservation_service.create_reservation(
                single_lesson(), lesson_date, time(10, 0), 60, [student("A"), student("B")]
            )

    def test_single_lesson_capacity_must_be_one(self, reservation_service, weekday_templates, lesson_date):
        with pytest.raises(ValidationException):
            reservation_service.create_reservation(
                ResourceSpec(resource_id="car-1", capacity=2), lesson_date, time(10, 0), 60, [student()]
            )

    def test_requires_a_participant(self, reservation_service, weekday_templates, lesson_date):
        with pytest.raises(ValidationException):
            reservation_service.create_reservation(single_lesson(), lesson_date, time(10, 0), 60, [])

    def test_validation_happens_before_any_write(
        self, db, reservation_service, weekday_templates, lesson_date
    ):
        from lessonbook.models.reservation import Reservation, SlotLock

        with pytest.raises(ValidationException):
            reservation_service.create_reservation(single_lesson(), lesson_date, time(10, 0), 5, [student()])

        assert db.query(Reservation).count() == 0
        assert db.query(SlotLock).count() == 0


class TestConcurrentCreate:
    def test_only_one_of_many_concurrent_bookings_wins(
        self, session_factory, weekday_templates, lesson_date
    ):
        barrier = threading.Barrier(4)

        def attempt(index: int) -> str:
            session = session_factory()
            try:
                service = ReservationService(session)
                barrier.wait(timeout=10)
                try:
                    service.create_reservation(
                        single_lesson(), lesson_date, time(10, 0), 60, [student(f"Racer {index}")]
                    )
                    return "won"
                except SlotUnavailableException:
                    return "lost"
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=4) as pool:
            outcomes = list(pool.map(attempt, range(4)))

        assert outcomes.count("won") == 1
        assert outcomes.count("lost") == 3


class TestGroupSessions:
    def test_supervisor_sub_limit(self, reservation_service, weekday_templates, lesson_date):
        reservation = reservation_service.create_reservation(
            group_course(capacity=4, supervisor_limit=1),
            lesson_date,
            time(13, 0),
            120,
            [student("Learner")],
        )
        reservation_service.add_participant(reservation.id, supervisor("First"))

        with pytest.raises(SupervisorLimitExceededException) as exc_info:
            reservation_service.add_participant(reservation.id, supervisor("Second"))

        assert isinstance(exc_info.value, CapacityExceededException)
        reservation = reservation_service.get_reservation(reservation.id)
        assert reservation.current_participant_count == 2
        assert reservation.supervisor_count == 1

    def test_concurrent_adds_respect_capacity_and_supervisor_limit(
        self, db, session_factory, reservation_service, weekday_templates, lesson_date
    ):
        reservation = reservation_service.create_reservation(
            group_course(capacity=3, supervisor_limit=1),
            lesson_date,
            time(13, 0),
            120,
            [student("Learner")],
        )
        barrier = threading.Barrier(6)

        def attempt(index: int) -> str:
            session = session_factory()
            try:
                service = ReservationService(session)
                participant = supervisor(f"Supervisor {index}") if index % 2 else student(f"Student {index}")
                barrier.wait(timeout=10)
                try:
                    service.add_participant(reservation.id, participant)
                    return "added"
                except CapacityExceededException:
                    return "refused"
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=6) as pool:
            outcomes = list(pool.map(attempt, range(6)))

        assert outcomes.count("added") == 2
        db.expire_all()
        stored = reservation_service.get_reservation(reservation.id)
        assert stored.current_participant_count == stored.capacity == 3
        assert stored.supervisor_count <= stored.supervisor_limit
        assert len(stored.participants) == stored.current_participant_count
        assert sum(1 for p in stored.participants if p.is_supervisor) == stored.supervisor_count

    def test_capacity_is_enforced(self, reservation_service, weekday_templates, lesson_date):
        reservation = reservation_service.create_reservation(
            group_course(capacity=2), lesson_date, time(13, 0), 120, [student("One")]
        )
        reservation_service.add_participant(reservation.id, student("Two"))

        with pytest.raises(CapacityExceededException):
            reservation_service.add_participant(reservation.id, student("Three"))

    def test_initial_supervisors_counted(self, reservation_service, weekday_templates, lesson_date):
        with pytest.raises(SupervisorLimitExceededException):
            reservation_service.create_reservation(
                group_course(capacity=4, supervisor_limit=1),
                lesson_date,
                time(13, 0),
                60,
                [student(), supervisor("A"), supervisor("B")],
            )

    def test_remove_participant_frees_seat(self, reservation_service, weekday_templates, lesson_date):
        reservation = reservation_service.create_reservation(
            group_course(capacity=2), lesson_date, time(13, 0), 60, [student("One"), supervisor()]
        )
        supervisor_row = next(p for p in reservation.participants if p.is_supervisor)

        reservation = reservation_service.remove_participant(supervisor_row.id)

        assert reservation.current_participant_count == 1
        assert reservation.supervisor_count == 0
        reservation_service.add_participant(reservation.id, student("Three"))

    def test_move_participant(self, reservation_service, weekday_templates, lesson_date):
        source = reservation_service.create_reservation(
            group_course(resource_id="room-1"), lesson_date, time(13, 0), 60, [student("Mover")]
        )
        target = reservation_service.create_reservation(
            group_course(resource_id="room-2"), lesson_date, time(13, 0), 60, [student("Stayer")]
        )

        moved = reservation_service.move_reservation(source.participants[0].id, target.id)

        assert moved.id == target.id
        assert moved.current_participant_count == 2
        assert [p.guest_name for p in moved.participants] == ["Stayer", "Mover"]
        assert reservation_service.get_reservation(source.id).current_participant_count == 0

    def test_move_into_full_session_changes_nothing(
        self, reservation_service, weekday_templates, lesson_date
    ):
        source = reservation_service.create_reservation(
            group_course(resource_id="room-1"), lesson_date, time(13, 0), 60, [student("Mover")]
        )
        target = reservation_service.create_reservation(
            group_course(capacity=1, supervisor_limit=0, resource_id="room-2"),
            lesson_date,
            time(13, 0),
            60,
            [student("Occupant")],
        )

        with pytest.raises(CapacityExceededException):
            reservation_service.move_reservation(source.participants[0].id, target.id)

        assert reservation_service.get_reservation(source.id).current_participant_count == 1
        assert reservation_service.get_reservation(target.id).current_participant_count == 1

    def test_unknown_participant(self, reservation_service):
        with pytest.raises(NotFoundException):
            reservation_service.remove_participant("missing")


class TestTransitions:
    def test_cancel_is_idempotent(self, reservation_service, held_reservation, outbox):
        first = reservation_service.cancel_reservation(held_reservation.id, reason="customer_cancelled")
        second = reservation_service.cancel_reservation(held_reservation.id, reason="customer_cancelled")

        assert first.status == second.status == ReservationStatus.CANCELLED.value
        assert first.cancellation_reason == "customer_cancelled"
        events = [e.event_type for e in outbox.list_for_aggregate(held_reservation.id)]
        assert events.count("reservation.cancelled") == 1

    def test_cancel_without_reason_is_customer_initiated(self, reservation_service, held_reservation, outbox):
        cancelled = reservation_service.cancel_reservation(held_reservation.id)

        assert cancelled.cancellation_reason == "customer_cancelled"
        event = next(
            e for e in outbox.list_for_aggregate(held_reservation.id) if e.event_type == "reservation.cancelled"
        )
        assert event.payload["reason"] == "customer_cancelled"
        assert message_kind_for(event.event_type, event.payload) == "booking_cancelled_by_customer"

    def test_cancel_cancels_open_invoice(self, reservation_service, invoice_service, held_reservation):
        invoice = invoice_service.create_invoice(
            held_reservation.id,
            [InvoiceLineItemIn(description="Lesson", unit_price=Decimal("500"))],
        )

        reservation_service.cancel_reservation(held_reservation.id)

        assert invoice_service.get_invoice(invoice.id).status == "CANCELLED"

    def test_cancel_reimburses_credit(
        self, reservation_service, invoice_service, held_reservation, stored_credit, db
    ):
        invoice = invoice_service.create_invoice(
            held_reservation.id,
            [InvoiceLineItemIn(description="Lesson", unit_price=Decimal("500"))],
        )
        invoice_service.settle_with_stored_credit(invoice.id, stored_credit.id)
        db.refresh(stored_credit)
        assert stored_credit.credits_remaining == 0

        reservation_service.cancel_reservation(held_reservation.id, reason="customer_cancelled")

        db.refresh(stored_credit)
        assert stored_credit.credits_remaining == 1
        assert invoice_service.get_invoice(invoice.id).status == "PAID"

    def test_confirm_and_complete(self, reservation_service, held_reservation):
        confirmed = reservation_service.confirm_reservation(held_reservation.id)
        assert confirmed.status == ReservationStatus.CONFIRMED.value
        assert reservation_service.confirm_reservation(held_reservation.id).status == "CONFIRMED"

        completed = reservation_service.complete_reservation(held_reservation.id)
        assert completed.status == ReservationStatus.COMPLETED.value

        with pytest.raises(InvalidStateException):
            reservation_service.cancel_reservation(held_reservation.id)

    def test_complete_requires_confirmation(self, reservation_service, held_reservation):
        with pytest.raises(InvalidStateException):
            reservation_service.complete_reservation(held_reservation.id)

    def test_confirm_cancelled_reservation_fails(self, reservation_service, held_reservation):
        reservation_service.cancel_reservation(held_reservation.id)
        with pytest.raises(InvalidStateException):
            reservation_service.confirm_reservation(held_reservation.id)

    def test_unknown_reservation(self, reservation_service):
        with pytest.raises(NotFoundException):
            reservation_service.get_reservation("missing")


def test_thread_local_service_graph_shares_publisher(db):
    reservations, holds, invoices = build_services(db)
    assert holds.event_publisher is reservations.event_publisher
    assert invoices.reservation_service is reservations
