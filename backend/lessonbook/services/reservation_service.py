# backend/lessonbook/services/reservation_service.py
"""
Reservation engine for the lessonbook engine.

Creates reservations against the availability resolver and keeps them
exclusive. Reservation commits on one resource/day are serialized through
a compare-and-set on that day's SlotLock row:

1. read the lock version;
2. resolve availability and find the free window containing the request;
3. in one transaction, bump the lock version only if it still equals the
   value read in (1), then insert the reservation.

A writer that loses the compare-and-set saw a stale snapshot; it re-reads
and retries a bounded number of times before reporting SlotUnavailable.
Seat counters on group sessions use single guarded UPDATEs instead.
"""

from datetime import date, datetime, time, timedelta, timezone
import logging
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.constants import (
    CANCEL_REASON_CUSTOMER,
    MAX_FUTURE_DAYS,
    MAX_LESSON_DURATION,
    MAX_REASON_LENGTH,
    MIN_LESSON_DURATION,
)
from ..core.exceptions import (
    CapacityExceededException,
    InvalidStateException,
    NotFoundException,
    SlotUnavailableException,
    SupervisorLimitExceededException,
    ValidationException,
)
from ..core.reservation_lock import reservation_lock
from ..core.timezone_utils import get_school_now
from ..events import (
    EventPublisher,
    InvoiceCancelled,
    ReservationCancelled,
    ReservationConfirmed,
    ReservationHeld,
)
from ..models.invoice import InvoiceStatus, SettlementMethod
from ..models.reservation import Reservation, ReservationStatus, ResourceType
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.reservation import ParticipantIn, ResourceSpec
from ..utils.time_windows import MINUTES_PER_DAY, minutes_to_time, time_to_minutes
from .availability_service import AvailabilityService
from .base import BaseService

logger = logging.getLogger(__name__)

OPEN_INVOICE_STATUSES = (InvoiceStatus.PENDING, InvoiceStatus.OVERDUE, InvoiceStatus.ERROR)


class ReservationService(BaseService):
    """
    Service layer for reservation operations.

    Owns every write to reservations and participants. The payment hold
    supervisor and the invoice state machine reach reservations only
    through this service.
    """

    def __init__(
        self,
        db: Session,
        availability_service: Optional[AvailabilityService] = None,
        event_publisher: Optional[EventPublisher] = None,
    ):
        super().__init__(db)
        self.repository = RepositoryFactory.create_reservation_repository(db)
        self.invoice_repository = RepositoryFactory.create_invoice_repository(db)
        self.credit_repository = RepositoryFactory.create_credit_repository(db)
        self.availability_service = availability_service or AvailabilityService(db)
        self.event_publisher = event_publisher or EventPublisher(
            RepositoryFactory.create_event_outbox_repository(db)
        )

    # ------------------------------------------------------------------ reads

    def get_reservation(self, reservation_id: str) -> Reservation:
        reservation = self.repository.get_fresh(reservation_id)
        if reservation is None:
            raise NotFoundException(f"Reservation {reservation_id} not found")
        return reservation

    # ----------------------------------------------------------------- create

    @BaseService.measure_operation("create_reservation")
    def create_reservation(
        self,
        resource_spec: ResourceSpec,
        scheduled_date: date,
        start_time: time,
        duration_minutes: int,
        participants: Sequence[ParticipantIn],
        identity: Optional[str] = None,
    ) -> Reservation:
        """
        Commit a new HELD reservation.

        Args:
            resource_spec: Resource type, id, capacity and supervisor limit
            scheduled_date: Lesson date (school timezone)
            start_time: Lesson start (school timezone)
            duration_minutes: Lesson length
            participants: Initial participants; supervisors count toward capacity
            identity: Booking identity, used for reserved Extra windows

        Returns:
            The committed reservation

        Raises:
            ValidationException: Malformed request (raised before any write)
            CapacityExceededException: More participants than seats
            SupervisorLimitExceededException: More supervisors than allowed
            SlotUnavailableException: The window is not free at commit time
        """
        capacity, supervisor_limit = self._resolve_capacity(resource_spec)
        self._validate_schedule(scheduled_date, start_time, duration_minutes)
        self._validate_participants(participants, capacity, supervisor_limit)

        resource_id = resource_spec.resource_id or settings.default_resource_id
        start_minute = time_to_minutes(start_time)
        end_minute = start_minute + duration_minutes

        with reservation_lock(resource_id, scheduled_date):
            with self.transaction():
                self.repository.ensure_slot_lock(resource_id, scheduled_date)

            for attempt in range(1, settings.reservation_commit_retries + 1):
                reservation = self._attempt_commit(
                    resource_spec=resource_spec,
                    resource_id=resource_id,
                    scheduled_date=scheduled_date,
                    start_minute=start_minute,
                    end_minute=end_minute,
                    capacity=capacity,
                    supervisor_limit=supervisor_limit,
                    participants=participants,
                    identity=identity,
                )
                if reservation is not None:
                    break
                prometheus_metrics.inc_commit_conflict(resource_id)
                self.logger.info(
                    "Slot lock compare-and-set lost; re-evaluating availability",
                    extra={
                        "resource_id": resource_id,
                        "scheduled_date": scheduled_date.isoformat(),
                        "attempt": attempt,
                    },
                )
            else:
                raise SlotUnavailableException(
                    details={"resource_id": resource_id, "scheduled_date": scheduled_date.isoformat()}
                )

        self.log_operation(
            "create_reservation",
            reservation_id=reservation.id,
            resource_id=resource_id,
            scheduled_date=scheduled_date.isoformat(),
        )
        return self.get_reservation(reservation.id)

    def _attempt_commit(
        self,
        *,
        resource_spec: ResourceSpec,
        resource_id: str,
        scheduled_date: date,
        start_minute: int,
        end_minute: int,
        capacity: int,
        supervisor_limit: int,
        participants: Sequence[ParticipantIn],
        identity: Optional[str],
    ) -> Optional[Reservation]:
        """One read-check-write round. Returns None when the compare-and-set is lost."""
        # Version first: a commit landing after this read makes the CAS below fail
        version = self.repository.get_slot_lock_version(resource_id, scheduled_date)
        window = self.availability_service.find_window_for(
            scheduled_date,
            start_minute,
            end_minute,
            identity=identity,
            resource_id=resource_id,
        )
        if window is None:
            self.db.rollback()
            raise SlotUnavailableException(
                details={
                    "resource_id": resource_id,
                    "scheduled_date": scheduled_date.isoformat(),
                    "start_time": minutes_to_time(start_minute).strftime("%H:%M"),
                }
            )

        with self.transaction():
            if not self.repository.compare_and_bump_slot_lock(
                resource_id, scheduled_date, version
            ):
                return None

            reservation = self.repository.create(
                resource_id=resource_id,
                resource_type=resource_spec.resource_type.value,
                lesson_type=resource_spec.lesson_type,
                booked_by_identity=identity,
                scheduled_date=scheduled_date,
                start_time=minutes_to_time(start_minute),
                end_time=minutes_to_time(end_minute),
                duration_minutes=end_minute - start_minute,
                buffer_minutes=window.buffer_minutes,
                capacity=capacity,
                supervisor_limit=supervisor_limit,
                current_participant_count=len(participants),
                supervisor_count=sum(1 for p in participants if p.is_supervisor),
                status=ReservationStatus.HELD.value,
            )
            for participant in participants:
                self.repository.add_participant_row(
                    reservation.id, **participant.model_dump()
                )
            self.event_publisher.publish(
                ReservationHeld(
                    reservation_id=reservation.id,
                    resource_id=resource_id,
                    scheduled_date=scheduled_date,
                    start_time=reservation.start_time,
                    end_time=reservation.end_time,
                    booked_by=identity,
                )
            )
        return reservation

    # ----------------------------------------------------------- participants

    @BaseService.measure_operation("add_participant")
    def add_participant(self, reservation_id: str, participant: ParticipantIn) -> Reservation:
        """
        Take one seat in a HELD/CONFIRMED reservation.

        The seat (and supervisor slot) is claimed with a single guarded UPDATE,
        so concurrent calls can never push the counters past their limits.
        """
        self.get_reservation(reservation_id)

        with self.transaction():
            if not self.repository.claim_seat(reservation_id, is_supervisor=participant.is_supervisor):
                raise self._seat_error(reservation_id, participant.is_supervisor)
            self.repository.add_participant_row(reservation_id, **participant.model_dump())

        self.log_operation(
            "add_participant",
            reservation_id=reservation_id,
            is_supervisor=participant.is_supervisor,
        )
        return self.get_reservation(reservation_id)

    @BaseService.measure_operation("remove_participant")
    def remove_participant(self, participant_id: str) -> Reservation:
        """Release a participant's seat."""
        participant = self.repository.get_participant(participant_id)
        if participant is None:
            raise NotFoundException(f"Participant {participant_id} not found")
        reservation_id = participant.reservation_id
        is_supervisor = bool(participant.is_supervisor)

        reservation = self.get_reservation(reservation_id)
        if not reservation.is_active:
            raise InvalidStateException(
                "Participants can only be removed from held or confirmed reservations",
                current_status=reservation.status,
            )

        with self.transaction():
            if not self.repository.release_seat(reservation_id, is_supervisor=is_supervisor):
                raise InvalidStateException(
                    "Reservation seat counters are out of sync with its participants",
                    current_status=reservation.status,
                )
            self.repository.delete_participant(participant_id)

        return self.get_reservation(reservation_id)

    @BaseService.measure_operation("move_reservation")
    def move_reservation(self, participant_id: str, target_reservation_id: str) -> Reservation:
        """
        Move one participant to another session, all or nothing.

        The target seat is claimed first; if the target is full nothing changes.
        """
        participant = self.repository.get_participant(participant_id)
        if participant is None:
            raise NotFoundException(f"Participant {participant_id} not found")
        source_id = participant.reservation_id
        is_supervisor = bool(participant.is_supervisor)

        target = self.get_reservation(target_reservation_id)
        if source_id == target_reservation_id:
            return target

        source = self.get_reservation(source_id)
        if not source.is_active:
            raise InvalidStateException(
                "Participants can only be moved out of held or confirmed reservations",
                current_status=source.status,
            )

        with self.transaction():
            if not self.repository.claim_seat(target_reservation_id, is_supervisor=is_supervisor):
                raise self._seat_error(target_reservation_id, is_supervisor)
            if not self.repository.release_seat(source_id, is_supervisor=is_supervisor):
                raise InvalidStateException(
                    "Source reservation seat counters are out of sync with its participants",
                    current_status=source.status,
                )
            self.repository.reparent_participant(participant_id, target_reservation_id)

        self.log_operation(
            "move_reservation",
            participant_id=participant_id,
            source_reservation_id=source_id,
            target_reservation_id=target_reservation_id,
        )
        return self.get_reservation(target_reservation_id)

    # ------------------------------------------------------------ transitions

    @BaseService.measure_operation("cancel_reservation")
    def cancel_reservation(
        self,
        reservation_id: str,
        reason: Optional[str] = None,
        initiator: Optional[str] = None,
        *,
        reimburse_credit: bool = True,
    ) -> Reservation:
        """
        Cancel a reservation and release its slot. Idempotent.

        Without a ``reason`` the cancellation is recorded as customer-initiated.

        Open invoices of the reservation are cancelled with it; a credit spent
        on a paid invoice is given back when ``reimburse_credit`` is set.

        Raises:
            NotFoundException: Unknown reservation
            InvalidStateException: The reservation is already COMPLETED
        """
        if reason is not None and len(reason) > MAX_REASON_LENGTH:
            raise ValidationException(f"Reason must be at most {MAX_REASON_LENGTH} characters")

        reservation = self.get_reservation(reservation_id)
        if reservation.status == ReservationStatus.CANCELLED.value:
            return reservation
        if reservation.status == ReservationStatus.COMPLETED.value:
            raise InvalidStateException(
                "Completed reservations cannot be cancelled",
                current_status=reservation.status,
            )

        with self.transaction():
            self.cancel_within_transaction(
                reservation_id,
                reason=reason or CANCEL_REASON_CUSTOMER,
                initiator=initiator,
                reimburse_credit=reimburse_credit,
            )

        reservation = self.get_reservation(reservation_id)
        if reservation.status == ReservationStatus.COMPLETED.value:
            raise InvalidStateException(
                "Completed reservations cannot be cancelled",
                current_status=reservation.status,
            )
        return reservation

    def cancel_within_transaction(
        self,
        reservation_id: str,
        *,
        reason: str,
        initiator: Optional[str] = None,
        reimburse_credit: bool = False,
    ) -> bool:
        """
        Cancel inside the caller's transaction.

        Returns False when the reservation was not HELD/CONFIRMED (someone else
        already made it terminal); the caller decides whether that matters.
        """
        now = datetime.now(timezone.utc)
        cancelled = self.repository.transition_status(
            reservation_id,
            ReservationStatus.active(),
            ReservationStatus.CANCELLED,
            cancelled_at=now,
            cancellation_reason=reason,
            cancelled_by=initiator,
        )
        if not cancelled:
            return False

        for invoice in self.invoice_repository.get_for_reservation(
            reservation_id, OPEN_INVOICE_STATUSES
        ):
            if self.invoice_repository.transition(
                invoice.id,
                InvoiceStatus.CANCELLED,
                cancelled_at=now,
                cancellation_reason=reason,
                payment_hold_deadline=None,
            ):
                prometheus_metrics.record_invoice_transition(InvoiceStatus.CANCELLED.value, True)
                self.event_publisher.publish(
                    InvoiceCancelled(
                        invoice_id=invoice.id,
                        reservation_id=reservation_id,
                        reason=reason,
                        cancelled_at=now,
                    )
                )

        credit_reimbursed = False
        if reimburse_credit:
            credit_reimbursed = self._reimburse_credit(reservation_id)

        self.event_publisher.publish(
            ReservationCancelled(
                reservation_id=reservation_id,
                reason=reason,
                initiator=initiator,
                cancelled_at=now,
                credit_reimbursed=credit_reimbursed,
            )
        )
        self.logger.info(
            "Reservation cancelled",
            extra={"reservation_id": reservation_id, "reason": reason, "initiator": initiator},
        )
        return True

    @BaseService.measure_operation("confirm_reservation")
    def confirm_reservation(self, reservation_id: str) -> Reservation:
        """HELD -> CONFIRMED; confirming a CONFIRMED reservation is a no-op."""
        reservation = self.get_reservation(reservation_id)
        if reservation.status == ReservationStatus.CONFIRMED.value:
            return reservation

        with self.transaction():
            confirmed = self.confirm_within_transaction(reservation_id)

        reservation = self.get_reservation(reservation_id)
        if not confirmed and reservation.status != ReservationStatus.CONFIRMED.value:
            raise InvalidStateException(
                "Only held reservations can be confirmed",
                current_status=reservation.status,
            )
        return reservation

    def confirm_within_transaction(
        self, reservation_id: str, settlement_method: Optional[SettlementMethod] = None
    ) -> bool:
        """Guarded HELD -> CONFIRMED in the caller's transaction."""
        now = datetime.now(timezone.utc)
        confirmed = self.repository.transition_status(
            reservation_id,
            (ReservationStatus.HELD,),
            ReservationStatus.CONFIRMED,
            confirmed_at=now,
        )
        if confirmed:
            self.event_publisher.publish(
                ReservationConfirmed(
                    reservation_id=reservation_id,
                    confirmed_at=now,
                    settlement_method=settlement_method.value if settlement_method else None,
                )
            )
        return confirmed

    @BaseService.measure_operation("complete_reservation")
    def complete_reservation(self, reservation_id: str) -> Reservation:
        """CONFIRMED -> COMPLETED, marked after the lesson took place."""
        reservation = self.get_reservation(reservation_id)
        if reservation.status == ReservationStatus.COMPLETED.value:
            return reservation

        with self.transaction():
            completed = self.repository.transition_status(
                reservation_id,
                (ReservationStatus.CONFIRMED,),
                ReservationStatus.COMPLETED,
                completed_at=datetime.now(timezone.utc),
            )

        reservation = self.get_reservation(reservation_id)
        if not completed and reservation.status != ReservationStatus.COMPLETED.value:
            raise InvalidStateException(
                "Only confirmed reservations can be completed",
                current_status=reservation.status,
            )
        return reservation

    # ---------------------------------------------------------------- helpers

    def _reimburse_credit(self, reservation_id: str) -> bool:
        for invoice in self.invoice_repository.get_for_reservation(
            reservation_id, (InvoiceStatus.PAID,)
        ):
            if (
                invoice.settlement_method == SettlementMethod.STORED_CREDIT.value
                and invoice.credit_id
            ):
                return self.credit_repository.restore_one(invoice.credit_id)
        return False

    def _seat_error(self, reservation_id: str, is_supervisor: bool) -> Exception:
        """Explain why a guarded seat claim matched no row."""
        reservation = self.get_reservation(reservation_id)
        if not reservation.is_active:
            return InvalidStateException(
                "Participants can only be added to held or confirmed reservations",
                current_status=reservation.status,
            )
        if reservation.seats_left == 0:
            return CapacityExceededException(
                reservation.capacity, details={"reservation_id": reservation_id}
            )
        if is_supervisor:
            return SupervisorLimitExceededException(
                reservation.capacity,
                reservation.supervisor_limit,
                details={"reservation_id": reservation_id},
            )
        return CapacityExceededException(
            reservation.capacity, details={"reservation_id": reservation_id}
        )

    @staticmethod
    def _resolve_capacity(resource_spec: ResourceSpec) -> tuple[int, int]:
        """Return (capacity, supervisor_limit) for the requested resource."""
        if resource_spec.resource_type == ResourceType.SINGLE_LESSON:
            if resource_spec.capacity != 1:
                raise ValidationException("Single lessons have a capacity of exactly 1")
            if resource_spec.supervisor_limit:
                raise ValidationException("Single lessons cannot take supervisors")
            return 1, 0

        capacity = resource_spec.capacity
        supervisor_limit = (
            resource_spec.supervisor_limit
            if resource_spec.supervisor_limit is not None
            else settings.default_supervisor_limit
        )
        if supervisor_limit > capacity:
            raise ValidationException(
                "Supervisor limit cannot exceed session capacity",
                details={"capacity": capacity, "supervisor_limit": supervisor_limit},
            )
        return capacity, supervisor_limit

    @staticmethod
    def _validate_schedule(scheduled_date: date, start_time: time, duration_minutes: int) -> None:
        if not MIN_LESSON_DURATION <= duration_minutes <= MAX_LESSON_DURATION:
            raise ValidationException(
                f"Duration must be between {MIN_LESSON_DURATION} and {MAX_LESSON_DURATION} minutes"
            )
        if time_to_minutes(start_time) + duration_minutes > MINUTES_PER_DAY:
            raise ValidationException("Lesson must end on the day it starts")

        now = get_school_now()
        today = now.date()
        if scheduled_date < today:
            raise ValidationException("Cannot book lessons in the past")
        if scheduled_date > today + timedelta(days=MAX_FUTURE_DAYS):
            raise ValidationException(
                f"Cannot book more than {MAX_FUTURE_DAYS} days in advance"
            )
        if scheduled_date == today and start_time <= now.time().replace(tzinfo=None):
            raise ValidationException("Cannot book a lesson that has already started")

    @staticmethod
    def _validate_participants(
        participants: Sequence[ParticipantIn], capacity: int, supervisor_limit: int
    ) -> None:
        if not participants:
            raise ValidationException("A reservation needs at least one participant")
        if len(participants) > capacity:
            raise CapacityExceededException(capacity, details={"requested": len(participants)})
        supervisors = sum(1 for p in participants if p.is_supervisor)
        if supervisors > supervisor_limit:
            raise SupervisorLimitExceededException(
                capacity, supervisor_limit, details={"requested_supervisors": supervisors}
            )
