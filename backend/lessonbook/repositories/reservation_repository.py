# backend/lessonbook/repositories/reservation_repository.py
"""
Reservation Repository for the lessonbook engine.

Besides plain reads, this repository owns every guarded write on
reservations: the per resource/day slot lock compare-and-set, the seat
counters for group sessions, and status transitions. Each guarded write is a
single ``UPDATE ... WHERE <guard>`` whose rowcount tells the caller whether
it won; a zero rowcount is never an error at this layer.
"""

from datetime import date, datetime, timezone
import logging
from typing import Any, Iterable, List, Optional, cast

from sqlalchemy import and_, func, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session, selectinload
import ulid

from ..core.exceptions import RepositoryException
from ..models.reservation import (
    Reservation,
    ReservationParticipant,
    ReservationStatus,
    SlotLock,
)
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = [s.value for s in ReservationStatus.active()]


class ReservationRepository(BaseRepository[Reservation]):
    """Data access for reservations, participants and slot locks."""

    def __init__(self, db: Session):
        super().__init__(db, Reservation)
        self.logger = logging.getLogger(__name__)

    # Reads

    def get_fresh(self, reservation_id: str) -> Optional[Reservation]:
        """Load a reservation, overwriting any stale identity-map state."""
        try:
            reservation = cast(Optional[Reservation], self.db.get(Reservation, reservation_id))
            if reservation is not None:
                self.db.refresh(reservation)
            return reservation
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading reservation {reservation_id}: {str(e)}")
            raise RepositoryException(f"Failed to load reservation: {str(e)}")

    def get_active_for_date(self, resource_id: str, on_date: date) -> List[Reservation]:
        """HELD/CONFIRMED reservations occupying the resource on a date."""
        try:
            return cast(
                List[Reservation],
                self.db.query(Reservation)
                .filter(
                    Reservation.resource_id == resource_id,
                    Reservation.scheduled_date == on_date,
                    Reservation.status.in_(ACTIVE_STATUSES),
                )
                .order_by(Reservation.start_time)
                .all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting reservations for {resource_id} on {on_date}: {str(e)}")
            raise RepositoryException(f"Failed to get reservations: {str(e)}")

    def get_participant(self, participant_id: str) -> Optional[ReservationParticipant]:
        participant = cast(
            Optional[ReservationParticipant], self.db.get(ReservationParticipant, participant_id)
        )
        if participant is not None:
            self.db.refresh(participant)
        return participant

    # Slot lock compare-and-set

    def ensure_slot_lock(self, resource_id: str, lock_date: date) -> None:
        """Insert the lock row for a resource/day if it does not exist yet."""
        values = {
            "id": str(ulid.ULID()),
            "resource_id": resource_id,
            "lock_date": lock_date,
            "version": 0,
        }
        try:
            if self.dialect_name == "postgresql":
                stmt = (
                    pg_insert(SlotLock)
                    .values(**values)
                    .on_conflict_do_nothing(index_elements=["resource_id", "lock_date"])
                )
            else:
                stmt = insert(SlotLock).values(**values).prefix_with("OR IGNORE")
            self.db.execute(stmt)
        except IntegrityError:
            # Another writer created the row between our check and insert
            self.logger.debug(f"Slot lock for {resource_id}@{lock_date} already exists")
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating slot lock {resource_id}@{lock_date}: {str(e)}")
            raise RepositoryException(f"Failed to create slot lock: {str(e)}")

    def get_slot_lock_version(self, resource_id: str, lock_date: date) -> int:
        result = self.db.execute(
            select(SlotLock.version).where(
                SlotLock.resource_id == resource_id,
                SlotLock.lock_date == lock_date,
            )
        ).scalar_one_or_none()
        return int(result or 0)

    def compare_and_bump_slot_lock(
        self, resource_id: str, lock_date: date, expected_version: int
    ) -> bool:
        """Bump the lock version only if nobody committed since ``expected_version`` was read."""
        result = self.db.execute(
            update(SlotLock)
            .where(
                SlotLock.resource_id == resource_id,
                SlotLock.lock_date == lock_date,
                SlotLock.version == expected_version,
            )
            .values(version=SlotLock.version + 1, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    # Seat counters

    def claim_seat(self, reservation_id: str, *, is_supervisor: bool) -> bool:
        """
        Take one seat (and a supervisor slot, if requested) in a single guarded UPDATE.

        Fails when the session is full, the supervisor sub-limit is reached,
        or the reservation is no longer HELD/CONFIRMED.
        """
        guards = [
            Reservation.id == reservation_id,
            Reservation.status.in_(ACTIVE_STATUSES),
            Reservation.current_participant_count < Reservation.capacity,
        ]
        values: dict[str, Any] = {
            "current_participant_count": Reservation.current_participant_count + 1,
            "updated_at": datetime.now(timezone.utc),
        }
        if is_supervisor:
            guards.append(Reservation.supervisor_count < Reservation.supervisor_limit)
            values["supervisor_count"] = Reservation.supervisor_count + 1

        result = self.db.execute(
            update(Reservation)
            .where(and_(*guards))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    def release_seat(self, reservation_id: str, *, is_supervisor: bool) -> bool:
        guards = [
            Reservation.id == reservation_id,
            Reservation.current_participant_count > 0,
        ]
        values: dict[str, Any] = {
            "current_participant_count": Reservation.current_participant_count - 1,
            "updated_at": datetime.now(timezone.utc),
        }
        if is_supervisor:
            guards.append(Reservation.supervisor_count > 0)
            values["supervisor_count"] = Reservation.supervisor_count - 1

        result = self.db.execute(
            update(Reservation)
            .where(and_(*guards))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    def add_participant_row(self, reservation_id: str, **kwargs: Any) -> ReservationParticipant:
        """Append a participant after the current last position."""
        try:
            last_position = self.db.execute(
                select(func.max(ReservationParticipant.position)).where(
                    ReservationParticipant.reservation_id == reservation_id
                )
            ).scalar_one_or_none()
            participant = ReservationParticipant(
                reservation_id=reservation_id,
                position=(last_position + 1) if last_position is not None else 0,
                **kwargs,
            )
            self.db.add(participant)
            self.db.flush()
            return participant
        except SQLAlchemyError as e:
            self.logger.error(f"Error adding participant to {reservation_id}: {str(e)}")
            raise RepositoryException(f"Failed to add participant: {str(e)}")

    def reparent_participant(self, participant_id: str, target_reservation_id: str) -> None:
        last_position = self.db.execute(
            select(func.max(ReservationParticipant.position)).where(
                ReservationParticipant.reservation_id == target_reservation_id
            )
        ).scalar_one_or_none()
        self.db.execute(
            update(ReservationParticipant)
            .where(ReservationParticipant.id == participant_id)
            .values(
                reservation_id=target_reservation_id,
                position=(last_position + 1) if last_position is not None else 0,
            )
            .execution_options(synchronize_session=False)
        )

    def delete_participant(self, participant_id: str) -> None:
        participant = self.db.get(ReservationParticipant, participant_id)
        if participant is not None:
            self.db.delete(participant)
            self.db.flush()

    # Status transitions

    def transition_status(
        self,
        reservation_id: str,
        from_statuses: Iterable[ReservationStatus],
        to_status: ReservationStatus,
        **values: Any,
    ) -> bool:
        """Guarded status change; returns False when the current status is not a legal source."""
        now = datetime.now(timezone.utc)
        values.setdefault("updated_at", now)
        result = self.db.execute(
            update(Reservation)
            .where(
                Reservation.id == reservation_id,
                Reservation.status.in_([s.value for s in from_statuses]),
            )
            .values(status=to_status.value, **values)
            .execution_options(synchronize_session=False)
        )
        updated = bool(result.rowcount)
        if updated:
            self.logger.info(
                "Reservation status transition",
                extra={"reservation_id": reservation_id, "to_status": to_status.value},
            )
        return updated

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(selectinload(Reservation.participants))
