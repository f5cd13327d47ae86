# backend/lessonbook/schemas/reservation.py
"""
Reservation schemas.

Request DTOs carry types and bounds only; business rules (capacity,
supervisor limits, window containment) are enforced by ReservationService.
"""

from datetime import date, datetime, time
from typing import List, Optional

from pydantic import Field, field_validator, model_validator

from ..core.constants import MAX_LESSON_DURATION, MAX_REASON_LENGTH, MIN_LESSON_DURATION
from ..models.reservation import ResourceType
from .base import StandardizedModel, StrictRequestModel, parse_hhmm


class ParticipantIn(StrictRequestModel):
    """A known identity or a guest contact taking one seat."""

    identity_id: Optional[str] = Field(None, max_length=64)
    guest_name: Optional[str] = Field(None, max_length=255)
    guest_email: Optional[str] = Field(None, max_length=255)
    guest_phone: Optional[str] = Field(None, max_length=50)
    is_supervisor: bool = False

    @model_validator(mode="after")
    def _identity_or_guest(self) -> "ParticipantIn":
        if not self.identity_id and not (self.guest_name and self.guest_name.strip()):
            raise ValueError("Participant needs an identity_id or a guest_name")
        return self


class ResourceSpec(StrictRequestModel):
    """What is being booked, as supplied by the catalog collaborator."""

    resource_type: ResourceType = ResourceType.SINGLE_LESSON
    resource_id: Optional[str] = Field(None, max_length=64)
    capacity: int = Field(1, ge=1, le=100)
    supervisor_limit: Optional[int] = Field(None, ge=0)
    lesson_type: Optional[str] = Field(None, max_length=100)


class ReservationCreate(StrictRequestModel):
    resource: ResourceSpec = Field(default_factory=ResourceSpec)
    scheduled_date: date
    start_time: time
    duration_minutes: int = Field(..., ge=MIN_LESSON_DURATION, le=MAX_LESSON_DURATION)
    participants: List[ParticipantIn] = Field(..., min_length=1)
    identity: Optional[str] = Field(None, max_length=64, description="Booking identity")

    @field_validator("start_time", mode="before")
    @classmethod
    def _parse_start_time(cls, v: object) -> object:
        return parse_hhmm(v)


class ParticipantMove(StrictRequestModel):
    target_reservation_id: str = Field(..., min_length=1)


class ReservationCancel(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=MAX_REASON_LENGTH)
    initiator: Optional[str] = Field(None, max_length=64)
    reimburse_credit: bool = True


class ParticipantResponse(StandardizedModel):
    id: str
    identity_id: Optional[str] = None
    guest_name: Optional[str] = None
    guest_email: Optional[str] = None
    guest_phone: Optional[str] = None
    is_supervisor: bool
    position: int


class ReservationResponse(StandardizedModel):
    id: str
    resource_id: str
    resource_type: str
    lesson_type: Optional[str] = None
    scheduled_date: date
    start_time: time
    end_time: time
    duration_minutes: int
    buffer_minutes: int
    capacity: int
    supervisor_limit: int
    current_participant_count: int
    seats_left: int
    supervisor_count: int
    status: str
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    participants: List[ParticipantResponse] = Field(default_factory=list)
