# backend/lessonbook/routes/v1/reservations.py
"""
Reservation routes - API v1

Endpoints:
    POST / - Commit a HELD reservation
    GET /{reservation_id} - Get reservation details
    POST /{reservation_id}/participants - Add a participant to a group session
    DELETE /participants/{participant_id} - Remove a participant
    POST /participants/{participant_id}/move - Move a participant to another session
    POST /{reservation_id}/cancel - Cancel a reservation
    POST /{reservation_id}/confirm - Confirm without payment (staff)
    POST /{reservation_id}/complete - Mark a confirmed lesson completed
"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, status

from ...api.dependencies import get_reservation_service
from ...api.errors import handle_domain_exception
from ...core.exceptions import DomainException
from ...schemas.reservation import (
    ParticipantIn,
    ParticipantMove,
    ReservationCancel,
    ReservationCreate,
    ReservationResponse,
)
from ...services.reservation_service import ReservationService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["reservations-v1"])


@router.post("", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
def create_reservation(
    payload: ReservationCreate = Body(...),
    reservation_service: ReservationService = Depends(get_reservation_service),
) -> ReservationResponse:
    """
    Commit a reservation for a window that is free right now.

    Returns 409 SLOT_UNAVAILABLE when another booking took the window first.
    """
    try:
        reservation = reservation_service.create_reservation(
            payload.resource,
            payload.scheduled_date,
            payload.start_time,
            payload.duration_minutes,
            payload.participants,
            identity=payload.identity,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return ReservationResponse.model_validate(reservation)


@router.get("/{reservation_id}", response_model=ReservationResponse)
def get_reservation(
    reservation_id: str,
    reservation_service: ReservationService = Depends(get_reservation_service),
) -> ReservationResponse:
    try:
        reservation = reservation_service.get_reservation(reservation_id)
    except DomainException as e:
        handle_domain_exception(e)
    return ReservationResponse.model_validate(reservation)


@router.post("/{reservation_id}/participants", response_model=ReservationResponse)
def add_participant(
    reservation_id: str,
    payload: ParticipantIn = Body(...),
    reservation_service: ReservationService = Depends(get_reservation_service),
) -> ReservationResponse:
    try:
        reservation = reservation_service.add_participant(reservation_id, payload)
    except DomainException as e:
        handle_domain_exception(e)
    return ReservationResponse.model_validate(reservation)


@router.delete("/participants/{participant_id}", response_model=ReservationResponse)
def remove_participant(
    participant_id: str,
    reservation_service: ReservationService = Depends(get_reservation_service),
) -> ReservationResponse:
    try:
        reservation = reservation_service.remove_participant(participant_id)
    except DomainException as e:
        handle_domain_exception(e)
    return ReservationResponse.model_validate(reservation)


@router.post("/participants/{participant_id}/move", response_model=ReservationResponse)
def move_participant(
    participant_id: str,
    payload: ParticipantMove = Body(...),
    reservation_service: ReservationService = Depends(get_reservation_service),
) -> ReservationResponse:
    """Move a participant; the response is the target session."""
    try:
        reservation = reservation_service.move_reservation(
            participant_id, payload.target_reservation_id
        )
    except DomainException as e:
        handle_domain_exception(e)
    return ReservationResponse.model_validate(reservation)


@router.post("/{reservation_id}/cancel", response_model=ReservationResponse)
def cancel_reservation(
    reservation_id: str,
    payload: Optional[ReservationCancel] = Body(None),
    reservation_service: ReservationService = Depends(get_reservation_service),
) -> ReservationResponse:
    request = payload or ReservationCancel()
    try:
        reservation = reservation_service.cancel_reservation(
            reservation_id,
            reason=request.reason,
            initiator=request.initiator,
            reimburse_credit=request.reimburse_credit,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return ReservationResponse.model_validate(reservation)


@router.post("/{reservation_id}/confirm", response_model=ReservationResponse)
def confirm_reservation(
    reservation_id: str,
    reservation_service: ReservationService = Depends(get_reservation_service),
) -> ReservationResponse:
    try:
        reservation = reservation_service.confirm_reservation(reservation_id)
    except DomainException as e:
        handle_domain_exception(e)
    return ReservationResponse.model_validate(reservation)


@router.post("/{reservation_id}/complete", response_model=ReservationResponse)
def complete_reservation(
    reservation_id: str,
    reservation_service: ReservationService = Depends(get_reservation_service),
) -> ReservationResponse:
    try:
        reservation = reservation_service.complete_reservation(reservation_id)
    except DomainException as e:
        handle_domain_exception(e)
    return ReservationResponse.model_validate(reservation)
