# backend/lessonbook/routes/v1/availability.py
"""
Availability routes - API v1

Endpoints:
    GET / - Per-day windows for a date range (week view)
    GET /{date} - Bookable windows for one date

Read only and safe to poll: past or unparsable dates return no windows.
"""

from datetime import date
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ...api.dependencies import get_availability_service
from ...api.errors import handle_domain_exception
from ...core.constants import MAX_LESSON_DURATION
from ...core.exceptions import DomainException
from ...schemas.availability import (
    AvailabilityRangeResponse,
    AvailabilityResponse,
    TimeWindowResponse,
)
from ...services.availability_service import AvailabilityService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["availability-v1"])


@router.get("", response_model=AvailabilityRangeResponse)
def get_availability_range(
    start_date: date = Query(...),
    end_date: date = Query(...),
    identity: Optional[str] = Query(None, max_length=64),
    resource_id: Optional[str] = Query(None, max_length=64),
    duration_minutes: Optional[int] = Query(None, ge=1, le=MAX_LESSON_DURATION),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityRangeResponse:
    try:
        days = availability_service.get_availability_for_range(
            start_date,
            end_date,
            identity=identity,
            resource_id=resource_id,
            duration_minutes=duration_minutes,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return AvailabilityRangeResponse(
        start_date=start_date,
        end_date=end_date,
        days={
            day: [TimeWindowResponse.from_window(w) for w in windows]
            for day, windows in days.items()
        },
    )


@router.get("/{target_date}", response_model=AvailabilityResponse)
def get_available_windows(
    target_date: str,
    identity: Optional[str] = Query(None, max_length=64),
    resource_id: Optional[str] = Query(None, max_length=64),
    duration_minutes: Optional[int] = Query(None, ge=1, le=MAX_LESSON_DURATION),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityResponse:
    """
    Bookable windows for a date.

    ``identity`` unlocks Extra windows reserved for that customer. With
    ``duration_minutes`` the windows are cut into lesson-sized slots.
    """
    windows = availability_service.get_available_windows(
        target_date,
        identity=identity,
        resource_id=resource_id,
        duration_minutes=duration_minutes,
    )
    return AvailabilityResponse(
        date=target_date,
        windows=[TimeWindowResponse.from_window(w) for w in windows],
    )
