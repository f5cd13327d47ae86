# backend/lessonbook/services/availability_service.py
"""
Availability resolver for the lessonbook engine.

Computes the bookable windows of a date from the slot template store and
the reservation ledger:

1. expand the active weekly templates for the weekday;
2. union in Extra windows visible to the requesting identity;
3. subtract Blocked ranges (a full-day block empties the date);
4. subtract HELD/CONFIRMED reservations, padded by the buffer of the
   window they sit in;
5. merge overlapping windows (abutting windows stay separate) and,
   when a lesson duration is given, cut them into lesson-sized slots.

The resolver is read-only and takes no locks. Past or unparsable dates
resolve to an empty list instead of an error so the endpoint is safe to
poll.
"""

from datetime import date, datetime, timedelta
import logging
from typing import Dict, List, Optional, Union

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.constants import MAX_RANGE_DAYS
from ..core.exceptions import ValidationException
from ..core.timezone_utils import get_school_today
from ..repositories.factory import RepositoryFactory
from ..utils.time_windows import (
    TimeWindow,
    find_containing,
    merge_overlapping,
    subtract_all,
    time_to_minutes,
)
from .base import BaseService

logger = logging.getLogger(__name__)

DateLike = Union[date, str]


def parse_date(value: DateLike) -> Optional[date]:
    """Accept a date, a datetime or an ISO ``YYYY-MM-DD`` string; None when unparsable."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        return None


class AvailabilityService(BaseService):
    """Read-only resolution of bookable windows."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.schedule_repository = RepositoryFactory.create_schedule_repository(db)
        self.reservation_repository = RepositoryFactory.create_reservation_repository(db)

    @BaseService.measure_operation("get_available_windows")
    def get_available_windows(
        self,
        target_date: DateLike,
        identity: Optional[str] = None,
        resource_id: Optional[str] = None,
        duration_minutes: Optional[int] = None,
    ) -> List[TimeWindow]:
        """
        Ordered bookable windows for a date.

        Args:
            target_date: Date or ISO date string
            identity: Requesting customer; unlocks Extra windows reserved for them
            resource_id: Resource to resolve for (defaults to the configured resource)
            duration_minutes: When set, windows are cut into slots of this length

        Returns:
            Windows ordered by start time; empty for past or unparsable dates
        """
        on_date = parse_date(target_date)
        if on_date is None:
            self.logger.debug(f"Unparsable availability date: {target_date!r}")
            return []
        if on_date < get_school_today():
            return []
        if duration_minutes is not None and duration_minutes <= 0:
            return []

        windows = self.get_free_windows(on_date, identity=identity, resource_id=resource_id)
        if duration_minutes is None:
            return windows

        slots: List[TimeWindow] = []
        for window in windows:
            slots.extend(window.slots(duration_minutes))
        return slots

    def get_free_windows(
        self,
        on_date: date,
        identity: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> List[TimeWindow]:
        """
        Free windows of a date, without the past-date guard or slicing.

        The reservation engine calls this at commit time to check containment.
        """
        resource = resource_id or settings.default_resource_id

        blocked = self.schedule_repository.get_blocked_ranges(on_date)
        if any(b.is_full_day for b in blocked):
            return []

        windows = [
            TimeWindow.from_times(t.start_time, t.end_time, t.buffer_minutes or 0)
            for t in self.schedule_repository.get_active_templates_for_weekday(on_date.weekday())
        ]
        windows.extend(
            TimeWindow.from_times(extra.start_time, extra.end_time)
            for extra in self.schedule_repository.get_extra_windows(on_date)
            if extra.is_visible_to(identity)
        )
        windows = merge_overlapping(windows)

        block_cuts = [(time_to_minutes(b.start_time), time_to_minutes(b.end_time)) for b in blocked]
        windows = subtract_all(windows, block_cuts)

        reservation_cuts = [
            (time_to_minutes(r.start_time), time_to_minutes(r.start_time) + r.duration_minutes)
            for r in self.reservation_repository.get_active_for_date(resource, on_date)
        ]
        windows = subtract_all(windows, reservation_cuts, pad_with_buffer=True)

        return sorted(windows)

    def find_window_for(
        self,
        on_date: date,
        start_minute: int,
        end_minute: int,
        identity: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> Optional[TimeWindow]:
        """The single free window that fully contains the requested span, if any."""
        return find_containing(
            self.get_free_windows(on_date, identity=identity, resource_id=resource_id),
            start_minute,
            end_minute,
        )

    def is_window_available(
        self,
        target_date: DateLike,
        start_minute: int,
        end_minute: int,
        identity: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> bool:
        on_date = parse_date(target_date)
        if on_date is None or on_date < get_school_today():
            return False
        return (
            self.find_window_for(
                on_date, start_minute, end_minute, identity=identity, resource_id=resource_id
            )
            is not None
        )

    @BaseService.measure_operation("get_availability_for_range")
    def get_availability_for_range(
        self,
        start_date: date,
        end_date: date,
        identity: Optional[str] = None,
        resource_id: Optional[str] = None,
        duration_minutes: Optional[int] = None,
    ) -> Dict[str, List[TimeWindow]]:
        """Per-day availability for an inclusive date range (week views)."""
        if end_date < start_date:
            raise ValidationException("end_date must not be before start_date")
        if (end_date - start_date).days + 1 > MAX_RANGE_DAYS:
            raise ValidationException(f"Date range cannot exceed {MAX_RANGE_DAYS} days")

        result: Dict[str, List[TimeWindow]] = {}
        current = start_date
        while current <= end_date:
            result[current.isoformat()] = self.get_available_windows(
                current,
                identity=identity,
                resource_id=resource_id,
                duration_minutes=duration_minutes,
            )
            current += timedelta(days=1)
        return result
