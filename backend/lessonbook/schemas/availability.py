"""Availability schemas."""

from datetime import date
from typing import Dict, List

from pydantic import BaseModel, Field

from ..utils.time_windows import TimeWindow


class TimeWindowResponse(BaseModel):
    """A bookable window rendered as ``HH:MM`` strings."""

    start: str = Field(..., description="Window start (HH:MM)")
    end: str = Field(..., description="Window end (HH:MM, exclusive)")
    duration_minutes: int
    buffer_minutes: int = 0

    @classmethod
    def from_window(cls, window: TimeWindow) -> "TimeWindowResponse":
        return cls(
            start=window.start.strftime("%H:%M"),
            end=window.end.strftime("%H:%M"),
            duration_minutes=window.duration_minutes,
            buffer_minutes=window.buffer_minutes,
        )


class AvailabilityResponse(BaseModel):
    date: str
    windows: List[TimeWindowResponse]


class AvailabilityRangeResponse(BaseModel):
    start_date: date
    end_date: date
    days: Dict[str, List[TimeWindowResponse]]
