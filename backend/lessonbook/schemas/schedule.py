# backend/lessonbook/schemas/schedule.py
"""Slot template store schemas (weekly templates, Blocked and Extra overrides)."""

import datetime as dt
from datetime import time
from typing import Optional

from pydantic import Field, field_validator

from ..core.constants import MAX_BUFFER_MINUTES, MAX_REASON_LENGTH
from .base import StandardizedModel, StrictRequestModel, parse_hhmm


class SlotTemplateCreate(StrictRequestModel):
    day_of_week: int = Field(..., ge=0, le=6, description="0 = Monday")
    start_time: time
    end_time: time
    buffer_minutes: int = Field(0, ge=0, le=MAX_BUFFER_MINUTES)

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _parse_times(cls, v: object) -> object:
        return parse_hhmm(v)


class BlockedRangeCreate(StrictRequestModel):
    """Omit both times to block the whole day."""

    date: dt.date
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    reason: Optional[str] = Field(None, max_length=MAX_REASON_LENGTH)

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _parse_times(cls, v: object) -> object:
        return parse_hhmm(v)


class ExtraWindowCreate(StrictRequestModel):
    date: dt.date
    start_time: time
    end_time: time
    reason: Optional[str] = Field(None, max_length=MAX_REASON_LENGTH)
    reserved_for_identity: Optional[str] = Field(None, max_length=64)

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _parse_times(cls, v: object) -> object:
        return parse_hhmm(v)


class SlotTemplateResponse(StandardizedModel):
    id: str
    day_of_week: int
    start_time: time
    end_time: time
    buffer_minutes: int
    is_active: bool


class BlockedRangeResponse(StandardizedModel):
    id: str
    date: dt.date
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    reason: Optional[str] = None


class ExtraWindowResponse(StandardizedModel):
    id: str
    date: dt.date
    start_time: time
    end_time: time
    reason: Optional[str] = None
    reserved_for_identity: Optional[str] = None
