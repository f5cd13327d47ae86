"""
Timezone utilities for the lessonbook engine.

Lesson dates and times are wall-clock values in the school's timezone;
payment deadlines and audit timestamps are stored in UTC.
"""

from datetime import date, datetime, timezone
from typing import Optional

import pytz

from lessonbook.core.config import settings


def get_school_timezone() -> pytz.BaseTzInfo:
    """Return the configured school timezone as a pytz timezone."""
    return pytz.timezone(settings.school_timezone)


def get_school_now() -> datetime:
    """Current wall-clock time in the school's timezone (timezone-aware)."""
    return datetime.now(timezone.utc).astimezone(get_school_timezone())


def get_school_today() -> date:
    """Today's date in the school's timezone."""
    return get_school_now().date()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> datetime:
    """Normalize an instant to aware UTC; naive values are taken as UTC, None means now."""
    if value is None:
        return utc_now()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
