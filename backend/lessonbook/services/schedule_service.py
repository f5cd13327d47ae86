# backend/lessonbook/services/schedule_service.py
"""
Slot template store service.

Admin-facing CRUD over weekly templates and the date-scoped Blocked and
Extra overrides. Templates are soft-deactivated; overrides may be deleted.
"""

from datetime import date, time
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.constants import MAX_BUFFER_MINUTES, MAX_REASON_LENGTH
from ..core.exceptions import NotFoundException, ValidationException
from ..models.schedule import BlockedRange, ExtraWindow, SlotTemplate
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


def _validate_time_range(start_time: time, end_time: time) -> None:
    if start_time >= end_time:
        raise ValidationException(
            "Start time must be before end time",
            details={"start_time": start_time.isoformat(), "end_time": end_time.isoformat()},
        )


def _validate_reason(reason: Optional[str]) -> None:
    if reason is not None and len(reason) > MAX_REASON_LENGTH:
        raise ValidationException(f"Reason must be at most {MAX_REASON_LENGTH} characters")


class ScheduleService(BaseService):
    """CRUD for the slot template store."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.repository = RepositoryFactory.create_schedule_repository(db)

    @BaseService.measure_operation("create_template")
    def create_template(
        self,
        day_of_week: int,
        start_time: time,
        end_time: time,
        buffer_minutes: int = 0,
    ) -> SlotTemplate:
        if not 0 <= day_of_week <= 6:
            raise ValidationException("day_of_week must be between 0 (Monday) and 6 (Sunday)")
        _validate_time_range(start_time, end_time)
        if not 0 <= buffer_minutes <= MAX_BUFFER_MINUTES:
            raise ValidationException(
                f"buffer_minutes must be between 0 and {MAX_BUFFER_MINUTES}"
            )

        with self.transaction():
            template = self.repository.create(
                day_of_week=day_of_week,
                start_time=start_time,
                end_time=end_time,
                buffer_minutes=buffer_minutes,
                is_active=True,
            )
        self.log_operation("create_template", template_id=template.id, day_of_week=day_of_week)
        return template

    @BaseService.measure_operation("deactivate_template")
    def deactivate_template(self, template_id: str) -> SlotTemplate:
        """Soft-deactivate a template; idempotent."""
        with self.transaction():
            template = self.repository.update(template_id, is_active=False)
            if template is None:
                raise NotFoundException(f"Slot template {template_id} not found")
        return template

    def list_templates(self, include_inactive: bool = False) -> List[SlotTemplate]:
        return self.repository.list_templates(include_inactive=include_inactive)

    @BaseService.measure_operation("add_blocked_range")
    def add_blocked_range(
        self,
        on_date: date,
        start_time: Optional[time] = None,
        end_time: Optional[time] = None,
        reason: Optional[str] = None,
    ) -> BlockedRange:
        """Block a whole day (no times) or a partial range of it."""
        if (start_time is None) != (end_time is None):
            raise ValidationException("Provide both start_time and end_time, or neither")
        if start_time is not None and end_time is not None:
            _validate_time_range(start_time, end_time)
        _validate_reason(reason)

        with self.transaction():
            blocked = self.repository.create_blocked_range(
                date=on_date, start_time=start_time, end_time=end_time, reason=reason
            )
        self.log_operation(
            "add_blocked_range",
            blocked_range_id=blocked.id,
            date=on_date.isoformat(),
            full_day=blocked.is_full_day,
        )
        return blocked

    def remove_blocked_range(self, blocked_range_id: str) -> None:
        with self.transaction():
            blocked = self.repository.get_blocked_range(blocked_range_id)
            if blocked is None:
                raise NotFoundException(f"Blocked range {blocked_range_id} not found")
            self.repository.delete_override(blocked)

    @BaseService.measure_operation("add_extra_window")
    def add_extra_window(
        self,
        on_date: date,
        start_time: time,
        end_time: time,
        reason: Optional[str] = None,
        reserved_for_identity: Optional[str] = None,
    ) -> ExtraWindow:
        _validate_time_range(start_time, end_time)
        _validate_reason(reason)

        with self.transaction():
            extra = self.repository.create_extra_window(
                date=on_date,
                start_time=start_time,
                end_time=end_time,
                reason=reason,
                reserved_for_identity=reserved_for_identity,
            )
        self.log_operation(
            "add_extra_window",
            extra_window_id=extra.id,
            date=on_date.isoformat(),
            reserved=reserved_for_identity is not None,
        )
        return extra

    def remove_extra_window(self, extra_window_id: str) -> None:
        with self.transaction():
            extra = self.repository.get_extra_window(extra_window_id)
            if extra is None:
                raise NotFoundException(f"Extra window {extra_window_id} not found")
            self.repository.delete_override(extra)
