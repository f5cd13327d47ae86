# backend/lessonbook/repositories/schedule_repository.py
"""
Slot template store repository.

Read paths feed the availability resolver; write paths back the admin CRUD
in ScheduleService. Nothing here commits.
"""

from datetime import date
import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.schedule import BlockedRange, ExtraWindow, SlotTemplate
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ScheduleRepository(BaseRepository[SlotTemplate]):
    """Queries over weekly templates and their date-scoped overrides."""

    def __init__(self, db: Session):
        super().__init__(db, SlotTemplate)

    # Templates

    def get_active_templates_for_weekday(self, day_of_week: int) -> List[SlotTemplate]:
        """Active templates for a weekday (0 = Monday), ordered by start time."""
        try:
            return (
                self.db.query(SlotTemplate)
                .filter(
                    SlotTemplate.day_of_week == day_of_week,
                    SlotTemplate.is_active.is_(True),
                )
                .order_by(SlotTemplate.start_time)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading templates for weekday {day_of_week}: {str(e)}")
            raise RepositoryException(f"Failed to load slot templates: {str(e)}")

    def list_templates(self, include_inactive: bool = False) -> List[SlotTemplate]:
        query = self.db.query(SlotTemplate)
        if not include_inactive:
            query = query.filter(SlotTemplate.is_active.is_(True))
        return self._execute_query(
            query.order_by(SlotTemplate.day_of_week, SlotTemplate.start_time)
        )

    # Blocked ranges

    def get_blocked_ranges(self, on_date: date) -> List[BlockedRange]:
        try:
            return (
                self.db.query(BlockedRange)
                .filter(BlockedRange.date == on_date)
                .order_by(BlockedRange.start_time)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading blocked ranges for {on_date}: {str(e)}")
            raise RepositoryException(f"Failed to load blocked ranges: {str(e)}")

    def create_blocked_range(self, **kwargs) -> BlockedRange:
        try:
            blocked = BlockedRange(**kwargs)
            self.db.add(blocked)
            self.db.flush()
            return blocked
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating blocked range: {str(e)}")
            raise RepositoryException(f"Failed to create blocked range: {str(e)}")

    def get_blocked_range(self, blocked_id: str) -> Optional[BlockedRange]:
        return self.db.get(BlockedRange, blocked_id)

    # Extra windows

    def get_extra_windows(self, on_date: date) -> List[ExtraWindow]:
        try:
            return (
                self.db.query(ExtraWindow)
                .filter(ExtraWindow.date == on_date)
                .order_by(ExtraWindow.start_time)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading extra windows for {on_date}: {str(e)}")
            raise RepositoryException(f"Failed to load extra windows: {str(e)}")

    def create_extra_window(self, **kwargs) -> ExtraWindow:
        try:
            extra = ExtraWindow(**kwargs)
            self.db.add(extra)
            self.db.flush()
            return extra
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating extra window: {str(e)}")
            raise RepositoryException(f"Failed to create extra window: {str(e)}")

    def get_extra_window(self, extra_id: str) -> Optional[ExtraWindow]:
        return self.db.get(ExtraWindow, extra_id)

    def delete_override(self, override: BlockedRange | ExtraWindow) -> None:
        try:
            self.db.delete(override)
            self.db.flush()
        except SQLAlchemyError as e:
            self.logger.error(f"Error deleting override {override!r}: {str(e)}")
            raise RepositoryException(f"Failed to delete override: {str(e)}")
