# backend/lessonbook/repositories/credit_repository.py
"""
Stored credit repository.

Credits are redeemed with a guarded decrement so two concurrent
redemptions of the last unit cannot both succeed.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.invoice import StoredCredit
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class CreditRepository(BaseRepository[StoredCredit]):
    """Repository for stored lesson credits."""

    def __init__(self, db: Session):
        super().__init__(db, StoredCredit)
        self.logger = logging.getLogger(__name__)

    def consume_one(self, credit_id: str) -> bool:
        """Debit one unit; returns False if the credit is missing or exhausted."""
        try:
            result = self.db.execute(
                update(StoredCredit)
                .where(StoredCredit.id == credit_id, StoredCredit.credits_remaining > 0)
                .values(
                    credits_remaining=StoredCredit.credits_remaining - 1,
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            return bool(result.rowcount)
        except SQLAlchemyError as exc:
            self.logger.error("Failed to consume credit %s: %s", credit_id, str(exc))
            raise RepositoryException("Failed to consume credit") from exc

    def restore_one(self, credit_id: str) -> bool:
        """Give a unit back (invoice paid by credit was cancelled)."""
        result = self.db.execute(
            update(StoredCredit)
            .where(
                StoredCredit.id == credit_id,
                StoredCredit.credits_remaining < StoredCredit.credits_total,
            )
            .values(
                credits_remaining=StoredCredit.credits_remaining + 1,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)
