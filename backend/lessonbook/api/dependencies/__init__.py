# backend/lessonbook/api/dependencies/__init__.py
"""
Central export point for all dependencies.
"""

from .database import get_db
from .services import (
    get_availability_service,
    get_invoice_service,
    get_payment_hold_service,
    get_reservation_service,
    get_schedule_service,
)

__all__ = [
    # Database
    "get_db",
    # Services
    "get_availability_service",
    "get_invoice_service",
    "get_payment_hold_service",
    "get_reservation_service",
    "get_schedule_service",
]
