# backend/lessonbook/routes/v1/__init__.py
"""
API v1 Routes

Versioned API endpoints under /api/v1.
"""

from . import availability, holds, invoices, reservations, schedule

__all__ = [
    "availability",
    "holds",
    "invoices",
    "reservations",
    "schedule",
]
