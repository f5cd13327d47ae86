# backend/lessonbook/api/errors.py
"""Translate domain exceptions raised by services into HTTP errors."""

from typing import NoReturn

from fastapi import HTTPException, status

from ..core.exceptions import DomainException


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception() from exc
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
