# backend/lessonbook/core/exceptions.py
"""
Domain-specific exceptions for the lessonbook engine.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        """Convert to HTTPException using the class status code."""
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when input is malformed; always raised before any mutation."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message=message, code="VALIDATION_ERROR", details=details)


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message=message, code="NOT_FOUND", details=details)


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Specific business exceptions


class SlotUnavailableException(ConflictException):
    """Raised when the requested window is no longer free at commit time."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or "This time is no longer available, please choose another time",
            code="SLOT_UNAVAILABLE",
            details=details or {},
        )


class CapacityExceededException(ConflictException):
    """Raised when a group session has no free seat."""

    def __init__(
        self,
        capacity: int,
        *,
        message: Optional[str] = None,
        code: str = "CAPACITY_EXCEEDED",
        details: Optional[Dict[str, Any]] = None,
    ):
        merged: Dict[str, Any] = {"capacity": capacity}
        merged.update(details or {})
        super().__init__(
            message=message or f"Session is full ({capacity} participants)",
            code=code,
            details=merged,
        )


class SupervisorLimitExceededException(CapacityExceededException):
    """Raised when a group session already has its maximum number of supervisors."""

    def __init__(
        self, capacity: int, supervisor_limit: int, *, details: Optional[Dict[str, Any]] = None
    ):
        merged: Dict[str, Any] = {"supervisor_limit": supervisor_limit}
        merged.update(details or {})
        super().__init__(
            capacity,
            message=f"Session already has {supervisor_limit} supervisor(s)",
            code="SUPERVISOR_LIMIT_EXCEEDED",
            details=merged,
        )


class InvalidStateException(ConflictException):
    """Raised when an operation is not legal for the entity's current status."""

    def __init__(
        self,
        message: str,
        *,
        current_status: Optional[str] = None,
        code: str = "INVALID_STATE",
        details: Optional[Dict[str, Any]] = None,
    ):
        merged = dict(details or {})
        if current_status is not None:
            merged["current_status"] = current_status
        super().__init__(message=message, code=code, details=merged)


class PaymentHoldExpiredException(InvalidStateException):
    """Raised when a settlement arrives after the invoice's payment hold lapsed."""

    def __init__(self, invoice_id: str, deadline: Any):
        super().__init__(
            "The payment window for this booking has expired, please book again",
            code="PAYMENT_HOLD_EXPIRED",
            details={"invoice_id": invoice_id, "deadline": str(deadline)},
        )


class ActiveInvoiceExistsException(ConflictException):
    """Raised when a reservation already has a pending, paid or overdue invoice."""

    def __init__(self, reservation_id: str, invoice_id: Optional[str] = None):
        super().__init__(
            message="This reservation already has an active invoice",
            code="ACTIVE_INVOICE_EXISTS",
            details={"reservation_id": reservation_id, "invoice_id": invoice_id},
        )


class InsufficientCreditException(BusinessRuleException):
    """Raised when a stored credit is exhausted or does not exist."""

    def __init__(self, credit_id: str):
        super().__init__(
            message="Not enough credits available",
            code="INSUFFICIENT_CREDIT",
            details={"credit_id": credit_id},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
