# backend/sessionbook/core/exceptions.py
"""
Domain-specific exceptions for the SessionBook booking engine.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
Components raise them; only the booking workflow (and the housekeeping
sweep) reacts to them with compensating actions.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)

SLOT_UNAVAILABLE_MESSAGE = "This time slot is no longer available. Please choose a different time."
INSUFFICIENT_CREDITS_MESSAGE = (
    "No session credits available. Please purchase a package to book sessions."
)
GENERIC_FAILURE_MESSAGE = (
    "We couldn't complete your booking. Please try again or contact support."
)


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
        """Convert to an HTTPException carrying the structured error body."""
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when caller input is malformed (InvalidArgument)."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        # Internal detail is logged, never returned to the caller.
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": GENERIC_FAILURE_MESSAGE,
                "code": self.code,
                "details": {},
            },
        )


# Specific booking-engine exceptions


class SlotUnavailableException(ConflictException):
    """Raised when the requested slot is already held by another booking."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or SLOT_UNAVAILABLE_MESSAGE,
            code="SLOT_UNAVAILABLE",
            details=details or {},
        )


class InsufficientCreditsException(BusinessRuleException):
    """Raised when a patient has no available session credit."""

    status_code = status.HTTP_402_PAYMENT_REQUIRED

    def __init__(self, patient_id: str, message: Optional[str] = None):
        super().__init__(
            message=message or INSUFFICIENT_CREDITS_MESSAGE,
            code="INSUFFICIENT_CREDITS",
            details={"patient_id": patient_id},
        )


class InvalidStatusTransitionException(BusinessRuleException):
    """Raised when a booking status change is not allowed by the state machine."""

    def __init__(self, booking_id: str, current_status: str, requested_status: str):
        super().__init__(
            message=f"Cannot change booking from {current_status} to {requested_status}",
            code="INVALID_STATUS_TRANSITION",
            details={
                "booking_id": booking_id,
                "current_status": current_status,
                "requested_status": requested_status,
            },
        )


class AvailabilityOverlapException(ConflictException):
    """Raised when an availability window overlaps with an existing one."""

    def __init__(
        self,
        scope: str,
        new_range: str,
        conflicting_range: str,
    ):
        super().__init__(
            message=f"Overlapping availability on {scope}: {new_range} conflicts with {conflicting_range}",
            code="AVAILABILITY_OVERLAP",
            details={
                "scope": scope,
                "new_window": new_range,
                "conflicting_window": conflicting_range,
            },
        )


class PaymentCallbackException(ValidationException):
    """Raised when a payment provider callback cannot be verified or parsed."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="INVALID_PAYMENT_CALLBACK", details=details)


class InvariantViolationException(ServiceException):
    """
    Raised when an orchestration invariant is broken (e.g. spending a credit
    that is not reserved). Indicates a bug, never a user-facing condition.
    """

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="INVARIANT_VIOLATION", details=details)


class TransientStorageException(ServiceException):
    """Raised when the database or an adapter is temporarily unreachable."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="TEMPORARILY_UNAVAILABLE", details=details)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": GENERIC_FAILURE_MESSAGE,
                "code": self.code,
                "details": {},
            },
            headers={"Retry-After": "2"},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues or query failures.
    """


def is_transient_db_error(exc: Exception) -> bool:
    """Check whether a database error is worth retrying (pool exhaustion, lost connection)."""
    error_str = str(exc).lower()
    return (
        "queuepool" in error_str
        or "database is locked" in error_str
        or "could not connect" in error_str
        or "server closed the connection" in error_str
        or ("timeout" in error_str and ("connection" in error_str or "pool" in error_str))
    )
