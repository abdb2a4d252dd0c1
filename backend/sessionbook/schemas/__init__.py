# backend/sessionbook/schemas/__init__.py
"""Pydantic request and response schemas for the SessionBook API."""

from ._strict_base import StrictModel, StrictRequestModel
from .availability import (
    AvailabilityRuleCreate,
    AvailabilityRuleReplace,
    AvailabilityRuleResponse,
    AvailableDatesResponse,
    DateExceptionCreate,
    DateExceptionResponse,
    TimeSlotResponse,
    TimeSlotsResponse,
)
from .booking import (
    BookingCancelRequest,
    BookingCreate,
    BookingErrorResponse,
    BookingResponse,
    BookingStatusUpdate,
)
from .payment import (
    CheckoutRequest,
    CheckoutResponse,
    CreditBalanceResponse,
    CreditGrantRequest,
    CreditGrantResponse,
    CreditPackageResponse,
    CreditRefundResponse,
    PaymentCallbackResponse,
)

__all__ = [
    "AvailabilityRuleCreate",
    "AvailabilityRuleReplace",
    "AvailabilityRuleResponse",
    "AvailableDatesResponse",
    "BookingCancelRequest",
    "BookingCreate",
    "BookingErrorResponse",
    "BookingResponse",
    "BookingStatusUpdate",
    "CheckoutRequest",
    "CheckoutResponse",
    "CreditBalanceResponse",
    "CreditGrantRequest",
    "CreditGrantResponse",
    "CreditPackageResponse",
    "CreditRefundResponse",
    "DateExceptionCreate",
    "DateExceptionResponse",
    "PaymentCallbackResponse",
    "StrictModel",
    "StrictRequestModel",
    "TimeSlotResponse",
    "TimeSlotsResponse",
]
