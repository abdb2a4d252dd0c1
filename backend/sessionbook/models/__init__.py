# backend/sessionbook/models/__init__.py
"""
SQLAlchemy models for the SessionBook booking engine.

Importing this package registers every table on ``Base.metadata``.
"""

from .availability import AvailabilityRule, DateException, SessionType
from .booking import (
    ACTIVE_STATUSES,
    ALLOWED_TRANSITIONS,
    SLOT_RELEASED_REASON,
    Booking,
    BookingStatus,
)
from .credit import CreditPackage, CreditStatus, SessionCredit
from .payment import PaymentIntent, PaymentIntentStatus
from .user import User, UserRole
from .webhook_event import WebhookEvent

__all__ = [
    "ACTIVE_STATUSES",
    "ALLOWED_TRANSITIONS",
    "SLOT_RELEASED_REASON",
    "AvailabilityRule",
    "Booking",
    "BookingStatus",
    "CreditPackage",
    "CreditStatus",
    "DateException",
    "PaymentIntent",
    "PaymentIntentStatus",
    "SessionCredit",
    "SessionType",
    "User",
    "UserRole",
    "WebhookEvent",
]
