"""
Value types returned by the booking engine.

``attempt_booking`` never raises for expected business outcomes; it returns
a ``BookingResult`` which is either ``BookingSucceeded`` or ``BookingFailed``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, time
from enum import Enum
from typing import Any, Dict, List, Tuple, Union

from ..core.exceptions import (
    GENERIC_FAILURE_MESSAGE,
    INSUFFICIENT_CREDITS_MESSAGE,
    SLOT_UNAVAILABLE_MESSAGE,
)


@dataclass(frozen=True)
class TimeSlot:
    """A bookable interval derived from availability; identity is (therapist, date, start)."""

    therapist_id: str
    date: date
    start_time: time
    end_time: time = field(compare=False)
    duration_minutes: int = field(compare=False)
    session_type: str = field(default="individual", compare=False)
    is_override: bool = field(default=False, compare=False)

    @property
    def key(self) -> Tuple[str, date, time]:
        return (self.therapist_id, self.date, self.start_time)


@dataclass(frozen=True)
class CreditBalance:
    count: int
    credit_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PackageOffer:
    code: str
    name: str
    sessions_included: int
    price_minor: int
    currency: str
    description: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "sessions_included": self.sessions_included,
            "price_minor": self.price_minor,
            "currency": self.currency,
            "description": self.description,
        }


class BookingErrorKind(str, Enum):
    INVALID_ARGUMENT = "invalid_argument"
    NOT_FOUND = "not_found"
    SLOT_UNAVAILABLE = "slot_unavailable"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    INVARIANT_VIOLATION = "invariant_violation"
    TRANSIENT = "transient"


_DEFAULT_MESSAGES = {
    BookingErrorKind.SLOT_UNAVAILABLE: SLOT_UNAVAILABLE_MESSAGE,
    BookingErrorKind.INSUFFICIENT_CREDITS: INSUFFICIENT_CREDITS_MESSAGE,
    BookingErrorKind.INVARIANT_VIOLATION: GENERIC_FAILURE_MESSAGE,
    BookingErrorKind.TRANSIENT: GENERIC_FAILURE_MESSAGE,
}


@dataclass(frozen=True)
class BookingError:
    kind: BookingErrorKind
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    package_offers: Tuple[PackageOffer, ...] = ()

    @classmethod
    def of(
        cls,
        kind: BookingErrorKind,
        message: str | None = None,
        *,
        details: Dict[str, Any] | None = None,
        package_offers: List[PackageOffer] | Tuple[PackageOffer, ...] = (),
    ) -> "BookingError":
        return cls(
            kind=kind,
            message=message or _DEFAULT_MESSAGES.get(kind, GENERIC_FAILURE_MESSAGE),
            details=details or {},
            package_offers=tuple(package_offers),
        )


@dataclass(frozen=True)
class BookingSucceeded:
    booking_id: str
    therapist_id: str
    patient_id: str
    booking_date: date
    start_time: time
    end_time: time
    duration_minutes: int
    session_type: str
    credit_id: str
    replayed: bool = False

    ok = True


@dataclass(frozen=True)
class BookingFailed:
    error: BookingError

    ok = False


BookingResult = Union[BookingSucceeded, BookingFailed]


@dataclass(frozen=True)
class CallbackOutcome:
    """Result of handling one payment provider callback."""

    event_id: str
    status: str  # processed | duplicate | ignored
    reference: str | None = None
    credits_granted: int = 0
    credit_ids: Tuple[str, ...] = ()
