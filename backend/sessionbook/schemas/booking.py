"""
Booking schemas.

The patient is never part of the request body; the identity comes from the
authenticated caller.
"""

from datetime import date, time
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field, field_validator

from ..domain.results import BookingFailed, BookingSucceeded
from ..models.booking import Booking
from ._strict_base import StrictModel, StrictRequestModel
from .payment import CreditPackageResponse


class BookingCreate(StrictRequestModel):
    therapist_id: str = Field(..., min_length=1, description="Therapist to book")
    booking_date: date
    start_time: time
    duration_minutes: int = Field(..., gt=0, le=240)
    session_type: Optional[Literal["individual", "group"]] = None

    @field_validator("start_time")
    @classmethod
    def _whole_minutes(cls, value: time) -> time:
        if value.second or value.microsecond:
            raise ValueError("start_time must be on a whole minute")
        return value


class BookingStatusUpdate(StrictRequestModel):
    status: Literal["confirmed", "completed", "cancelled", "no_show"]
    reason: Optional[str] = Field(default=None, max_length=500)


class BookingCancelRequest(StrictRequestModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class BookingResponse(StrictModel):
    id: str
    patient_id: str
    therapist_id: str
    booking_date: date
    start_time: time
    end_time: time
    duration_minutes: int
    session_type: str
    status: str
    credit_id: Optional[str] = None
    replayed: bool = False

    @classmethod
    def from_result(cls, result: BookingSucceeded) -> "BookingResponse":
        return cls(
            id=result.booking_id,
            patient_id=result.patient_id,
            therapist_id=result.therapist_id,
            booking_date=result.booking_date,
            start_time=result.start_time,
            end_time=result.end_time,
            duration_minutes=result.duration_minutes,
            session_type=result.session_type,
            status="confirmed",
            credit_id=result.credit_id or None,
            replayed=result.replayed,
        )

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingResponse":
        return cls.model_validate(booking)


class BookingErrorResponse(StrictModel):
    kind: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
    package_offers: List[CreditPackageResponse] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: BookingFailed) -> "BookingErrorResponse":
        error = result.error
        return cls(
            kind=error.kind.value,
            message=error.message,
            details=error.details,
            package_offers=[CreditPackageResponse.from_offer(o) for o in error.package_offers],
        )
