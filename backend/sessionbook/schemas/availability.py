"""Availability schemas: public slot listings and therapist schedule maintenance."""

from datetime import date, time
from typing import List, Literal, Optional

from pydantic import Field

from ..domain.results import TimeSlot
from ._strict_base import StrictModel, StrictRequestModel


class AvailableDatesResponse(StrictModel):
    therapist_id: str
    month: int
    year: int
    dates: List[date] = Field(default_factory=list)


class TimeSlotResponse(StrictModel):
    start_time: time
    end_time: time
    duration_minutes: int
    session_type: str
    is_override: bool = False

    @classmethod
    def from_slot(cls, slot: TimeSlot) -> "TimeSlotResponse":
        return cls(
            start_time=slot.start_time,
            end_time=slot.end_time,
            duration_minutes=slot.duration_minutes,
            session_type=slot.session_type,
            is_override=slot.is_override,
        )


class TimeSlotsResponse(StrictModel):
    """Bookable slots for one therapist on one date, ordered by start time."""

    therapist_id: str
    date: date
    slots: List[TimeSlotResponse] = Field(default_factory=list)


SessionTypeLiteral = Literal["individual", "group"]


class AvailabilityRuleCreate(StrictRequestModel):
    day_of_week: int = Field(..., description="0 = Monday ... 6 = Sunday")
    start_time: time
    end_time: time
    session_duration_minutes: Optional[int] = None
    session_type: SessionTypeLiteral = "individual"


class AvailabilityRuleReplace(StrictRequestModel):
    start_time: time
    end_time: time
    day_of_week: Optional[int] = None
    session_duration_minutes: Optional[int] = None
    session_type: Optional[SessionTypeLiteral] = None


class AvailabilityRuleResponse(StrictModel):
    id: str
    therapist_id: str
    day_of_week: int
    start_time: time
    end_time: time
    session_duration_minutes: int
    session_type: str
    is_active: bool
    superseded_by_id: Optional[str] = None


class DateExceptionCreate(StrictRequestModel):
    """Either ``is_disabled`` or a ``start_time``/``end_time`` window."""

    exception_date: date
    is_disabled: bool = False
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    session_duration_minutes: Optional[int] = None
    session_type: SessionTypeLiteral = "individual"
    reason: Optional[str] = Field(default=None, max_length=255)


class DateExceptionResponse(StrictModel):
    id: str
    therapist_id: str
    exception_date: date
    is_disabled: bool
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    session_duration_minutes: Optional[int] = None
    session_type: str
    reason: Optional[str] = None
