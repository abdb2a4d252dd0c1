# backend/sessionbook/models/availability.py
"""
Availability models for the SessionBook platform.

Classes:
    AvailabilityRule: A therapist's recurring weekly window
    DateException: A one-date override (fully disabled or custom window)

Rules are never deleted: they are deactivated or superseded so that
historical schedules stay auditable. Exceptions are removed ad hoc.
"""

from datetime import date, datetime, time
from enum import Enum
import logging
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Time,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..core.ulid_helper import generate_ulid
from ..database import Base

logger = logging.getLogger(__name__)


class SessionType(str, Enum):
    INDIVIDUAL = "individual"
    GROUP = "group"


class AvailabilityRule(Base):
    """Recurring weekly availability window (day_of_week: 0 = Monday)."""

    __tablename__ = "availability_rules"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    therapist_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    session_duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    session_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SessionType.INDIVIDUAL.value
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    superseded_by_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("availability_rules.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_availability_rules_day"),
        CheckConstraint("start_time < end_time", name="ck_availability_rules_time_order"),
        CheckConstraint(
            "session_duration_minutes > 0", name="ck_availability_rules_duration_positive"
        ),
        CheckConstraint(
            "session_type IN ('individual', 'group')", name="ck_availability_rules_session_type"
        ),
        Index("ix_availability_rules_therapist_day", "therapist_id", "day_of_week", "is_active"),
    )

    def __repr__(self) -> str:
        return (
            f"<AvailabilityRule {self.id}: therapist={self.therapist_id} "
            f"day={self.day_of_week} {self.start_time}-{self.end_time} active={self.is_active}>"
        )


class DateException(Base):
    """Override for a single calendar date; takes precedence over rules."""

    __tablename__ = "date_exceptions"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    therapist_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    exception_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_disabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    start_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    end_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    session_duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    session_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SessionType.INDIVIDUAL.value
    )
    reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "is_disabled OR (start_time IS NOT NULL AND end_time IS NOT NULL AND start_time < end_time)",
            name="ck_date_exceptions_window",
        ),
        Index("ix_date_exceptions_therapist_date", "therapist_id", "exception_date"),
    )

    def __repr__(self) -> str:
        window = "disabled" if self.is_disabled else f"{self.start_time}-{self.end_time}"
        return f"<DateException {self.exception_date} therapist={self.therapist_id} {window}>"
