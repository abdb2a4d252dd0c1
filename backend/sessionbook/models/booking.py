# backend/sessionbook/models/booking.py
"""
Booking model for the SessionBook platform.

A booking is a patient's claim on one therapist slot. Bookings store the
therapist, date and time directly so they persist as commitments regardless
of later availability changes.

Slot conflicts are prevented by the partial unique index
``uq_bookings_active_slot``: at most one booking per
(therapist_id, booking_date, start_time) may be in an active status.
"""

from datetime import date, datetime, time, timezone
from enum import Enum
import logging
from typing import Dict, FrozenSet, Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..core.ulid_helper import generate_ulid
from ..database import Base

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING_PAYMENT = "pending_payment"  # Slot held, credit not yet spent
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


ACTIVE_STATUSES: FrozenSet[str] = frozenset(
    {BookingStatus.PENDING_PAYMENT.value, BookingStatus.CONFIRMED.value}
)

ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    BookingStatus.PENDING_PAYMENT.value: frozenset(
        {BookingStatus.CONFIRMED.value, BookingStatus.CANCELLED.value}
    ),
    BookingStatus.CONFIRMED.value: frozenset(
        {
            BookingStatus.COMPLETED.value,
            BookingStatus.CANCELLED.value,
            BookingStatus.NO_SHOW.value,
        }
    ),
    BookingStatus.COMPLETED.value: frozenset(),
    BookingStatus.CANCELLED.value: frozenset(),
    BookingStatus.NO_SHOW.value: frozenset(),
}

SLOT_RELEASED_REASON = "slot_released"

_ACTIVE_SLOT_PREDICATE = "status IN ('pending_payment', 'confirmed')"


class Booking(Base):
    """
    Self-contained booking record between patient and therapist.

    Lifecycle:
        pending_payment -> confirmed -> completed | cancelled | no_show
        pending_payment -> cancelled
    """

    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    patient_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), nullable=False)
    therapist_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), nullable=False)

    booking_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    session_type: Mapped[str] = mapped_column(String(20), nullable=False, default="individual")

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BookingStatus.PENDING_PAYMENT.value, index=True
    )
    credit_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("session_credits.id"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc, server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    cancelled_by_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("users.id"), nullable=True
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index(
            "uq_bookings_active_slot",
            "therapist_id",
            "booking_date",
            "start_time",
            unique=True,
            postgresql_where=text(_ACTIVE_SLOT_PREDICATE),
            sqlite_where=text(_ACTIVE_SLOT_PREDICATE),
        ),
        Index("ix_bookings_patient_status", "patient_id", "status"),
        Index("ix_bookings_therapist_date", "therapist_id", "booking_date"),
        CheckConstraint(
            "status IN ('pending_payment', 'confirmed', 'completed', 'cancelled', 'no_show')",
            name="ck_bookings_status",
        ),
        CheckConstraint("start_time < end_time", name="ck_bookings_time_order"),
        CheckConstraint("duration_minutes > 0", name="ck_bookings_duration_positive"),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def can_transition_to(self, new_status: str) -> bool:
        return new_status in ALLOWED_TRANSITIONS.get(self.status, frozenset())

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id}: {self.booking_date} {self.start_time}-{self.end_time} "
            f"therapist={self.therapist_id} patient={self.patient_id} status={self.status}>"
        )
