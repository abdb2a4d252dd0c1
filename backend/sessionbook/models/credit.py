# backend/sessionbook/models/credit.py
"""
Session credit ledger models.

A SessionCredit is a prepaid, single-use entitlement to one session.
Only the credit service mutates these rows.

    available -> reserved -> spent
    reserved  -> available          (release)
    available -> refunded           (unused credit refunded to the payer)
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..core.ulid_helper import generate_ulid
from ..database import Base


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class CreditStatus(str, Enum):
    AVAILABLE = "available"
    RESERVED = "reserved"
    SPENT = "spent"
    REFUNDED = "refunded"


class SessionCredit(Base):
    """One prepaid session credit owned by a patient."""

    __tablename__ = "session_credits"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    patient_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CreditStatus.AVAILABLE.value
    )
    package_reference: Mapped[str] = mapped_column(String(100), nullable=False)
    purchased_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc
    )
    reserved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    spent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    # Consuming booking; the FK lives on bookings.credit_id.
    booking_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_session_credits_patient_status", "patient_id", "status", "purchased_at"),
        Index("ix_session_credits_package_reference", "patient_id", "package_reference"),
        CheckConstraint(
            "status IN ('available', 'reserved', 'spent', 'refunded')",
            name="ck_session_credits_status",
        ),
        CheckConstraint(
            "status <> 'spent' OR booking_id IS NOT NULL",
            name="ck_session_credits_spent_has_booking",
        ),
    )

    def __repr__(self) -> str:
        return f"<SessionCredit {self.id} patient={self.patient_id} status={self.status}>"


class CreditPackage(Base):
    """A purchasable bundle of session credits."""

    __tablename__ = "credit_packages"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    sessions_included: Mapped[int] = mapped_column(Integer, nullable=False)
    price_minor: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="ngn")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("sessions_included > 0", name="ck_credit_packages_sessions_positive"),
        CheckConstraint("price_minor >= 0", name="ck_credit_packages_price_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<CreditPackage {self.code}: {self.sessions_included} sessions>"
