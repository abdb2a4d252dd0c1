# backend/sessionbook/models/payment.py
"""Payment intents recorded when a patient starts a credit package purchase."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..core.ulid_helper import generate_ulid
from ..database import Base


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class PaymentIntentStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PaymentIntent(Base):
    __tablename__ = "payment_intents"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    reference: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    patient_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), nullable=False)
    package_code: Mapped[str] = mapped_column(String(50), nullable=False)
    sessions_included: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_minor: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    provider_session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    checkout_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentIntentStatus.PENDING.value
    )
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now_utc
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_payment_intents_patient", "patient_id", "created_at"),
        CheckConstraint(
            "status IN ('pending', 'succeeded', 'failed')", name="ck_payment_intents_status"
        ),
    )

    @property
    def is_final(self) -> bool:
        return self.status != PaymentIntentStatus.PENDING.value

    def __repr__(self) -> str:
        return f"<PaymentIntent {self.reference} {self.package_code} status={self.status}>"
