# backend/alembic/versions/001_session_booking_schema.py
"""Session booking schema - users, availability, credits, bookings, payments, webhooks

Revision ID: 001_session_booking_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates every table the booking engine needs, including the partial unique
index that admits at most one active booking per therapist slot.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001_session_booking_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_SLOT_PREDICATE = "status IN ('pending_payment', 'confirmed')"


def upgrade() -> None:
    """Create booking engine tables."""
    print("Creating session booking schema...")

    op.create_table(
        "users",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("full_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("role", sa.String(20), nullable=False, server_default="patient"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.CheckConstraint("role IN ('patient', 'therapist', 'admin')", name="ck_users_role"),
    )

    op.create_table(
        "availability_rules",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column(
            "therapist_id",
            sa.String(26),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("session_duration_minutes", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("session_type", sa.String(20), nullable=False, server_default="individual"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "superseded_by_id",
            sa.String(26),
            sa.ForeignKey("availability_rules.id"),
            nullable=True,
        ),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_availability_rules_day"),
        sa.CheckConstraint("start_time < end_time", name="ck_availability_rules_time_order"),
        sa.CheckConstraint(
            "session_duration_minutes > 0", name="ck_availability_rules_duration_positive"
        ),
        sa.CheckConstraint(
            "session_type IN ('individual', 'group')", name="ck_availability_rules_session_type"
        ),
    )
    op.create_index(
        "ix_availability_rules_therapist_day",
        "availability_rules",
        ["therapist_id", "day_of_week", "is_active"],
    )

    op.create_table(
        "date_exceptions",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column(
            "therapist_id",
            sa.String(26),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("exception_date", sa.Date(), nullable=False),
        sa.Column("is_disabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("start_time", sa.Time(), nullable=True),
        sa.Column("end_time", sa.Time(), nullable=True),
        sa.Column("session_duration_minutes", sa.Integer(), nullable=True),
        sa.Column("session_type", sa.String(20), nullable=False, server_default="individual"),
        sa.Column("reason", sa.String(255), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.CheckConstraint(
            "is_disabled OR (start_time IS NOT NULL AND end_time IS NOT NULL AND start_time < end_time)",
            name="ck_date_exceptions_window",
        ),
    )
    op.create_index(
        "ix_date_exceptions_therapist_date",
        "date_exceptions",
        ["therapist_id", "exception_date"],
    )

    print("Creating credit ledger tables...")
    op.create_table(
        "credit_packages",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("code", sa.String(50), nullable=False, unique=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("sessions_included", sa.Integer(), nullable=False),
        sa.Column("price_minor", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="ngn"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint("sessions_included > 0", name="ck_credit_packages_sessions_positive"),
        sa.CheckConstraint("price_minor >= 0", name="ck_credit_packages_price_non_negative"),
    )

    op.create_table(
        "session_credits",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("patient_id", sa.String(26), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="available"),
        sa.Column("package_reference", sa.String(100), nullable=False),
        sa.Column("purchased_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reserved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("spent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("booking_id", sa.String(26), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.CheckConstraint(
            "status IN ('available', 'reserved', 'spent', 'refunded')",
            name="ck_session_credits_status",
        ),
        sa.CheckConstraint(
            "status <> 'spent' OR booking_id IS NOT NULL",
            name="ck_session_credits_spent_has_booking",
        ),
    )
    op.create_index(
        "ix_session_credits_patient_status",
        "session_credits",
        ["patient_id", "status", "purchased_at"],
    )
    op.create_index(
        "ix_session_credits_package_reference",
        "session_credits",
        ["patient_id", "package_reference"],
    )

    print("Creating bookings table...")
    op.create_table(
        "bookings",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("patient_id", sa.String(26), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("therapist_id", sa.String(26), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("booking_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("session_type", sa.String(20), nullable=False, server_default="individual"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending_payment"),
        sa.Column(
            "credit_id", sa.String(26), sa.ForeignKey("session_credits.id"), nullable=True
        ),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by_id", sa.String(26), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending_payment', 'confirmed', 'completed', 'cancelled', 'no_show')",
            name="ck_bookings_status",
        ),
        sa.CheckConstraint("start_time < end_time", name="ck_bookings_time_order"),
        sa.CheckConstraint("duration_minutes > 0", name="ck_bookings_duration_positive"),
    )
    op.create_index("ix_bookings_status", "bookings", ["status"])
    op.create_index("ix_bookings_patient_status", "bookings", ["patient_id", "status"])
    op.create_index("ix_bookings_therapist_date", "bookings", ["therapist_id", "booking_date"])
    # At most one active booking per slot; cancelled/completed rows do not count.
    op.create_index(
        "uq_bookings_active_slot",
        "bookings",
        ["therapist_id", "booking_date", "start_time"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_SLOT_PREDICATE),
        sqlite_where=sa.text(ACTIVE_SLOT_PREDICATE),
    )

    print("Creating payment tables...")
    op.create_table(
        "payment_intents",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("reference", sa.String(100), nullable=False, unique=True),
        sa.Column("patient_id", sa.String(26), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("package_code", sa.String(50), nullable=False),
        sa.Column("sessions_included", sa.Integer(), nullable=False),
        sa.Column("amount_minor", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("provider", sa.String(20), nullable=False),
        sa.Column("provider_session_id", sa.String(255), nullable=True),
        sa.Column("checkout_url", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'succeeded', 'failed')", name="ck_payment_intents_status"
        ),
    )
    op.create_index("ix_payment_intents_patient", "payment_intents", ["patient_id", "created_at"])

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("event_id", sa.String(255), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column(
            "payload",
            JSONB(astext_type=sa.Text()).with_variant(sa.JSON(), "sqlite"),
            nullable=False,
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="received"),
        sa.Column("processing_error", sa.Text(), nullable=True),
        sa.Column(
            "received_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("source", "event_id", name="uq_webhook_events_source_event_id"),
    )
    op.create_index("ix_webhook_events_status", "webhook_events", ["status"])
    op.create_index("ix_webhook_events_received_at", "webhook_events", ["received_at"])

    print("Session booking schema created successfully!")


def downgrade() -> None:
    """Drop booking engine tables."""
    print("Dropping session booking schema...")

    op.drop_index("ix_webhook_events_received_at", table_name="webhook_events")
    op.drop_index("ix_webhook_events_status", table_name="webhook_events")
    op.drop_table("webhook_events")

    op.drop_index("ix_payment_intents_patient", table_name="payment_intents")
    op.drop_table("payment_intents")

    op.drop_index("uq_bookings_active_slot", table_name="bookings")
    op.drop_index("ix_bookings_therapist_date", table_name="bookings")
    op.drop_index("ix_bookings_patient_status", table_name="bookings")
    op.drop_index("ix_bookings_status", table_name="bookings")
    op.drop_table("bookings")

    op.drop_index("ix_session_credits_package_reference", table_name="session_credits")
    op.drop_index("ix_session_credits_patient_status", table_name="session_credits")
    op.drop_table("session_credits")
    op.drop_table("credit_packages")

    op.drop_index("ix_date_exceptions_therapist_date", table_name="date_exceptions")
    op.drop_table("date_exceptions")
    op.drop_index("ix_availability_rules_therapist_day", table_name="availability_rules")
    op.drop_table("availability_rules")
    op.drop_table("users")

    print("Session booking schema dropped successfully!")
