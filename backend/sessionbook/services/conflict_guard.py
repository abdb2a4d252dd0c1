# backend/sessionbook/services/conflict_guard.py
"""
Booking Conflict Guard for SessionBook

Holds slots and owns the booking state machine.

A slot hold is a single INSERT of a pending_payment booking; the partial
unique index ``uq_bookings_active_slot`` admits at most one active booking
per (therapist, date, start time), so of any number of concurrent holds for
one slot exactly one succeeds. Every status change is a compare-and-set
UPDATE on the current status.
"""

from __future__ import annotations

from datetime import date, datetime, time
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import Settings
from ..core.exceptions import (
    InvalidStatusTransitionException,
    InvariantViolationException,
    NotFoundException,
    ServiceException,
    SlotUnavailableException,
    TransientStorageException,
    ValidationException,
)
from ..core.timezone_utils import Clock
from ..models.booking import SLOT_RELEASED_REASON, Booking, BookingStatus
from ..models.credit import CreditStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)

_STATUS_VALUES = {s.value for s in BookingStatus}


class ConflictGuard(BaseService):
    """Atomic slot holds and legal booking status transitions."""

    def __init__(
        self,
        db: Session,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(db, settings=settings, clock=clock)
        self.repository = RepositoryFactory.create_booking_repository(db)
        self.credit_repository = RepositoryFactory.create_credit_repository(db)

    @staticmethod
    def _is_deadlock_error(exc: OperationalError) -> bool:
        orig = getattr(exc, "orig", None)
        pgcode = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
        if pgcode == "40P01":
            return True
        return "deadlock detected" in str(exc).lower()

    # Slot holds

    @BaseService.measure_operation("try_reserve_slot")
    def try_reserve_slot(
        self,
        therapist_id: str,
        booking_date: date,
        start_time: time,
        patient_id: str,
        *,
        end_time: time,
        duration_minutes: int,
        session_type: str = "individual",
        credit_id: Optional[str] = None,
    ) -> Booking:
        """
        Hold a slot by inserting a pending_payment booking.

        Raises:
            SlotUnavailableException: Another active booking holds the slot
            TransientStorageException: Storage unavailable
        """
        conflict_details = {
            "therapist_id": therapist_id,
            "booking_date": booking_date.isoformat(),
            "start_time": start_time.strftime("%H:%M"),
        }
        try:
            with self.repository.transaction():
                booking = self.repository.insert_pending(
                    patient_id=patient_id,
                    therapist_id=therapist_id,
                    booking_date=booking_date,
                    start_time=start_time,
                    end_time=end_time,
                    duration_minutes=duration_minutes,
                    session_type=session_type,
                    credit_id=credit_id,
                    created_at=self.clock.now_utc(),
                )
        except IntegrityError as exc:
            prometheus_metrics.inc_slot_reservation("conflict")
            logger.info("Slot already held: %s", conflict_details)
            raise SlotUnavailableException(details=conflict_details) from exc
        except OperationalError as exc:
            if self._is_deadlock_error(exc):
                prometheus_metrics.inc_slot_reservation("conflict")
                raise SlotUnavailableException(details=conflict_details) from exc
            raise TransientStorageException(
                "Storage temporarily unavailable", details=conflict_details
            ) from exc
        except SQLAlchemyError as exc:
            logger.error("Slot hold failed for %s: %s", conflict_details, exc)
            raise ServiceException("Failed to hold slot", details=conflict_details) from exc

        prometheus_metrics.inc_slot_reservation("held")
        self.log_operation(
            "try_reserve_slot",
            booking_id=booking.id,
            patient_id=patient_id,
            **conflict_details,
        )
        return booking

    @BaseService.measure_operation("confirm_booking")
    def confirm_booking(self, booking_id: str) -> Booking:
        """
        pending_payment -> confirmed.

        Only legal once the booking's credit has been spent on this booking.
        """
        booking = self._require_booking(booking_id)
        if booking.status != BookingStatus.PENDING_PAYMENT.value:
            raise InvariantViolationException(
                "Only pending bookings can be confirmed",
                details={"booking_id": booking_id, "status": booking.status},
            )
        credit = (
            self.credit_repository.reload(booking.credit_id) if booking.credit_id else None
        )
        if (
            credit is None
            or credit.status != CreditStatus.SPENT.value
            or credit.booking_id != booking.id
        ):
            raise InvariantViolationException(
                "Booking has no spent credit",
                details={
                    "booking_id": booking_id,
                    "credit_id": booking.credit_id,
                    "credit_status": credit.status if credit else None,
                },
            )

        now = self.clock.now_utc()
        with self.transaction():
            won = self.repository.compare_and_set_status(
                booking_id,
                expected=BookingStatus.PENDING_PAYMENT.value,
                new_status=BookingStatus.CONFIRMED.value,
                confirmed_at=now,
                updated_at=now,
            )
        confirmed = self._require_booking(booking_id)
        if not won:
            raise InvariantViolationException(
                "Booking changed while being confirmed",
                details={"booking_id": booking_id, "status": confirmed.status},
            )
        self.log_operation("confirm_booking", booking_id=booking_id)
        return confirmed

    @BaseService.measure_operation("release_slot")
    def release_slot(self, booking_id: str) -> bool:
        """
        pending_payment -> cancelled, freeing the slot.

        Returns False when the booking is already cancelled.
        """
        now = self.clock.now_utc()
        with self.transaction():
            won = self.repository.compare_and_set_status(
                booking_id,
                expected=BookingStatus.PENDING_PAYMENT.value,
                new_status=BookingStatus.CANCELLED.value,
                cancelled_at=now,
                updated_at=now,
                cancellation_reason=SLOT_RELEASED_REASON,
            )
        if won:
            self.log_operation("release_slot", booking_id=booking_id)
            return True

        booking = self._require_booking(booking_id)
        if booking.status == BookingStatus.CANCELLED.value:
            return False
        raise InvalidStatusTransitionException(
            booking_id, booking.status, BookingStatus.CANCELLED.value
        )

    # State machine

    @BaseService.measure_operation("transition_status")
    def transition_status(
        self,
        booking_id: str,
        new_status: str,
        *,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Booking:
        """
        Apply a status change if the state machine allows it.

        Raises:
            ValidationException: Unknown status value
            NotFoundException: Booking does not exist
            InvalidStatusTransitionException: Transition not allowed
        """
        if new_status not in _STATUS_VALUES:
            raise ValidationException(
                f"Unknown booking status: {new_status}",
                code="INVALID_STATUS",
                details={"status": new_status},
            )
        booking = self._require_booking(booking_id)
        current = booking.status
        if not booking.can_transition_to(new_status):
            raise InvalidStatusTransitionException(booking_id, current, new_status)

        if new_status == BookingStatus.CONFIRMED.value:
            return self.confirm_booking(booking_id)

        now = self.clock.now_utc()
        values: Dict[str, Any] = {"updated_at": now}
        if new_status == BookingStatus.CANCELLED.value:
            values.update(cancelled_at=now, cancelled_by_id=actor_id, cancellation_reason=reason)
        elif new_status == BookingStatus.COMPLETED.value:
            values["completed_at"] = now

        with self.transaction():
            won = self.repository.compare_and_set_status(
                booking_id, expected=current, new_status=new_status, **values
            )
        updated = self._require_booking(booking_id)
        if not won:
            raise InvalidStatusTransitionException(booking_id, updated.status, new_status)

        self.log_operation(
            "transition_status",
            booking_id=booking_id,
            from_status=current,
            to_status=new_status,
            actor_id=actor_id,
        )
        return updated

    def cancel_booking(
        self, booking_id: str, *, actor_id: Optional[str] = None, reason: Optional[str] = None
    ) -> Booking:
        return self.transition_status(
            booking_id, BookingStatus.CANCELLED.value, actor_id=actor_id, reason=reason
        )

    def complete_booking(self, booking_id: str, *, actor_id: Optional[str] = None) -> Booking:
        return self.transition_status(booking_id, BookingStatus.COMPLETED.value, actor_id=actor_id)

    def mark_no_show(self, booking_id: str, *, actor_id: Optional[str] = None) -> Booking:
        return self.transition_status(booking_id, BookingStatus.NO_SHOW.value, actor_id=actor_id)

    # Reads

    def get_booking(self, booking_id: str) -> Booking:
        return self._require_booking(booking_id)

    def find_active_booking(
        self, therapist_id: str, booking_date: date, start_time: time
    ) -> Optional[Booking]:
        return self.repository.get_active_for_slot(therapist_id, booking_date, start_time)

    def list_stale_pending(self, older_than: datetime) -> List[Booking]:
        return self.repository.list_stale_pending(older_than)

    def list_patient_bookings(
        self, patient_id: str, statuses: Optional[List[str]] = None
    ) -> List[Booking]:
        return self.repository.list_for_patient(patient_id, statuses)

    def _require_booking(self, booking_id: str) -> Booking:
        booking = self.repository.reload(booking_id)
        if booking is None:
            raise NotFoundException("Booking not found", details={"booking_id": booking_id})
        return booking
