# backend/sessionbook/services/booking_service.py
"""
Booking Service for SessionBook

Orchestrates one booking attempt across the availability resolver, the
credit ledger and the conflict guard:

    0. replay check (idempotent retries, roll-forward of a half-done attempt)
    1. validate the requested slot
    2. reserve one credit
    3. hold the slot
    4. spend the credit on the booking
    5. confirm the booking

Each step is its own short transaction. A failure after step 2 runs the
compensating actions for everything already done, so no credit stays
reserved and no slot stays held by a failed attempt. Expected business
outcomes are returned as a ``BookingResult``, never raised.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time
import logging
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import Settings
from ..core.exceptions import (
    DomainException,
    InsufficientCreditsException,
    InvariantViolationException,
    NotFoundException,
    SlotUnavailableException,
    ValidationException,
)
from ..core.timezone_utils import Clock
from ..domain.results import (
    BookingError,
    BookingErrorKind,
    BookingFailed,
    BookingResult,
    BookingSucceeded,
    PackageOffer,
    TimeSlot,
)
from ..models.booking import Booking, BookingStatus
from ..models.credit import CreditStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .availability_service import AvailabilityService, parse_date
from .base import BaseService
from .conflict_guard import ConflictGuard
from .credit_service import CreditService
from .payment_service import to_package_offer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingRequest:
    patient_id: str
    therapist_id: str
    booking_date: Union[date, str]
    start_time: Union[time, str]
    duration_minutes: int
    session_type: Optional[str] = None


def _parse_time(value: Union[time, str]) -> time:
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0, tzinfo=None)
    if isinstance(value, str):
        try:
            parsed = time.fromisoformat(value.strip())
        except ValueError as exc:
            raise ValidationException(
                f"Invalid start time: {value!r}. Expected HH:MM",
                code="INVALID_TIME",
                details={"start_time": value},
            ) from exc
        return parsed.replace(second=0, microsecond=0, tzinfo=None)
    raise ValidationException("Invalid start time", code="INVALID_TIME")


def error_kind_for(exc: DomainException) -> BookingErrorKind:
    """Map a component exception onto the workflow's error kinds."""
    if isinstance(exc, ValidationException):
        return BookingErrorKind.INVALID_ARGUMENT
    if isinstance(exc, NotFoundException):
        return BookingErrorKind.NOT_FOUND
    if isinstance(exc, SlotUnavailableException):
        return BookingErrorKind.SLOT_UNAVAILABLE
    if isinstance(exc, InsufficientCreditsException):
        return BookingErrorKind.INSUFFICIENT_CREDITS
    if isinstance(exc, InvariantViolationException):
        return BookingErrorKind.INVARIANT_VIOLATION
    return BookingErrorKind.TRANSIENT


_CALLER_FACING_KINDS = {BookingErrorKind.INVALID_ARGUMENT, BookingErrorKind.NOT_FOUND}


class BookingService(BaseService):
    """Service layer for booking attempts."""

    def __init__(
        self,
        db: Session,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        availability_service: Optional[AvailabilityService] = None,
        credit_service: Optional[CreditService] = None,
        conflict_guard: Optional[ConflictGuard] = None,
    ):
        super().__init__(db, settings=settings, clock=clock)
        self.availability_service = availability_service or AvailabilityService(
            db, settings=self.settings, clock=self.clock
        )
        self.credit_service = credit_service or CreditService(
            db, settings=self.settings, clock=self.clock
        )
        self.conflict_guard = conflict_guard or ConflictGuard(
            db, settings=self.settings, clock=self.clock
        )
        self.payment_repository = RepositoryFactory.create_payment_repository(db)

    @BaseService.measure_operation("attempt_booking")
    def attempt_booking(self, request: BookingRequest) -> BookingResult:
        """
        Book one session for a patient, paying with one credit.

        Returns:
            BookingSucceeded with the confirmed booking, or BookingFailed
            carrying a BookingError. Purchase-required failures include the
            active package offers.
        """
        # Steps 0-1: replay check and validation, nothing to compensate yet
        try:
            booking_date = parse_date(request.booking_date)
            start_time = _parse_time(request.start_time)
            replayed = self._replay(request.patient_id, request.therapist_id, booking_date, start_time)
            if replayed is not None:
                return replayed
            slot = self._validate(request, booking_date, start_time)
        except DomainException as exc:
            return self._fail(request, exc)

        # Step 2: reserve a credit
        try:
            credit_id = self.credit_service.reserve_one_credit(request.patient_id)
        except InsufficientCreditsException as exc:
            return self._fail(request, exc, package_offers=self._package_offers())
        except DomainException as exc:
            return self._fail(request, exc)

        # Step 3: hold the slot
        try:
            booking = self.conflict_guard.try_reserve_slot(
                slot.therapist_id,
                slot.date,
                slot.start_time,
                request.patient_id,
                end_time=slot.end_time,
                duration_minutes=slot.duration_minutes,
                session_type=slot.session_type,
                credit_id=credit_id,
            )
        except DomainException as exc:
            self._compensate_credit(credit_id)
            return self._fail(request, exc)

        # Step 4: spend the credit
        try:
            self.credit_service.confirm_spend(credit_id, booking.id)
        except DomainException as exc:
            if not self._compensate_spend_failure(booking, credit_id):
                return self._fail(request, exc, booking_id=booking.id)
            logger.warning(
                "confirm_spend for booking %s reported %s but the credit is spent; rolling forward",
                booking.id,
                type(exc).__name__,
            )

        # Step 5: confirm; the credit is spent, so failures roll forward later
        try:
            confirmed = self.conflict_guard.confirm_booking(booking.id)
        except DomainException as exc:
            logger.error(
                "Booking %s left pending_payment after spending credit %s: %s",
                booking.id,
                credit_id,
                exc.message,
                extra={"booking_id": booking.id, "credit_id": credit_id, "details": exc.details},
            )
            return self._fail(
                request,
                exc,
                kind=BookingErrorKind.TRANSIENT,
                booking_id=booking.id,
            )

        prometheus_metrics.inc_booking_attempt("succeeded")
        self.log_operation(
            "attempt_booking",
            booking_id=confirmed.id,
            patient_id=request.patient_id,
            therapist_id=request.therapist_id,
            outcome="succeeded",
        )
        return self._succeeded(confirmed)

    # Steps

    def _replay(
        self, patient_id: str, therapist_id: str, booking_date: date, start_time: time
    ) -> Optional[BookingSucceeded]:
        """
        Recognise a retry of an attempt that already got through.

        A confirmed booking of this patient for the slot is returned as is. A
        pending one whose credit was already spent on it is rolled forward.
        """
        existing = self.conflict_guard.find_active_booking(therapist_id, booking_date, start_time)
        if existing is None or existing.patient_id != patient_id:
            return None

        if existing.status == BookingStatus.CONFIRMED.value:
            prometheus_metrics.inc_booking_attempt("replayed")
            return self._succeeded(existing, replayed=True)

        if existing.credit_id is None:
            return None
        credit = self.credit_service.get_credit(existing.credit_id)
        if credit.status == CreditStatus.SPENT.value and credit.booking_id == existing.id:
            confirmed = self.conflict_guard.confirm_booking(existing.id)
            prometheus_metrics.inc_booking_attempt("rolled_forward")
            self.log_operation("attempt_booking", booking_id=existing.id, outcome="rolled_forward")
            return self._succeeded(confirmed, replayed=True)
        return None

    def _validate(self, request: BookingRequest, booking_date: date, start_time: time) -> TimeSlot:
        duration = request.duration_minutes
        if isinstance(duration, bool) or not isinstance(duration, int) or duration <= 0:
            raise ValidationException(
                "duration_minutes must be a positive integer",
                code="INVALID_DURATION",
                details={"duration_minutes": duration},
            )

        # Raises NotFoundException for an unknown therapist
        schedule = self.availability_service.resolve_schedule(request.therapist_id, booking_date)

        if self.clock.is_past(booking_date, start_time):
            raise ValidationException(
                "Cannot book a session in the past",
                code="SLOT_IN_PAST",
                details={"booking_date": booking_date.isoformat()},
            )

        slot = next((s for s in schedule if s.start_time == start_time), None)
        if (
            slot is None
            or slot.duration_minutes != duration
            or (request.session_type is not None and slot.session_type != request.session_type)
        ):
            raise ValidationException(
                "The requested time is not an available session slot",
                code="SLOT_NOT_OFFERED",
                details={
                    "booking_date": booking_date.isoformat(),
                    "start_time": start_time.strftime("%H:%M"),
                    "duration_minutes": duration,
                },
            )

        open_slots = self.availability_service.get_time_slots(request.therapist_id, booking_date)
        if slot not in open_slots:
            raise SlotUnavailableException(
                details={
                    "therapist_id": request.therapist_id,
                    "booking_date": booking_date.isoformat(),
                    "start_time": start_time.strftime("%H:%M"),
                }
            )
        return slot

    # Compensation

    def _compensate_credit(self, credit_id: str) -> None:
        try:
            self.credit_service.release(credit_id)
        except DomainException as exc:
            # Left reserved; the housekeeping sweep releases it once stale.
            logger.error("Failed to release credit %s: %s", credit_id, exc.message)

    def _compensate_spend_failure(self, booking: Booking, credit_id: str) -> bool:
        """
        Undo steps 2-3 after a failed spend.

        Returns True when the spend did in fact land (the credit refuses to be
        released because it is spent), in which case the caller rolls forward.
        """
        try:
            self.credit_service.release(credit_id)
        except InvariantViolationException:
            try:
                credit = self.credit_service.get_credit(credit_id)
            except DomainException as exc:
                # Unknown outcome; leave the booking pending for the housekeeping sweep.
                logger.error("Could not read credit %s: %s", credit_id, exc.message)
                return False
            if credit.status == CreditStatus.SPENT.value and credit.booking_id == booking.id:
                return True
            logger.error("Credit %s in unexpected state %s", credit_id, credit.status)
        except DomainException as exc:
            logger.error(
                "Failed to release credit %s for booking %s: %s", credit_id, booking.id, exc.message
            )
            return False

        try:
            self.conflict_guard.release_slot(booking.id)
        except DomainException as exc:
            logger.error("Failed to release slot of booking %s: %s", booking.id, exc.message)
        return False

    # Results

    def _package_offers(self) -> List[PackageOffer]:
        try:
            return [to_package_offer(p) for p in self.payment_repository.list_active_packages()]
        except SQLAlchemyError as exc:
            logger.warning("Could not load package offers: %s", exc)
            return []

    def _fail(
        self,
        request: BookingRequest,
        exc: DomainException,
        *,
        kind: Optional[BookingErrorKind] = None,
        package_offers: Optional[List[PackageOffer]] = None,
        booking_id: Optional[str] = None,
    ) -> BookingFailed:
        kind = kind or error_kind_for(exc)
        details: Dict[str, Any] = dict(exc.details)
        if booking_id:
            details["booking_id"] = booking_id

        log_extra = {
            "patient_id": request.patient_id,
            "therapist_id": request.therapist_id,
            "error_kind": kind.value,
            "error_code": exc.code,
            "details": details,
        }
        if kind in (BookingErrorKind.INVARIANT_VIOLATION, BookingErrorKind.TRANSIENT):
            logger.error("Booking attempt failed: %s", exc.message, extra=log_extra)
            details = {"booking_id": booking_id} if booking_id else {}
        else:
            logger.info("Booking attempt rejected: %s", exc.message, extra=log_extra)

        prometheus_metrics.inc_booking_attempt(kind.value)
        message = exc.message if kind in _CALLER_FACING_KINDS else None
        return BookingFailed(
            error=BookingError.of(
                kind, message, details=details, package_offers=package_offers or ()
            )
        )

    @staticmethod
    def _succeeded(booking: Booking, replayed: bool = False) -> BookingSucceeded:
        return BookingSucceeded(
            booking_id=booking.id,
            therapist_id=booking.therapist_id,
            patient_id=booking.patient_id,
            booking_date=booking.booking_date,
            start_time=booking.start_time,
            end_time=booking.end_time,
            duration_minutes=booking.duration_minutes,
            session_type=booking.session_type,
            credit_id=booking.credit_id or "",
            replayed=replayed,
        )
