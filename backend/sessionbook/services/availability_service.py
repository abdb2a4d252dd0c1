# backend/sessionbook/services/availability_service.py
"""
Availability Service for SessionBook

Turns a therapist's recurring weekly rules plus per-date exceptions into
bookable, fixed-duration time slots, and maintains those rules.

Resolution order for a single date:
    1. Any disabling exception -> the date has no availability
    2. Custom-window exceptions -> they replace the weekly rules
    3. Otherwise the active weekly rules for the weekday

The resolver never mutates bookings or credits.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, time, timedelta
import logging
from typing import TYPE_CHECKING, List, NamedTuple, Optional, Sequence, Union

from sqlalchemy.orm import Session

from ..core.config import Settings
from ..core.exceptions import AvailabilityOverlapException, NotFoundException, ValidationException
from ..core.timezone_utils import Clock
from ..domain.results import TimeSlot
from ..models.availability import AvailabilityRule, DateException, SessionType
from ..repositories.factory import RepositoryFactory
from .base import BaseService

if TYPE_CHECKING:
    from ..repositories.availability_repository import AvailabilityRepository
    from ..repositories.booking_repository import BookingRepository
    from ..repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)

MIN_YEAR = 1970
MAX_YEAR = 9999

DateInput = Union[date, str]


class Window(NamedTuple):
    start_time: time
    end_time: time
    duration_minutes: int
    session_type: str
    is_override: bool


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def _from_minutes(total: int) -> time:
    return time(total // 60, total % 60)


def _format_window(start: time, end: time) -> str:
    return f"{start.strftime('%H:%M')}-{end.strftime('%H:%M')}"


def parse_date(value: DateInput) -> date:
    """Accept a date or an ISO ``YYYY-MM-DD`` string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError as exc:
            raise ValidationException(
                f"Invalid date: {value!r}. Expected YYYY-MM-DD",
                code="INVALID_DATE",
                details={"date": value},
            ) from exc
    raise ValidationException("Invalid date", code="INVALID_DATE", details={"date": repr(value)})


class AvailabilityService(BaseService):
    """
    Service layer for therapist availability.

    Reads are pure; maintenance operations run in their own short transaction.
    """

    def __init__(
        self,
        db: Session,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        repository: Optional["AvailabilityRepository"] = None,
        booking_repository: Optional["BookingRepository"] = None,
        user_repository: Optional["UserRepository"] = None,
    ):
        super().__init__(db, settings=settings, clock=clock)
        self.repository = repository or RepositoryFactory.create_availability_repository(db)
        self.booking_repository = (
            booking_repository or RepositoryFactory.create_booking_repository(db)
        )
        self.user_repository = user_repository or RepositoryFactory.create_user_repository(db)

    # Queries

    @BaseService.measure_operation("get_available_dates")
    def get_available_dates(self, therapist_id: str, month: int, year: int) -> List[date]:
        """
        Dates in the given month on which the therapist has availability.

        A date qualifies when it is not in the past, has a weekly rule or a
        custom-window exception, and is not disabled. Whether slots remain
        open on it is not checked.
        """
        self._validate_month_year(month, year)
        self._require_therapist(therapist_id)

        first_day = date(year, month, 1)
        last_day = date(year, month, calendar.monthrange(year, month)[1])
        today = self.clock.today()

        weekdays = self.repository.get_active_weekdays(therapist_id)
        exceptions = self.repository.get_exceptions_in_range(therapist_id, first_day, last_day)
        disabled = {e.exception_date for e in exceptions if e.is_disabled}
        custom = {e.exception_date for e in exceptions if not e.is_disabled}

        available: List[date] = []
        current = max(first_day, today)
        while current <= last_day:
            if current not in disabled and (current.weekday() in weekdays or current in custom):
                available.append(current)
            current += timedelta(days=1)
        return available

    @BaseService.measure_operation("get_time_slots")
    def get_time_slots(self, therapist_id: str, on_date: DateInput) -> List[TimeSlot]:
        """
        Open slots for a therapist on one date.

        Slots overlapping an active (pending_payment or confirmed) booking are
        removed, as are slots whose start is not in the future.
        """
        target = parse_date(on_date)
        self._require_therapist(therapist_id)

        slots = self._build_schedule(therapist_id, target)
        if not slots:
            return []

        booked = [
            (_minutes(b.start_time), _minutes(b.end_time))
            for b in self.booking_repository.get_active_for_date(therapist_id, target)
        ]

        result: List[TimeSlot] = []
        for slot in slots:
            start, end = _minutes(slot.start_time), _minutes(slot.end_time)
            if any(start < b_end and b_start < end for b_start, b_end in booked):
                continue
            if self.clock.is_past(slot.date, slot.start_time):
                continue
            result.append(slot)
        return result

    @BaseService.measure_operation("resolve_schedule")
    def resolve_schedule(self, therapist_id: str, on_date: DateInput) -> List[TimeSlot]:
        """All slots the availability defines for the date, before bookings and time filtering."""
        target = parse_date(on_date)
        self._require_therapist(therapist_id)
        return self._build_schedule(therapist_id, target)

    # Rule maintenance

    @BaseService.measure_operation("list_rules")
    def list_rules(self, therapist_id: str, include_inactive: bool = False) -> List[AvailabilityRule]:
        self._require_therapist(therapist_id)
        return self.repository.get_rules(therapist_id, include_inactive=include_inactive)

    def get_rule(self, rule_id: str) -> AvailabilityRule:
        return self._require_rule(rule_id)

    @BaseService.measure_operation("add_rule")
    def add_rule(
        self,
        therapist_id: str,
        day_of_week: int,
        start_time: time,
        end_time: time,
        session_duration_minutes: Optional[int] = None,
        session_type: str = SessionType.INDIVIDUAL.value,
    ) -> AvailabilityRule:
        """
        Add a recurring weekly window.

        Raises:
            ValidationException: Malformed window or duration
            AvailabilityOverlapException: Overlaps an active rule on the same weekday
        """
        duration = (
            session_duration_minutes
            if session_duration_minutes is not None
            else self.settings.default_session_duration_minutes
        )
        self._validate_rule(day_of_week, start_time, end_time, duration, session_type)
        self._require_therapist(therapist_id)

        with self.transaction():
            self._check_rule_overlap(therapist_id, day_of_week, start_time, end_time)
            rule = self.repository.create(
                therapist_id=therapist_id,
                day_of_week=day_of_week,
                start_time=start_time,
                end_time=end_time,
                session_duration_minutes=duration,
                session_type=session_type,
                is_active=True,
                created_at=self.clock.now_utc(),
            )

        self.log_operation(
            "add_rule", therapist_id=therapist_id, rule_id=rule.id, day_of_week=day_of_week
        )
        return rule

    @BaseService.measure_operation("replace_rule")
    def replace_rule(
        self,
        rule_id: str,
        *,
        start_time: time,
        end_time: time,
        session_duration_minutes: Optional[int] = None,
        session_type: Optional[str] = None,
        day_of_week: Optional[int] = None,
    ) -> AvailabilityRule:
        """
        Supersede an active rule with a new one.

        The old rule is deactivated and points at its replacement, so the
        history of a therapist's schedule is preserved.
        """
        old = self._require_rule(rule_id)
        if not old.is_active:
            raise ValidationException(
                "Only active rules can be replaced", code="RULE_INACTIVE", details={"rule_id": rule_id}
            )

        new_day = old.day_of_week if day_of_week is None else day_of_week
        duration = (
            session_duration_minutes
            if session_duration_minutes is not None
            else old.session_duration_minutes
        )
        new_type = session_type or old.session_type
        self._validate_rule(new_day, start_time, end_time, duration, new_type)

        with self.transaction():
            self._check_rule_overlap(
                old.therapist_id, new_day, start_time, end_time, ignore_rule_id=old.id
            )
            now = self.clock.now_utc()
            new_rule = self.repository.create(
                therapist_id=old.therapist_id,
                day_of_week=new_day,
                start_time=start_time,
                end_time=end_time,
                session_duration_minutes=duration,
                session_type=new_type,
                is_active=True,
                created_at=now,
            )
            old.is_active = False
            old.superseded_by_id = new_rule.id
            old.updated_at = now

        self.log_operation("replace_rule", old_rule_id=old.id, new_rule_id=new_rule.id)
        return new_rule

    @BaseService.measure_operation("deactivate_rule")
    def deactivate_rule(self, rule_id: str) -> AvailabilityRule:
        rule = self._require_rule(rule_id)
        if not rule.is_active:
            return rule
        with self.transaction():
            rule.is_active = False
            rule.updated_at = self.clock.now_utc()
        self.log_operation("deactivate_rule", rule_id=rule_id, therapist_id=rule.therapist_id)
        return rule

    # Date exceptions

    @BaseService.measure_operation("list_date_exceptions")
    def list_date_exceptions(
        self, therapist_id: str, start_date: DateInput, end_date: DateInput
    ) -> List[DateException]:
        start, end = parse_date(start_date), parse_date(end_date)
        if end < start:
            raise ValidationException("end_date must not be before start_date", code="INVALID_RANGE")
        self._require_therapist(therapist_id)
        return self.repository.get_exceptions_in_range(therapist_id, start, end)

    @BaseService.measure_operation("add_date_exception")
    def add_date_exception(
        self,
        therapist_id: str,
        exception_date: DateInput,
        *,
        is_disabled: bool = False,
        start_time: Optional[time] = None,
        end_time: Optional[time] = None,
        session_duration_minutes: Optional[int] = None,
        session_type: str = SessionType.INDIVIDUAL.value,
        reason: Optional[str] = None,
    ) -> DateException:
        """
        Disable a date entirely, or add a custom window that replaces the
        weekly rules on that date.
        """
        target = parse_date(exception_date)
        if is_disabled:
            if start_time is not None or end_time is not None:
                raise ValidationException(
                    "A disabled date cannot carry a time window", code="INVALID_EXCEPTION"
                )
        else:
            if start_time is None or end_time is None:
                raise ValidationException(
                    "A custom window needs start_time and end_time", code="INVALID_EXCEPTION"
                )
            if start_time >= end_time:
                raise ValidationException(
                    "start_time must be before end_time", code="INVALID_WINDOW"
                )
            if session_duration_minutes is not None and session_duration_minutes <= 0:
                raise ValidationException(
                    "session_duration_minutes must be positive", code="INVALID_DURATION"
                )
            self._validate_session_type(session_type)
        self._require_therapist(therapist_id)

        with self.transaction():
            if not is_disabled:
                assert start_time is not None and end_time is not None
                for existing in self.repository.get_exceptions_for_date(therapist_id, target):
                    if existing.is_disabled or existing.start_time is None or existing.end_time is None:
                        continue
                    if start_time < existing.end_time and existing.start_time < end_time:
                        raise AvailabilityOverlapException(
                            scope=target.isoformat(),
                            new_range=_format_window(start_time, end_time),
                            conflicting_range=_format_window(existing.start_time, existing.end_time),
                        )
            exception = self.repository.create_exception(
                therapist_id=therapist_id,
                exception_date=target,
                is_disabled=is_disabled,
                start_time=start_time,
                end_time=end_time,
                session_duration_minutes=session_duration_minutes,
                session_type=session_type,
                reason=reason,
                created_at=self.clock.now_utc(),
            )

        self.log_operation(
            "add_date_exception",
            therapist_id=therapist_id,
            exception_date=target.isoformat(),
            is_disabled=is_disabled,
        )
        return exception

    def get_date_exception(self, exception_id: str) -> DateException:
        exception = self.repository.get_exception(exception_id)
        if exception is None:
            raise NotFoundException("Date exception not found", details={"id": exception_id})
        return exception

    @BaseService.measure_operation("remove_date_exception")
    def remove_date_exception(self, exception_id: str) -> None:
        exception = self.get_date_exception(exception_id)
        with self.transaction():
            self.repository.delete_exception(exception)
        self.log_operation("remove_date_exception", exception_id=exception_id)

    # Internals

    def _build_schedule(self, therapist_id: str, target: date) -> List[TimeSlot]:
        windows = self._effective_windows(therapist_id, target)
        accepted: List[TimeSlot] = []
        for window in windows:
            step = window.duration_minutes
            cursor = _minutes(window.start_time)
            window_end = _minutes(window.end_time)
            while cursor + step <= window_end:
                slot_end = cursor + step
                if not any(
                    cursor < _minutes(s.end_time) and _minutes(s.start_time) < slot_end
                    for s in accepted
                ):
                    accepted.append(
                        TimeSlot(
                            therapist_id=therapist_id,
                            date=target,
                            start_time=_from_minutes(cursor),
                            end_time=_from_minutes(slot_end),
                            duration_minutes=step,
                            session_type=window.session_type,
                            is_override=window.is_override,
                        )
                    )
                cursor = slot_end
        accepted.sort(key=lambda s: s.start_time)
        return accepted

    def _effective_windows(self, therapist_id: str, target: date) -> List[Window]:
        exceptions = self.repository.get_exceptions_for_date(therapist_id, target)
        if any(e.is_disabled for e in exceptions):
            return []

        rules = self.repository.get_rules(therapist_id, day_of_week=target.weekday())
        custom = [e for e in exceptions if e.start_time is not None and e.end_time is not None]
        if custom:
            fallback = (
                rules[0].session_duration_minutes
                if rules
                else self.settings.default_session_duration_minutes
            )
            return sorted(
                (
                    Window(
                        start_time=e.start_time,
                        end_time=e.end_time,
                        duration_minutes=e.session_duration_minutes or fallback,
                        session_type=e.session_type,
                        is_override=True,
                    )
                    for e in custom
                ),
                key=lambda w: (w.start_time, w.end_time),
            )

        return [
            Window(
                start_time=r.start_time,
                end_time=r.end_time,
                duration_minutes=r.session_duration_minutes,
                session_type=r.session_type,
                is_override=False,
            )
            for r in rules
        ]

    def _check_rule_overlap(
        self,
        therapist_id: str,
        day_of_week: int,
        start_time: time,
        end_time: time,
        ignore_rule_id: Optional[str] = None,
    ) -> None:
        existing: Sequence[AvailabilityRule] = self.repository.get_rules(
            therapist_id, day_of_week=day_of_week
        )
        for rule in existing:
            if rule.id == ignore_rule_id:
                continue
            if start_time < rule.end_time and rule.start_time < end_time:
                raise AvailabilityOverlapException(
                    scope=calendar.day_name[day_of_week],
                    new_range=_format_window(start_time, end_time),
                    conflicting_range=_format_window(rule.start_time, rule.end_time),
                )

    def _validate_rule(
        self,
        day_of_week: int,
        start_time: time,
        end_time: time,
        duration: int,
        session_type: str,
    ) -> None:
        if not isinstance(day_of_week, int) or not 0 <= day_of_week <= 6:
            raise ValidationException(
                "day_of_week must be between 0 (Monday) and 6 (Sunday)",
                code="INVALID_DAY_OF_WEEK",
                details={"day_of_week": day_of_week},
            )
        if start_time >= end_time:
            raise ValidationException("start_time must be before end_time", code="INVALID_WINDOW")
        if duration <= 0:
            raise ValidationException(
                "session_duration_minutes must be positive", code="INVALID_DURATION"
            )
        span = _minutes(end_time) - _minutes(start_time)
        if span % duration != 0:
            raise ValidationException(
                "session duration must evenly divide the availability window",
                code="INVALID_DURATION",
                details={"window_minutes": span, "duration_minutes": duration},
            )
        self._validate_session_type(session_type)

    @staticmethod
    def _validate_session_type(session_type: str) -> None:
        if session_type not in {t.value for t in SessionType}:
            raise ValidationException(
                f"Unknown session type: {session_type}", code="INVALID_SESSION_TYPE"
            )

    @staticmethod
    def _validate_month_year(month: int, year: int) -> None:
        if isinstance(month, bool) or not isinstance(month, int) or not 1 <= month <= 12:
            raise ValidationException(
                "month must be between 1 and 12", code="INVALID_MONTH", details={"month": month}
            )
        if isinstance(year, bool) or not isinstance(year, int) or not MIN_YEAR <= year <= MAX_YEAR:
            raise ValidationException(
                f"year must be between {MIN_YEAR} and {MAX_YEAR}",
                code="INVALID_YEAR",
                details={"year": year},
            )

    def _require_therapist(self, therapist_id: str) -> None:
        if self.user_repository.get_active_therapist(therapist_id) is None:
            raise NotFoundException("Therapist not found", details={"therapist_id": therapist_id})

    def _require_rule(self, rule_id: str) -> AvailabilityRule:
        rule = self.repository.get_by_id(rule_id)
        if rule is None:
            raise NotFoundException("Availability rule not found", details={"rule_id": rule_id})
        return rule
