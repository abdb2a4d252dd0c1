from __future__ import annotations

from datetime import date, time

import pytest
from tests.conftest import NEXT_MONDAY, NEXT_TUESDAY, TODAY

from sessionbook.core.exceptions import (
    AvailabilityOverlapException,
    NotFoundException,
    ValidationException,
)
from sessionbook.models import AvailabilityRule, Booking


def _starts(slots):
    return [s.start_time for s in slots]


def test_weekly_rule_yields_back_to_back_slots(availability_service, therapist, monday_rule) -> None:
    slots = availability_service.get_time_slots(therapist.id, NEXT_MONDAY)

    assert _starts(slots) == [time(9), time(10), time(11)]
    assert [s.end_time for s in slots] == [time(10), time(11), time(12)]
    assert all(s.duration_minutes == 60 for s in slots)
    assert all(s.session_type == "individual" and not s.is_override for s in slots)
    assert all(s.therapist_id == therapist.id and s.date == NEXT_MONDAY for s in slots)


def test_slot_listing_is_deterministic(availability_service, therapist, monday_rule) -> None:
    first = availability_service.get_time_slots(therapist.id, NEXT_MONDAY)
    second = availability_service.get_time_slots(therapist.id, NEXT_MONDAY)
    assert first == second
    assert [s.key for s in first] == [s.key for s in second]


def test_accepts_iso_date_string(availability_service, therapist, monday_rule) -> None:
    slots = availability_service.get_time_slots(therapist.id, NEXT_MONDAY.isoformat())
    assert len(slots) == 3


@pytest.mark.parametrize("value", ["2026-13-01", "next monday", ""])
def test_malformed_date_is_rejected(availability_service, therapist, value) -> None:
    with pytest.raises(ValidationException):
        availability_service.get_time_slots(therapist.id, value)


def test_weekday_without_rule_has_no_slots(availability_service, therapist, monday_rule) -> None:
    assert availability_service.get_time_slots(therapist.id, NEXT_TUESDAY) == []


def test_past_date_has_no_slots(availability_service, therapist, monday_rule) -> None:
    assert availability_service.get_time_slots(therapist.id, date(2026, 2, 23)) == []


def test_today_drops_slots_that_already_started(
    availability_service, therapist, monday_rule, clock
) -> None:
    assert _starts(availability_service.get_time_slots(therapist.id, TODAY)) == [
        time(9),
        time(10),
        time(11),
    ]

    clock.advance(hours=2)  # 10:00, the 10:00 slot is no longer bookable

    assert _starts(availability_service.get_time_slots(therapist.id, TODAY)) == [time(11)]


def test_active_booking_removes_overlapping_slots(
    db, availability_service, conflict_guard, therapist, patient, monday_rule
) -> None:
    booking = conflict_guard.try_reserve_slot(
        therapist.id,
        NEXT_MONDAY,
        time(10),
        patient.id,
        end_time=time(11),
        duration_minutes=60,
    )
    assert _starts(availability_service.get_time_slots(therapist.id, NEXT_MONDAY)) == [
        time(9),
        time(11),
    ]

    conflict_guard.release_slot(booking.id)

    assert len(availability_service.get_time_slots(therapist.id, NEXT_MONDAY)) == 3


def test_unaligned_booking_blocks_every_slot_it_touches(
    db, availability_service, therapist, patient, monday_rule
) -> None:
    db.add(
        Booking(
            patient_id=patient.id,
            therapist_id=therapist.id,
            booking_date=NEXT_MONDAY,
            start_time=time(10, 30),
            end_time=time(11, 30),
            duration_minutes=60,
            status="confirmed",
        )
    )
    db.commit()

    assert _starts(availability_service.get_time_slots(therapist.id, NEXT_MONDAY)) == [time(9)]


def test_resolve_schedule_ignores_bookings_and_clock(
    availability_service, conflict_guard, therapist, patient, monday_rule, clock
) -> None:
    conflict_guard.try_reserve_slot(
        therapist.id, TODAY, time(9), patient.id, end_time=time(10), duration_minutes=60
    )
    clock.advance(hours=3)

    assert availability_service.get_time_slots(therapist.id, TODAY) == []
    assert len(availability_service.resolve_schedule(therapist.id, TODAY)) == 3


def test_disabled_date_has_no_slots(availability_service, therapist, monday_rule) -> None:
    availability_service.add_date_exception(therapist.id, NEXT_MONDAY, is_disabled=True, reason="Leave")

    assert availability_service.get_time_slots(therapist.id, NEXT_MONDAY) == []
    assert NEXT_MONDAY not in availability_service.get_available_dates(therapist.id, 3, 2026)


def test_custom_window_replaces_weekly_rule(availability_service, therapist, monday_rule) -> None:
    availability_service.add_date_exception(
        therapist.id,
        NEXT_MONDAY,
        start_time=time(14, 0),
        end_time=time(15, 30),
        session_duration_minutes=30,
    )

    slots = availability_service.get_time_slots(therapist.id, NEXT_MONDAY)
    assert _starts(slots) == [time(14), time(14, 30), time(15)]
    assert all(s.is_override and s.duration_minutes == 30 for s in slots)


def test_custom_window_on_free_day_uses_default_duration_and_drops_remainder(
    availability_service, therapist, monday_rule
) -> None:
    availability_service.add_date_exception(
        therapist.id, NEXT_TUESDAY, start_time=time(10, 0), end_time=time(12, 30)
    )

    slots = availability_service.get_time_slots(therapist.id, NEXT_TUESDAY)
    assert _starts(slots) == [time(10), time(11)]
    assert NEXT_TUESDAY in availability_service.get_available_dates(therapist.id, 3, 2026)


def test_custom_window_duration_falls_back_to_weekday_rule(db, availability_service, therapist) -> None:
    availability_service.add_rule(therapist.id, 0, time(9), time(11), session_duration_minutes=30)
    availability_service.add_date_exception(
        therapist.id, NEXT_MONDAY, start_time=time(16, 0), end_time=time(17, 0)
    )

    slots = availability_service.get_time_slots(therapist.id, NEXT_MONDAY)
    assert _starts(slots) == [time(16), time(16, 30)]


def test_overlapping_windows_keep_the_earlier_slot(db, availability_service, therapist) -> None:
    db.add_all(
        [
            AvailabilityRule(
                therapist_id=therapist.id,
                day_of_week=0,
                start_time=time(9),
                end_time=time(11),
                session_duration_minutes=60,
            ),
            AvailabilityRule(
                therapist_id=therapist.id,
                day_of_week=0,
                start_time=time(10, 30),
                end_time=time(12),
                session_duration_minutes=30,
            ),
        ]
    )
    db.commit()

    slots = availability_service.get_time_slots(therapist.id, NEXT_MONDAY)
    assert _starts(slots) == [time(9), time(10), time(11), time(11, 30)]


def test_removing_exception_restores_rule_slots(availability_service, therapist, monday_rule) -> None:
    exception = availability_service.add_date_exception(therapist.id, NEXT_MONDAY, is_disabled=True)
    availability_service.remove_date_exception(exception.id)

    assert len(availability_service.get_time_slots(therapist.id, NEXT_MONDAY)) == 3
    with pytest.raises(NotFoundException):
        availability_service.remove_date_exception(exception.id)


def test_available_dates_lists_remaining_mondays(availability_service, therapist, monday_rule) -> None:
    dates = availability_service.get_available_dates(therapist.id, 3, 2026)
    assert dates == [date(2026, 3, d) for d in (2, 9, 16, 23, 30)]


def test_available_dates_for_past_month_is_empty(availability_service, therapist, monday_rule) -> None:
    assert availability_service.get_available_dates(therapist.id, 2, 2026) == []


@pytest.mark.parametrize("month,year", [(0, 2026), (13, 2026), (3, 1969), (3, 10000)])
def test_available_dates_rejects_bad_month_or_year(availability_service, therapist, month, year) -> None:
    with pytest.raises(ValidationException):
        availability_service.get_available_dates(therapist.id, month, year)


def test_unknown_or_non_therapist_is_not_found(availability_service, patient, monday_rule) -> None:
    with pytest.raises(NotFoundException):
        availability_service.get_time_slots("01HZZZZZZZZZZZZZZZZZZZZZZZ", NEXT_MONDAY)
    with pytest.raises(NotFoundException):
        availability_service.get_available_dates(patient.id, 3, 2026)


def test_inactive_therapist_is_not_found(db, availability_service, therapist, monday_rule) -> None:
    therapist.is_active = False
    db.commit()
    with pytest.raises(NotFoundException):
        availability_service.get_time_slots(therapist.id, NEXT_MONDAY)


def test_add_rule_rejects_overlap_but_allows_touching(availability_service, therapist, monday_rule) -> None:
    with pytest.raises(AvailabilityOverlapException):
        availability_service.add_rule(therapist.id, 0, time(11), time(13))

    rule = availability_service.add_rule(therapist.id, 0, time(12), time(14))

    assert rule.is_active
    assert len(availability_service.get_time_slots(therapist.id, NEXT_MONDAY)) == 5


@pytest.mark.parametrize(
    "start,end,duration",
    [(time(10), time(9), 60), (time(9), time(10), 0), (time(9), time(10, 30), 60)],
)
def test_add_rule_rejects_invalid_windows(availability_service, therapist, start, end, duration) -> None:
    with pytest.raises(ValidationException):
        availability_service.add_rule(therapist.id, 2, start, end, session_duration_minutes=duration)


def test_add_rule_rejects_unknown_session_type(availability_service, therapist) -> None:
    with pytest.raises(ValidationException):
        availability_service.add_rule(therapist.id, 2, time(9), time(10), session_type="couples")


def test_replace_rule_supersedes_old_rule(availability_service, therapist, monday_rule) -> None:
    new_rule = availability_service.replace_rule(
        monday_rule.id, start_time=time(13), end_time=time(15)
    )

    rules = availability_service.list_rules(therapist.id, include_inactive=True)
    old = next(r for r in rules if r.id == monday_rule.id)
    assert not old.is_active
    assert old.superseded_by_id == new_rule.id
    assert _starts(availability_service.get_time_slots(therapist.id, NEXT_MONDAY)) == [
        time(13),
        time(14),
    ]


def test_replace_rule_requires_active_rule(availability_service, monday_rule) -> None:
    availability_service.deactivate_rule(monday_rule.id)
    with pytest.raises(ValidationException):
        availability_service.replace_rule(monday_rule.id, start_time=time(13), end_time=time(15))


def test_replace_rule_rejects_zero_duration(availability_service, therapist, monday_rule) -> None:
    with pytest.raises(ValidationException):
        availability_service.replace_rule(
            monday_rule.id, start_time=time(13), end_time=time(15), session_duration_minutes=0
        )

    rules = availability_service.list_rules(therapist.id)
    assert [r.id for r in rules] == [monday_rule.id]


def test_deactivated_rule_offers_no_slots(availability_service, therapist, monday_rule) -> None:
    availability_service.deactivate_rule(monday_rule.id)

    assert availability_service.get_time_slots(therapist.id, NEXT_MONDAY) == []
    assert availability_service.list_rules(therapist.id) == []


def test_custom_windows_on_one_date_cannot_overlap(availability_service, therapist) -> None:
    availability_service.add_date_exception(
        therapist.id, NEXT_TUESDAY, start_time=time(10), end_time=time(12)
    )
    with pytest.raises(AvailabilityOverlapException):
        availability_service.add_date_exception(
            therapist.id, NEXT_TUESDAY, start_time=time(11), end_time=time(13)
        )


def test_exception_shape_is_validated(availability_service, therapist) -> None:
    with pytest.raises(ValidationException):
        availability_service.add_date_exception(
            therapist.id, NEXT_TUESDAY, is_disabled=True, start_time=time(9), end_time=time(10)
        )
    with pytest.raises(ValidationException):
        availability_service.add_date_exception(therapist.id, NEXT_TUESDAY, start_time=time(9))


def test_list_date_exceptions_in_range(availability_service, therapist) -> None:
    availability_service.add_date_exception(therapist.id, NEXT_MONDAY, is_disabled=True)
    availability_service.add_date_exception(therapist.id, date(2026, 4, 6), is_disabled=True)

    listed = availability_service.list_date_exceptions(therapist.id, TODAY, date(2026, 3, 31))
    assert [e.exception_date for e in listed] == [NEXT_MONDAY]

    with pytest.raises(ValidationException):
        availability_service.list_date_exceptions(therapist.id, NEXT_MONDAY, TODAY)
