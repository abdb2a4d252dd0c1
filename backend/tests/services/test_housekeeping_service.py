from datetime import time

import pytest
from tests.conftest import NEXT_MONDAY

from sessionbook.models import Booking
from sessionbook.services.booking_service import BookingRequest


@pytest.fixture
def abandoned_hold(conflict_guard, credit_service, therapist, patient, grant):
    """An attempt that reserved a credit and held the slot, then died."""
    grant(patient.id)
    credit_id = credit_service.reserve_one_credit(patient.id)
    booking = conflict_guard.try_reserve_slot(
        therapist.id,
        NEXT_MONDAY,
        time(9),
        patient.id,
        end_time=time(10),
        duration_minutes=60,
        credit_id=credit_id,
    )
    return booking, credit_id


def test_fresh_pending_booking_is_left_alone(housekeeping_service, conflict_guard, abandoned_hold, clock) -> None:
    booking, _ = abandoned_hold
    clock.advance(minutes=5)

    stats = housekeeping_service.expire_stale_pending_bookings()

    assert stats["examined"] == 0
    assert conflict_guard.get_booking(booking.id).status == "pending_payment"


def test_stale_hold_is_released_with_its_credit(
    housekeeping_service, conflict_guard, credit_service, abandoned_hold, patient, clock
) -> None:
    booking, credit_id = abandoned_hold
    clock.advance(minutes=20)

    stats = housekeeping_service.expire_stale_pending_bookings()

    assert stats == {
        "examined": 1,
        "released": 1,
        "rolled_forward": 0,
        "credits_released": 1,
        "errors": 0,
    }
    assert conflict_guard.get_booking(booking.id).status == "cancelled"
    assert credit_service.get_credit(credit_id).status == "available"
    assert credit_service.credit_summary(patient.id)["total_granted"] == 1


def test_stale_hold_with_spent_credit_rolls_forward(
    housekeeping_service, conflict_guard, credit_service, abandoned_hold, clock
) -> None:
    booking, credit_id = abandoned_hold
    credit_service.confirm_spend(credit_id, booking.id)
    clock.advance(minutes=20)

    stats = housekeeping_service.expire_stale_pending_bookings()

    assert stats["rolled_forward"] == 1
    assert stats["released"] == 0
    assert conflict_guard.get_booking(booking.id).status == "confirmed"
    assert credit_service.get_credit(credit_id).status == "spent"


def test_released_slot_is_bookable_again(
    housekeeping_service, availability_service, therapist, monday_rule, abandoned_hold, clock
) -> None:
    clock.advance(minutes=20)
    housekeeping_service.expire_stale_pending_bookings()

    assert time(9) in [
        s.start_time for s in availability_service.get_time_slots(therapist.id, NEXT_MONDAY)
    ]


def test_orphaned_reservation_is_released(housekeeping_service, credit_service, patient, grant, clock) -> None:
    grant(patient.id)
    credit_id = credit_service.reserve_one_credit(patient.id)

    assert housekeeping_service.release_abandoned_credit_reservations() == 0

    clock.advance(minutes=20)
    assert housekeeping_service.release_abandoned_credit_reservations() == 1
    assert credit_service.get_credit(credit_id).status == "available"


def test_reservation_of_active_booking_is_kept(housekeeping_service, credit_service, abandoned_hold, clock) -> None:
    _, credit_id = abandoned_hold
    clock.advance(minutes=20)

    assert housekeeping_service.release_abandoned_credit_reservations() == 0
    assert credit_service.get_credit(credit_id).status == "reserved"


def test_audit_reports_ledger_inconsistencies(
    db, housekeeping_service, credit_service, therapist, patient, grant
) -> None:
    orphan = Booking(
        patient_id=patient.id,
        therapist_id=therapist.id,
        booking_date=NEXT_MONDAY,
        start_time=time(11),
        end_time=time(12),
        duration_minutes=60,
        status="confirmed",
    )
    db.add(orphan)
    db.commit()
    grant(patient.id)
    credit_id = credit_service.reserve_one_credit(patient.id)
    credit_service.confirm_spend(credit_id, "01JMISSINGBOOKING000000000")

    issues = housekeeping_service.audit_consistency()

    assert sorted(i["issue"] for i in issues) == [
        "booking_without_spent_credit",
        "spent_credit_without_booking",
    ]
    by_issue = {i["issue"]: i for i in issues}
    assert by_issue["booking_without_spent_credit"]["booking_id"] == orphan.id
    assert by_issue["spent_credit_without_booking"]["credit_id"] == credit_id


def test_audit_of_consistent_ledger_is_clean(
    housekeeping_service, booking_service, patient, therapist, monday_rule, grant
) -> None:
    grant(patient.id)
    booking_service.attempt_booking(
        BookingRequest(
            patient_id=patient.id,
            therapist_id=therapist.id,
            booking_date=NEXT_MONDAY,
            start_time=time(9),
            duration_minutes=60,
        )
    )

    assert housekeeping_service.audit_consistency() == []


def test_run_performs_full_sweep(housekeeping_service, abandoned_hold, clock) -> None:
    clock.advance(minutes=20)

    summary = housekeeping_service.run()

    assert summary["bookings"]["released"] == 1
    assert summary["credits_released"] == 0
    assert summary["audit_issues"] == 0
