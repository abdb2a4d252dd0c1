from datetime import time

import pytest
from tests.conftest import NEXT_MONDAY

from sessionbook.core.exceptions import (
    InvalidStatusTransitionException,
    InvariantViolationException,
    NotFoundException,
    SlotUnavailableException,
    ValidationException,
)
from sessionbook.models.booking import SLOT_RELEASED_REASON


@pytest.fixture
def hold(conflict_guard, therapist, patient):
    def _hold(start=time(9), patient_id=None, credit_id=None):
        return conflict_guard.try_reserve_slot(
            therapist.id,
            NEXT_MONDAY,
            start,
            patient_id or patient.id,
            end_time=time(start.hour + 1, start.minute),
            duration_minutes=60,
            credit_id=credit_id,
        )

    return _hold


@pytest.fixture
def confirmed(hold, credit_service, conflict_guard, patient, grant):
    grant(patient.id)
    credit_id = credit_service.reserve_one_credit(patient.id)
    booking = hold(credit_id=credit_id)
    credit_service.confirm_spend(credit_id, booking.id)
    return conflict_guard.confirm_booking(booking.id)


def test_hold_creates_pending_booking(hold, conflict_guard, patient) -> None:
    booking = hold()

    assert booking.status == "pending_payment"
    assert booking.patient_id == patient.id
    assert booking.created_at is not None
    assert conflict_guard.find_active_booking(booking.therapist_id, NEXT_MONDAY, time(9)).id == booking.id


def test_second_hold_on_same_slot_conflicts(hold, other_patient) -> None:
    hold()

    with pytest.raises(SlotUnavailableException) as exc_info:
        hold(patient_id=other_patient.id)

    assert exc_info.value.code == "SLOT_UNAVAILABLE"
    assert exc_info.value.details["start_time"] == "09:00"


def test_failed_hold_leaves_session_usable(hold, other_patient) -> None:
    hold()
    with pytest.raises(SlotUnavailableException):
        hold(patient_id=other_patient.id)

    assert hold(start=time(10), patient_id=other_patient.id).status == "pending_payment"


def test_released_slot_can_be_held_again(hold, conflict_guard, other_patient) -> None:
    booking = hold()

    assert conflict_guard.release_slot(booking.id) is True
    assert conflict_guard.release_slot(booking.id) is False

    released = conflict_guard.get_booking(booking.id)
    assert released.status == "cancelled"
    assert released.cancellation_reason == SLOT_RELEASED_REASON
    assert hold(patient_id=other_patient.id).status == "pending_payment"


def test_release_of_confirmed_booking_is_refused(confirmed, conflict_guard) -> None:
    with pytest.raises(InvalidStatusTransitionException):
        conflict_guard.release_slot(confirmed.id)
    assert conflict_guard.get_booking(confirmed.id).status == "confirmed"


def test_confirm_requires_spent_credit(hold, conflict_guard, credit_service, patient, grant) -> None:
    booking = hold()
    with pytest.raises(InvariantViolationException):
        conflict_guard.confirm_booking(booking.id)

    grant(patient.id)
    credit_id = credit_service.reserve_one_credit(patient.id)
    other = hold(start=time(10), credit_id=credit_id)
    with pytest.raises(InvariantViolationException):
        conflict_guard.confirm_booking(other.id)

    credit_service.confirm_spend(credit_id, other.id)
    confirmed = conflict_guard.confirm_booking(other.id)
    assert confirmed.status == "confirmed"
    assert confirmed.confirmed_at is not None


def test_confirm_rejects_credit_spent_on_another_booking(
    hold, conflict_guard, credit_service, patient, grant
) -> None:
    grant(patient.id)
    credit_id = credit_service.reserve_one_credit(patient.id)
    first = hold(credit_id=credit_id)
    second = hold(start=time(10), credit_id=credit_id)
    credit_service.confirm_spend(credit_id, first.id)

    with pytest.raises(InvariantViolationException):
        conflict_guard.confirm_booking(second.id)


def test_confirm_twice_is_an_invariant_violation(confirmed, conflict_guard) -> None:
    with pytest.raises(InvariantViolationException):
        conflict_guard.confirm_booking(confirmed.id)


@pytest.mark.parametrize("target", ["completed", "no_show", "cancelled"])
def test_confirmed_booking_reaches_terminal_states(confirmed, conflict_guard, admin, target) -> None:
    updated = conflict_guard.transition_status(confirmed.id, target, actor_id=admin.id, reason="ok")

    assert updated.status == target
    if target == "completed":
        assert updated.completed_at is not None
    if target == "cancelled":
        assert updated.cancelled_by_id == admin.id
        assert updated.cancellation_reason == "ok"


@pytest.mark.parametrize("target", ["completed", "no_show"])
def test_pending_booking_cannot_skip_confirmation(hold, conflict_guard, target) -> None:
    booking = hold()
    with pytest.raises(InvalidStatusTransitionException):
        conflict_guard.transition_status(booking.id, target)


@pytest.mark.parametrize("terminal", ["completed", "cancelled", "no_show"])
def test_terminal_states_are_final(confirmed, conflict_guard, terminal) -> None:
    conflict_guard.transition_status(confirmed.id, terminal)
    for target in ("pending_payment", "confirmed", "completed", "cancelled", "no_show"):
        with pytest.raises(InvalidStatusTransitionException):
            conflict_guard.transition_status(confirmed.id, target)


def test_cancelled_confirmed_booking_frees_the_slot(confirmed, conflict_guard, hold, other_patient) -> None:
    conflict_guard.cancel_booking(confirmed.id, reason="patient request")

    assert hold(patient_id=other_patient.id).status == "pending_payment"


def test_completed_booking_keeps_slot_free_for_others(confirmed, conflict_guard, hold, other_patient) -> None:
    conflict_guard.complete_booking(confirmed.id)
    assert hold(patient_id=other_patient.id).status == "pending_payment"


def test_unknown_status_is_rejected(hold, conflict_guard) -> None:
    booking = hold()
    with pytest.raises(ValidationException):
        conflict_guard.transition_status(booking.id, "archived")


def test_unknown_booking_is_not_found(conflict_guard) -> None:
    with pytest.raises(NotFoundException):
        conflict_guard.transition_status("01JNOPE0000000000000000000", "cancelled")
    with pytest.raises(NotFoundException):
        conflict_guard.get_booking("01JNOPE0000000000000000000")


def test_list_patient_bookings_filters_by_status(hold, conflict_guard, patient) -> None:
    first = hold()
    second = hold(start=time(10))
    conflict_guard.release_slot(first.id)

    assert [b.id for b in conflict_guard.list_patient_bookings(patient.id, ["pending_payment"])] == [
        second.id
    ]
    assert {b.id for b in conflict_guard.list_patient_bookings(patient.id)} == {first.id, second.id}
