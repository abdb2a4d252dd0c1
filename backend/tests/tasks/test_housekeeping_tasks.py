from datetime import time

import pytest
from tests.conftest import NEXT_MONDAY, make_settings

from sessionbook.core.exceptions import TransientStorageException
from sessionbook.tasks.celery_app import HOUSEKEEPING_TASK, BaseTask, celery_app, create_celery_app
from sessionbook.tasks.housekeeping import (
    configure_session_factory,
    run_booking_housekeeping,
    run_housekeeping,
)


@pytest.fixture
def installed_session_factory(session_factory):
    configure_session_factory(session_factory)
    yield session_factory
    configure_session_factory(None)


def test_beat_schedule_follows_settings() -> None:
    app = create_celery_app(make_settings(housekeeping_interval_seconds=120))

    entry = app.conf.beat_schedule["booking-housekeeping"]
    assert entry["task"] == HOUSEKEEPING_TASK
    assert entry["schedule"] == 120.0
    assert entry["options"]["expires"] == 120
    assert app.conf.task_serializer == "json"
    assert app.conf.timezone == "UTC"


def test_task_is_registered_with_retrying_base() -> None:
    task = celery_app.tasks[HOUSEKEEPING_TASK]
    assert isinstance(task, BaseTask)
    assert TransientStorageException in task.autoretry_for


def test_run_housekeeping_releases_abandoned_hold(
    session_factory, settings, clock, conflict_guard, credit_service, therapist, patient, grant
) -> None:
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
    clock.advance(minutes=30)

    result = run_housekeeping(session_factory, settings, clock=clock)

    assert result["bookings"]["released"] == 1
    assert result["bookings"]["credits_released"] == 1
    assert conflict_guard.get_booking(booking.id).status == "cancelled"
    assert credit_service.get_credit(credit_id).status == "available"


def test_task_runs_sweep_on_installed_factory(installed_session_factory, users) -> None:
    result = run_booking_housekeeping()

    assert result["bookings"]["examined"] == 0
    assert result["credits_released"] == 0
    assert result["audit_issues"] == 0
