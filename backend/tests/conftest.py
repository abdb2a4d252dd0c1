# backend/tests/conftest.py
"""
Pytest configuration for the SessionBook booking engine.

Every test gets its own in-memory SQLite database, a frozen platform clock
and freshly seeded users and credit packages. Concurrency tests build their
own file-backed database (see ``file_db`` below).

The clock is pinned to Monday 2026-03-02 08:00 in Africa/Lagos, so the
weekly Monday rule seeded by ``monday_rule`` yields 09:00, 10:00 and 11:00
slots that are still in the future today.
"""

from datetime import date, datetime, time
import os
from pathlib import Path
from typing import Callable, Iterator, List

import pytest
import pytz
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from sessionbook.core.config import Settings
from sessionbook.core.timezone_utils import FrozenClock
from sessionbook.database import Base, create_db_engine, create_session_factory
from sessionbook.integrations.payment_gateway import FakePaymentGateway
from sessionbook.models import AvailabilityRule, CreditPackage, User, UserRole
from sessionbook.services.availability_service import AvailabilityService
from sessionbook.services.booking_service import BookingService
from sessionbook.services.conflict_guard import ConflictGuard
from sessionbook.services.credit_service import CreditService
from sessionbook.services.housekeeping_service import HousekeepingService
from sessionbook.services.payment_service import PaymentService

TIMEZONE = "Africa/Lagos"
TEST_PAYMENT_SECRET = "test-payment-secret"

TODAY = date(2026, 3, 2)  # Monday
NEXT_MONDAY = date(2026, 3, 9)
NEXT_TUESDAY = date(2026, 3, 10)


def make_settings(database_url: str = "sqlite+pysqlite:///:memory:", **overrides: object) -> Settings:
    values: dict = {
        "database_url": database_url,
        "platform_timezone": TIMEZONE,
        "payment_provider": "fake",
        "fake_payment_secret": TEST_PAYMENT_SECRET,
        "pending_booking_timeout_minutes": 15,
        "credit_reserve_max_attempts": 5,
        "default_session_duration_minutes": 60,
    }
    values.update(overrides)
    return Settings(**values)


def make_clock() -> FrozenClock:
    return FrozenClock(pytz.timezone(TIMEZONE).localize(datetime(2026, 3, 2, 8, 0)))


def seed_users(db: Session) -> dict:
    users = {
        "therapist": User(email="therapist@example.com", full_name="Ada Therapist", role=UserRole.THERAPIST.value),
        "patient": User(email="patient@example.com", full_name="Bola Patient", role=UserRole.PATIENT.value),
        "other_patient": User(email="other@example.com", full_name="Chidi Patient", role=UserRole.PATIENT.value),
        "admin": User(email="admin@example.com", full_name="Dayo Admin", role=UserRole.ADMIN.value),
    }
    db.add_all(users.values())
    db.add_all(
        [
            CreditPackage(
                code="single",
                name="Single session",
                sessions_included=1,
                price_minor=1500000,
                currency="ngn",
                sort_order=1,
            ),
            CreditPackage(
                code="bundle-4",
                name="Four sessions",
                sessions_included=4,
                price_minor=5400000,
                currency="ngn",
                sort_order=2,
            ),
            CreditPackage(
                code="retired",
                name="Old bundle",
                sessions_included=10,
                price_minor=9000000,
                currency="ngn",
                is_active=False,
                sort_order=3,
            ),
        ]
    )
    db.commit()
    return users


def add_monday_rule(db: Session, therapist_id: str) -> AvailabilityRule:
    rule = AvailabilityRule(
        therapist_id=therapist_id,
        day_of_week=0,
        start_time=time(9, 0),
        end_time=time(12, 0),
        session_duration_minutes=60,
        session_type="individual",
        is_active=True,
    )
    db.add(rule)
    db.commit()
    return rule


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def clock() -> FrozenClock:
    return make_clock()


@pytest.fixture
def engine(settings: Settings) -> Iterator[Engine]:
    engine = create_db_engine(settings)
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker:
    return create_session_factory(engine)


@pytest.fixture
def db(session_factory: sessionmaker) -> Iterator[Session]:
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def users(db: Session) -> dict:
    return seed_users(db)


@pytest.fixture
def therapist(users: dict) -> User:
    return users["therapist"]


@pytest.fixture
def patient(users: dict) -> User:
    return users["patient"]


@pytest.fixture
def other_patient(users: dict) -> User:
    return users["other_patient"]


@pytest.fixture
def admin(users: dict) -> User:
    return users["admin"]


@pytest.fixture
def monday_rule(db: Session, therapist: User) -> AvailabilityRule:
    """Mondays 09:00-12:00, 60 minute individual sessions."""
    return add_monday_rule(db, therapist.id)


@pytest.fixture
def gateway() -> FakePaymentGateway:
    return FakePaymentGateway(secret=TEST_PAYMENT_SECRET, success_url="http://localhost/credits")


@pytest.fixture
def availability_service(db: Session, settings: Settings, clock: FrozenClock) -> AvailabilityService:
    return AvailabilityService(db, settings=settings, clock=clock)


@pytest.fixture
def credit_service(db: Session, settings: Settings, clock: FrozenClock) -> CreditService:
    return CreditService(db, settings=settings, clock=clock)


@pytest.fixture
def conflict_guard(db: Session, settings: Settings, clock: FrozenClock) -> ConflictGuard:
    return ConflictGuard(db, settings=settings, clock=clock)


@pytest.fixture
def booking_service(
    db: Session,
    settings: Settings,
    clock: FrozenClock,
    availability_service: AvailabilityService,
    credit_service: CreditService,
    conflict_guard: ConflictGuard,
) -> BookingService:
    return BookingService(
        db,
        settings=settings,
        clock=clock,
        availability_service=availability_service,
        credit_service=credit_service,
        conflict_guard=conflict_guard,
    )


@pytest.fixture
def payment_service(
    db: Session,
    settings: Settings,
    clock: FrozenClock,
    gateway: FakePaymentGateway,
    credit_service: CreditService,
) -> PaymentService:
    return PaymentService(db, gateway, settings=settings, clock=clock, credit_service=credit_service)


@pytest.fixture
def housekeeping_service(
    db: Session,
    settings: Settings,
    clock: FrozenClock,
    conflict_guard: ConflictGuard,
    credit_service: CreditService,
) -> HousekeepingService:
    return HousekeepingService(
        db,
        settings=settings,
        clock=clock,
        conflict_guard=conflict_guard,
        credit_service=credit_service,
    )


@pytest.fixture
def grant(credit_service: CreditService) -> Callable[..., List[str]]:
    """Grant ``count`` credits to a patient under a fresh package reference."""
    counter = {"n": 0}

    def _grant(patient_id: str, count: int = 1) -> List[str]:
        counter["n"] += 1
        return credit_service.grant_credits(patient_id, count, f"test-package-{counter['n']}")

    return _grant


@pytest.fixture
def file_db(tmp_path: Path) -> Iterator[tuple]:
    """
    File-backed SQLite database for multi-threaded tests.

    Yields (settings, session_factory); each thread opens its own session.
    """
    db_path = tmp_path / "sessionbook-race.db"
    settings = make_settings(f"sqlite+pysqlite:///{db_path}")
    engine = create_db_engine(settings)
    Base.metadata.create_all(engine)
    yield settings, create_session_factory(engine)
    engine.dispose()
    if db_path.exists():
        os.remove(db_path)
