# backend/sessionbook/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

Every request gets fresh services bound to its own session and to the
settings, clock and payment gateway the app was created with.
"""

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from ...core.config import Settings
from ...core.timezone_utils import Clock
from ...integrations.payment_gateway import PaymentGateway
from ...services.availability_service import AvailabilityService
from ...services.booking_service import BookingService
from ...services.conflict_guard import ConflictGuard
from ...services.credit_service import CreditService
from ...services.payment_service import PaymentService
from .database import get_db


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_clock(request: Request) -> Clock:
    return request.app.state.clock


def get_payment_gateway(request: Request) -> PaymentGateway:
    return request.app.state.payment_gateway


def get_availability_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> AvailabilityService:
    return AvailabilityService(db, settings=settings, clock=clock)


def get_credit_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> CreditService:
    return CreditService(db, settings=settings, clock=clock)


def get_conflict_guard(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> ConflictGuard:
    return ConflictGuard(db, settings=settings, clock=clock)


def get_booking_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
    availability_service: AvailabilityService = Depends(get_availability_service),
    credit_service: CreditService = Depends(get_credit_service),
    conflict_guard: ConflictGuard = Depends(get_conflict_guard),
) -> BookingService:
    """
    Get BookingService instance with proper dependencies.

    All collaborators share the request's session.
    """
    return BookingService(
        db,
        settings=settings,
        clock=clock,
        availability_service=availability_service,
        credit_service=credit_service,
        conflict_guard=conflict_guard,
    )


def get_payment_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    credit_service: CreditService = Depends(get_credit_service),
) -> PaymentService:
    return PaymentService(
        db, gateway, settings=settings, clock=clock, credit_service=credit_service
    )
