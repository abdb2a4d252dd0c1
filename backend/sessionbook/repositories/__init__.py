# backend/sessionbook/repositories/__init__.py
"""
Repository layer for SessionBook.

Usage:
    from sessionbook.repositories import RepositoryFactory

    # In a service:
    repository = RepositoryFactory.create_booking_repository(db)
    booking = repository.get_active_for_slot(therapist_id, booking_date, start_time)
"""

from .availability_repository import AvailabilityRepository
from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .credit_repository import CreditRepository
from .factory import RepositoryFactory
from .payment_repository import PaymentRepository
from .user_repository import UserRepository
from .webhook_event_repository import WebhookEventRepository

__all__ = [
    "AvailabilityRepository",
    "BaseRepository",
    "BookingRepository",
    "CreditRepository",
    "PaymentRepository",
    "RepositoryFactory",
    "UserRepository",
    "WebhookEventRepository",
]
