# backend/sessionbook/api/dependencies/__init__.py
"""
Central export point for all dependencies.

This module re-exports all dependencies from submodules
for convenient access throughout the application.
"""

from .auth import get_current_user, require_admin, require_staff
from .database import get_db
from .services import (
    get_availability_service,
    get_booking_service,
    get_clock,
    get_conflict_guard,
    get_credit_service,
    get_payment_gateway,
    get_payment_service,
    get_settings,
)

__all__ = [
    # Auth
    "get_current_user",
    "require_admin",
    "require_staff",
    # Database
    "get_db",
    # Services
    "get_availability_service",
    "get_booking_service",
    "get_clock",
    "get_conflict_guard",
    "get_credit_service",
    "get_payment_gateway",
    "get_payment_service",
    "get_settings",
]
