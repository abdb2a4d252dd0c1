# backend/sessionbook/routes/v1/__init__.py
"""
API v1 Routes

Versioned API endpoints under /api/v1.
"""

from . import availability, bookings, credits, payments

__all__ = [
    "availability",
    "bookings",
    "credits",
    "payments",
]
