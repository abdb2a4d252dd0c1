"""SessionBook: telehealth session-booking engine."""

__version__ = "0.1.0"
