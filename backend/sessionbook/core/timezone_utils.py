"""
Timezone utilities for the SessionBook platform.

Session dates and wall-clock times are expressed in the platform timezone.
Services take a ``Clock`` so "now" can be fixed in tests and shared by every
component handling one request.
"""

from datetime import date, datetime, time, timedelta, timezone
import threading
from typing import Union

import pytz

TzInfo = Union[pytz.BaseTzInfo, timezone]


class Clock:
    """Wall clock in the platform timezone."""

    def __init__(self, tz_name: str = "UTC") -> None:
        self.tz: TzInfo = pytz.timezone(tz_name)

    def now(self) -> datetime:
        """Current aware datetime in the platform timezone."""
        return datetime.now(self.tz)

    def now_utc(self) -> datetime:
        return self.now().astimezone(timezone.utc)

    def today(self) -> date:
        return self.now().date()

    def is_past(self, on_date: date, at_time: time) -> bool:
        """True when the wall-clock moment (on_date, at_time) is not in the future."""
        now = self.now()
        if on_date != now.date():
            return on_date < now.date()
        return at_time <= now.time().replace(tzinfo=None)


class FrozenClock(Clock):
    """Clock pinned to a fixed instant; used by tests and replay tooling."""

    def __init__(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            raise ValueError("FrozenClock requires an aware datetime")
        self.tz = instant.tzinfo
        self._instant = instant
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._instant

    def advance(self, **delta: float) -> datetime:
        with self._lock:
            self._instant = self._instant + timedelta(**delta)
            return self._instant

