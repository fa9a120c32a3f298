"""Injectable time source.

Services never call ``datetime.now()`` directly; they receive a ``Clock``
so tests can drive token expiry deterministically. Timestamps are naive UTC,
matching how they are stored in the database.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock(ABC):
    """Abstract clock interface."""

    @abstractmethod
    def now(self) -> datetime:
        """Current time as a naive UTC datetime."""
        ...


class SystemClock(Clock):
    """Production clock backed by the system time."""

    def now(self) -> datetime:
        return utcnow()


class DeterministicClock(Clock):
    """Test clock that only moves when told to."""

    def __init__(self, fixed_time: Optional[datetime] = None):
        self._time = fixed_time or datetime(2024, 1, 1, 12, 0, 0)

    def now(self) -> datetime:
        return self._time

    def set_time(self, time: datetime) -> None:
        self._time = time

    def advance(self, seconds: float = 0, *, hours: float = 0) -> datetime:
        self._time = self._time + timedelta(seconds=seconds, hours=hours)
        return self._time


def utcnow() -> datetime:
    """Naive UTC now, used for column defaults."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
