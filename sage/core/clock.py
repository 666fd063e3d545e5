"""Clock capability: the single source of "now" for all timestamps."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


def _utc_now() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


class Clock(ABC):
    """Source of timezone-aware UTC timestamps."""

    @abstractmethod
    def now(self) -> datetime: ...


class SystemClock(Clock):
    """Wall-clock time."""

    def now(self) -> datetime:
        return _utc_now()


class FixedClock(Clock):
    """
    Deterministic clock for tests.

    Time only moves when ``advance`` or ``set`` is called.
    """

    def __init__(self, start: datetime | None = None) -> None:
        current = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        self._current = current

    def now(self) -> datetime:
        return self._current

    def advance(self, **kwargs: float) -> datetime:
        """Move the clock forward by a ``timedelta(**kwargs)``."""
        self._current = self._current + timedelta(**kwargs)
        return self._current

    def set(self, value: datetime) -> None:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        self._current = value
