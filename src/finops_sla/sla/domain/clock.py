"""
Time Source
===========

Injectable clocks. Every component that needs "now" receives a clock
instead of reading the system time directly, so tests can drive the
lifecycle through arbitrary instants without sleeping.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock(ABC):
    """Supplies the current instant as a timezone-aware datetime."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current instant."""


class SystemClock(Clock):
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """
    Clock that only moves when told to.

    Naive datetimes are rejected: a fixed instant without a zone is
    ambiguous once the canonical timezone differs from the host's.
    """

    def __init__(self, instant: Optional[datetime] = None):
        self._instant = instant or datetime.now(timezone.utc)
        self._check(self._instant)

    @staticmethod
    def _check(instant: datetime) -> None:
        if instant.tzinfo is None:
            raise ValueError("FixedClock requires a timezone-aware datetime")

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        self._check(instant)
        self._instant = instant

    def advance(self, **delta: float) -> datetime:
        """Move forward by ``timedelta(**delta)`` and return the new instant."""
        self._instant = self._instant + timedelta(**delta)
        return self._instant
