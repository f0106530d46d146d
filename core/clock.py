"""
Clock abstraction for the policy engine.

Every rollover and expiry check compares stored values against the
clock, so the engine never calls datetime.now() directly.
"""

from datetime import datetime, timedelta
from typing import Optional, Protocol

DATE_FORMAT = "%Y-%m-%d"
MONTH_FORMAT = "%Y-%m"


class Clock(Protocol):
    """Supplies the current local time and calendar identifiers."""

    def now(self) -> datetime: ...

    def today(self) -> str: ...

    def current_month(self) -> str: ...


class SystemClock:
    """Clock backed by the local wall-clock time."""

    def now(self) -> datetime:
        return datetime.now()

    def today(self) -> str:
        return self.now().strftime(DATE_FORMAT)

    def current_month(self) -> str:
        return self.now().strftime(MONTH_FORMAT)


class FrozenClock(SystemClock):
    """
    Clock pinned to an explicit instant.

    Used by tests to simulate day/month rollovers and by the CLI's
    --at option to evaluate the policy at a chosen time.
    """

    def __init__(self, start: Optional[datetime] = None) -> None:
        self._now = start or datetime.now()

    def now(self) -> datetime:
        return self._now

    def set(self, moment: datetime) -> None:
        self._now = moment

    def advance(self, minutes: float = 0, seconds: float = 0, days: float = 0) -> None:
        """Move the clock forward (negative values move it back)."""
        self._now += timedelta(days=days, minutes=minutes, seconds=seconds)


def elapsed_minutes(start: datetime, end: datetime) -> int:
    """
    Whole minutes between two instants, floored and never negative.

    A clock that moved backwards yields 0 instead of a negative value.
    """
    seconds = (end - start).total_seconds()
    if seconds <= 0:
        return 0
    return int(seconds // 60)
