"""
Daily usage ledger for HomeGate.

Tracks minutes spent in the restricted app against a daily quota.
There is no midnight timer: every read and write compares the stored
date with the clock's "today" and treats stale minutes as zero.
"""

import logging
import threading
from typing import Any, Dict, Optional

import config
from core.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


def period_is_stale(stored: str, current: str, label: str = "period") -> bool:
    """
    Decide whether a stored day/month identifier has rolled over.

    Identifiers are zero-padded ISO strings, so string order is calendar
    order. A stored value later than the current one means the clock went
    backwards; it is kept (not reset) so a rollback never grants quota.

    Args:
        stored: Stored identifier ("" when never written).
        current: Identifier for the clock's current day/month.
        label: Used in the rollback warning.

    Returns:
        True if the stored counters belong to an earlier period.
    """
    if stored == current:
        return False
    if stored and stored > current:
        logger.warning(f"Clock rollback detected: stored {label} {stored} is after {current}")
        return False
    return True


class UsageLedger:
    """
    Daily usage minutes against a configurable quota.

    Operates on the engine's shared state dict and lock. Negative minute
    values are rejected with ValueError and never touch the counters.
    """

    def __init__(self, data: Optional[Dict[str, Any]] = None,
                 clock: Optional[Clock] = None,
                 lock: Optional[threading.RLock] = None) -> None:
        self.data = data if data is not None else {}
        self.data.setdefault("daily_limit_minutes", config.DEFAULT_DAILY_LIMIT_MINUTES)
        self.data.setdefault("daily_used_minutes", 0)
        self.data.setdefault("last_usage_date", "")
        self.clock: Clock = clock or SystemClock()
        self._lock = lock or threading.RLock()

    def today(self) -> str:
        return self.clock.today()

    def _is_current(self) -> bool:
        return not period_is_stale(self.data["last_usage_date"], self.today(), "usage date")

    def used(self) -> int:
        """Minutes used today (0 after a day change; the reset is not persisted here)."""
        with self._lock:
            if self._is_current():
                return int(self.data["daily_used_minutes"])
            return 0

    def add_minutes(self, minutes: int) -> int:
        """
        Add usage minutes to today's total (thread-safe).

        Args:
            minutes: Minutes to add. Must be non-negative.

        Returns:
            Today's total after the addition.

        Raises:
            ValueError: If minutes is negative.
        """
        if minutes < 0:
            raise ValueError("Usage minutes must be non-negative")

        with self._lock:
            today = self.today()
            if not self._is_current():
                logger.info(f"New day detected ({self.data['last_usage_date'] or 'never'} -> {today}). "
                            f"Resetting daily usage.")
                self.data["daily_used_minutes"] = 0
                self.data["last_usage_date"] = today
            elif self.data["last_usage_date"] < today:
                self.data["last_usage_date"] = today
            self.data["daily_used_minutes"] += int(minutes)
            return self.data["daily_used_minutes"]

    def daily_limit(self) -> int:
        with self._lock:
            return int(self.data["daily_limit_minutes"])

    def set_daily_limit(self, minutes: int) -> int:
        """
        Set the daily quota, clamped to the allowed range.

        Returns:
            The limit actually applied.
        """
        clamped = max(config.MIN_DAILY_LIMIT_MINUTES, min(config.MAX_DAILY_LIMIT_MINUTES, int(minutes)))
        if clamped != minutes:
            logger.warning(f"Daily limit {minutes} out of range, clamped to {clamped}")
        with self._lock:
            self.data["daily_limit_minutes"] = clamped
        logger.info(f"Daily limit set to {clamped} minutes")
        return clamped

    def remaining(self) -> int:
        with self._lock:
            return max(0, self.daily_limit() - self.used())

    def exceeded(self) -> bool:
        with self._lock:
            return self.used() >= self.daily_limit()
