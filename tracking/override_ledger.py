"""
Emergency override ledger for HomeGate.

A small monthly pool of overrides, each granting a fixed window of
access. Month rollover and override expiry are both discovered lazily
on read; there is no alarm or timer thread.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Dict, Optional

import config
from core.clock import Clock, SystemClock, elapsed_minutes
from tracking.usage_ledger import period_is_stale

logger = logging.getLogger(__name__)


class OverrideLedger:
    """
    Monthly override quota and the lifecycle of the single active override.

    Reads of the active flag may clear it (expiry), so every access goes
    through the shared engine lock.
    """

    def __init__(self, data: Optional[Dict[str, Any]] = None,
                 clock: Optional[Clock] = None,
                 lock: Optional[threading.RLock] = None) -> None:
        self.data = data if data is not None else {}
        self.data.setdefault("overrides_used", 0)
        self.data.setdefault("override_month", "")
        self.data.setdefault("override_active", False)
        self.data.setdefault("override_start_time", None)
        self.clock: Clock = clock or SystemClock()
        self._lock = lock or threading.RLock()
        self.monthly_limit: int = config.MONTHLY_OVERRIDE_LIMIT
        self.duration_minutes: int = config.OVERRIDE_DURATION_MINUTES

    def current_month(self) -> str:
        return self.clock.current_month()

    def _is_current_month(self) -> bool:
        return not period_is_stale(self.data["override_month"], self.current_month(), "override month")

    def used(self) -> int:
        """Overrides used this month (0 after a month change)."""
        with self._lock:
            if self._is_current_month():
                return int(self.data["overrides_used"])
            return 0

    def remaining(self) -> int:
        with self._lock:
            return max(0, self.monthly_limit - self.used())

    def can_activate(self) -> bool:
        with self._lock:
            return self.remaining() > 0

    def activate(self) -> bool:
        """
        Activate an emergency override (thread-safe).

        Refused when this month's pool is empty or an override is already
        running; a refusal consumes nothing.

        Returns:
            True if the override was activated.
        """
        with self._lock:
            if not self.can_activate():
                logger.warning("Emergency override refused: no overrides remaining this month")
                return False
            if self.is_active():
                logger.warning("Emergency override refused: an override is already active")
                return False

            month = self.current_month()
            if not self._is_current_month():
                logger.info(f"New month detected ({self.data['override_month'] or 'never'} -> {month}). "
                            f"Resetting emergency overrides.")
                self.data["overrides_used"] = 0
                self.data["override_month"] = month
            elif self.data["override_month"] < month:
                self.data["override_month"] = month

            now = self.clock.now()
            self.data["overrides_used"] += 1
            self.data["override_active"] = True
            self.data["override_start_time"] = now.isoformat()
            remaining = self.remaining()

        logger.info(f"Emergency override activated for {self.duration_minutes} minutes "
                    f"({remaining} remaining this month)")
        return True

    def _elapsed(self) -> Optional[int]:
        """Minutes since the active override started, None if the start is unknown."""
        raw = self.data.get("override_start_time")
        if not raw:
            return None
        try:
            start = datetime.fromisoformat(raw)
        except (TypeError, ValueError):
            logger.warning(f"Malformed override start time: {raw!r}")
            return None
        return elapsed_minutes(start, self.clock.now())

    def _expire(self) -> None:
        self.data["override_active"] = False
        self.data["override_start_time"] = None

    def is_active(self) -> bool:
        """
        Whether an override is currently granting access.

        Discovering expiry clears the override as a side effect.
        """
        with self._lock:
            if not self.data["override_active"]:
                return False
            elapsed = self._elapsed()
            if elapsed is None or elapsed >= self.duration_minutes:
                self._expire()
                logger.info("Emergency override expired")
                return False
            return True

    def remaining_active_minutes(self) -> int:
        with self._lock:
            if not self.is_active():
                return 0
            return max(0, self.duration_minutes - (self._elapsed() or 0))
