"""Session tracking for time spent in the restricted app."""

import logging
import threading
from datetime import datetime
from typing import Any, Dict, Optional

from core.clock import Clock, SystemClock, elapsed_minutes
from tracking.usage_ledger import UsageLedger

logger = logging.getLogger(__name__)


class SessionTracker:
    """
    Tracks the single in-progress usage session.

    end() is the only path that commits usage minutes. A session that is
    never ended (process killed) loses its partial minutes.
    """

    def __init__(self, ledger: UsageLedger,
                 data: Optional[Dict[str, Any]] = None,
                 clock: Optional[Clock] = None,
                 lock: Optional[threading.RLock] = None) -> None:
        """
        Args:
            ledger: Daily ledger that receives committed minutes.
            data: Shared state dict (session fields and lifetime total).
            clock: Time source; defaults to the system clock.
            lock: Shared engine lock.
        """
        self.ledger = ledger
        self.data = data if data is not None else {}
        self.data.setdefault("session_active", False)
        self.data.setdefault("session_start_time", None)
        self.data.setdefault("total_usage_minutes", 0)
        self.clock: Clock = clock or SystemClock()
        self._lock = lock or threading.RLock()

    def is_active(self) -> bool:
        with self._lock:
            return bool(self.data["session_active"])

    def start(self) -> bool:
        """
        Start a session (no-op if one is already active).

        Returns:
            True if a new session was started.
        """
        with self._lock:
            if self.data["session_active"]:
                return False
            start_time = self.clock.now()
            self.data["session_active"] = True
            self.data["session_start_time"] = start_time.isoformat()
        logger.info(f"Session started at {start_time.strftime('%I:%M %p')}")
        return True

    def end(self) -> int:
        """
        End the active session and commit its whole minutes.

        Returns:
            Elapsed minutes committed (0 if no session was active).
        """
        with self._lock:
            if not self.data["session_active"]:
                return 0

            start_time = self._start_time()
            now = self.clock.now()
            if start_time is None:
                logger.warning("Active session had no valid start time; committing nothing")
                minutes = 0
            else:
                if now < start_time:
                    logger.warning(f"Clock moved backwards during session "
                                   f"(start={start_time.isoformat()}, now={now.isoformat()})")
                minutes = elapsed_minutes(start_time, now)

            self.ledger.add_minutes(minutes)
            self.data["total_usage_minutes"] += minutes
            self.clear()

        logger.info(f"Session ended. Duration: {minutes}m")
        return minutes

    def clear(self) -> None:
        """Drop the session without committing anything."""
        with self._lock:
            self.data["session_active"] = False
            self.data["session_start_time"] = None

    def total_usage_minutes(self) -> int:
        with self._lock:
            return int(self.data["total_usage_minutes"])

    def _start_time(self) -> Optional[datetime]:
        raw = self.data.get("session_start_time")
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw)
        except (TypeError, ValueError):
            logger.warning(f"Malformed session start time: {raw!r}")
            return None
