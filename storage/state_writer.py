"""
Background state writer for HomeGate.

A single daemon thread owns all disk writes for an engine. Callers hand
over a snapshot with submit() and return immediately; snapshots that
arrive while a write is in progress are coalesced, so only the newest
one is written next.
"""

import logging
import threading
from typing import Any, Dict, Optional

from storage.state_store import StateStore

logger = logging.getLogger(__name__)


class StateWriter:
    """Writes the latest submitted state snapshot on a background thread."""

    def __init__(self, store: StateStore) -> None:
        self.store = store
        self._cond = threading.Condition()
        self._pending: Optional[Dict[str, Any]] = None
        self._busy = False
        self._closed = False
        self._thread = threading.Thread(target=self._run, name="state-writer", daemon=True)
        self._thread.start()

    def submit(self, snapshot: Dict[str, Any]) -> None:
        """Queue a snapshot for writing, replacing any not yet written."""
        with self._cond:
            if self._closed:
                logger.warning("State writer closed, saving synchronously")
                self._save(snapshot)
                return
            self._pending = snapshot
            self._cond.notify_all()

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until every submitted snapshot has been written.

        Returns:
            True if the writer went idle within the timeout.
        """
        with self._cond:
            return self._cond.wait_for(
                lambda: self._pending is None and not self._busy, timeout)

    def close(self, timeout: Optional[float] = None) -> None:
        """Write any pending snapshot, then stop the thread."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()
        self._thread.join(timeout)

    def _run(self) -> None:
        while True:
            with self._cond:
                while self._pending is None and not self._closed:
                    self._cond.wait()
                if self._pending is None:
                    return
                snapshot, self._pending = self._pending, None
                self._busy = True
            try:
                self._save(snapshot)
            finally:
                with self._cond:
                    self._busy = False
                    self._cond.notify_all()

    def _save(self, snapshot: Dict[str, Any]) -> None:
        try:
            if not self.store.save(snapshot):
                logger.warning("State not persisted; in-memory state remains authoritative")
        except Exception as e:
            logger.error(f"State writer error: {e}")
