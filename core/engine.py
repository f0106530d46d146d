"""
PolicyEngine — access-policy engine for HomeGate.

Composes the daily usage ledger, the emergency override ledger and the
presence signal into an allow/block verdict for the restricted app.

This module has ZERO platform dependencies. The foreground-app monitor
calls evaluate() on every relevant event, the presence source calls
set_presence() / update_presence(), and enforcement happens in
callbacks outside the engine.

Callbacks:
    on_block(status: dict)
    on_verdict_change(verdict: Verdict, state: PolicyState)
"""

import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, Optional

import config
from core.clock import Clock, SystemClock
from presence.geofence import HomeProfile, is_at_home
from storage.state_store import StateStore, create_default_state
from storage.state_writer import StateWriter
from tracking.override_ledger import OverrideLedger
from tracking.session import SessionTracker
from tracking.usage_ledger import UsageLedger

logger = logging.getLogger(__name__)


class Verdict(str, Enum):
    ALLOW = "allow"
    BLOCK = "block"


class PolicyState(str, Enum):
    """Derived on every evaluation, never persisted."""

    UNRESTRICTED = "unrestricted"
    RESTRICTED_BLOCKING = "restricted_blocking"
    RESTRICTED_ALLOWED_BY_QUOTA = "restricted_allowed_by_quota"
    RESTRICTED_ALLOWED_BY_OVERRIDE = "restricted_allowed_by_override"

    @property
    def verdict(self) -> Verdict:
        if self is PolicyState.RESTRICTED_BLOCKING:
            return Verdict.BLOCK
        return Verdict.ALLOW


# Setup flag name -> state key
SETUP_FLAGS = {
    "device_admin": "is_device_admin_enabled",
    "accessibility_service": "is_accessibility_service_enabled",
}


class PolicyEngine:
    """
    Access-policy engine.

    Handles:
    - The allow/block decision and its transition side effects
    - Session accrual while the app is allowed
    - Emergency override activation
    - Daily quota configuration and the home profile
    - Write-behind persistence of the flat state record

    All state is serialised through a single re-entrant lock shared with
    the ledgers. The engine runs no timers: day/month rollover and
    override expiry are re-derived from the clock on every access.
    """

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    def __init__(self, store: Optional[StateStore] = None,
                 clock: Optional[Clock] = None,
                 state: Optional[Dict[str, Any]] = None,
                 resume_session: bool = False) -> None:
        """
        Initialise the engine from persisted state.

        Args:
            store: Persistence collaborator. None keeps state in memory only.
            clock: Time source; defaults to the local system clock.
            state: Explicit initial state (takes precedence over store.load()).
            resume_session: Keep a session found active in the loaded state.
                            Off by default: such a session belongs to a process
                            that died, and its partial minutes are dropped.
        """
        self.resume_session = resume_session
        self._lock = threading.RLock()
        self.clock: Clock = clock or SystemClock()
        self.store: Optional[StateStore] = store

        if state is not None:
            self.data: Dict[str, Any] = create_default_state()
            self.data.update(state)
        elif store is not None:
            self.data = store.load()
        else:
            self.data = create_default_state()

        self.usage = UsageLedger(self.data, self.clock, self._lock)
        self.overrides = OverrideLedger(self.data, self.clock, self._lock)
        self.session = SessionTracker(self.usage, self.data, self.clock, self._lock)

        # At home, remaining quota alone does not grant access (see config)
        self.allow_at_home_under_quota: bool = config.ALLOW_AT_HOME_UNDER_QUOTA

        self._last_verdict: Optional[Verdict] = None

        # Persistence: changed snapshots go to a single background writer
        self._writer: Optional[StateWriter] = StateWriter(store) if store is not None else None
        self._last_snapshot: Dict[str, Any] = dict(self.data)

        # ---- Callbacks (set by the platform glue) ----
        self.on_block: Optional[Callable[[Dict[str, Any]], None]] = None
        self.on_verdict_change: Optional[Callable[[Verdict, PolicyState], None]] = None

        self._recover_loaded_state()

    def _recover_loaded_state(self) -> None:
        """Normalise state left behind by a previous process."""
        changed = False
        with self._lock:
            if self.data.pop("lockdown_pending", False):
                # Tampered file: pin the exhausted counters to the current period
                self.data["last_usage_date"] = self.clock.today()
                self.data["override_month"] = self.clock.current_month()
                changed = True

            if self.data.get("session_active") and not self.resume_session:
                logger.warning("Discarding session left active by a previous process "
                               f"(started {self.data.get('session_start_time')})")
                self.session.clear()
                changed = True

            if changed:
                self._persist()

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------

    def _derive_state(self, at_home: bool) -> PolicyState:
        """Derive the policy state. Caller holds the lock."""
        exceeded = self.usage.exceeded()
        override_active = self.overrides.is_active()

        if not at_home:
            return PolicyState.UNRESTRICTED
        if override_active:
            return PolicyState.RESTRICTED_ALLOWED_BY_OVERRIDE
        if exceeded:
            return PolicyState.RESTRICTED_BLOCKING
        if self.allow_at_home_under_quota:
            return PolicyState.RESTRICTED_ALLOWED_BY_QUOTA
        # At home, under quota, no override: still blocked
        return PolicyState.RESTRICTED_BLOCKING

    def evaluate(self, presence: Optional[bool] = None) -> Verdict:
        """
        Decide whether the restricted app may be used right now.

        Called by the foreground-app monitor on every app-open or
        content-change event, and after every presence change.

        Args:
            presence: Current "at home" signal. None uses the value last
                      given to set_presence().

        Returns:
            Verdict.ALLOW or Verdict.BLOCK.
        """
        blocked_status: Optional[Dict[str, Any]] = None
        with self._lock:
            if presence is not None:
                self.data["is_at_home"] = bool(presence)
            at_home = bool(self.data["is_at_home"])

            state = self._derive_state(at_home)
            verdict = state.verdict
            previous = self._last_verdict
            self._last_verdict = verdict

            if verdict is Verdict.BLOCK and previous is not Verdict.BLOCK:
                minutes = self.session.end()
                self.data["total_blocks_count"] += 1
                logger.info(f"Blocking restricted app ({state.value}); "
                            f"committed {minutes}m, total blocks {self.data['total_blocks_count']}")
                blocked_status = self._build_status(verdict, state)
            elif verdict is Verdict.ALLOW and previous is not Verdict.ALLOW:
                self.session.start()
                logger.info(f"Allowing restricted app ({state.value})")

            self._persist()

        if verdict is not previous:
            self._notify_verdict_change(verdict, state)
        if blocked_status is not None:
            self._notify_block(blocked_status)
        return verdict

    def current_state(self) -> PolicyState:
        """Derive the policy state for the stored presence without side effects on verdicts."""
        with self._lock:
            was_active = self.data["override_active"]
            state = self._derive_state(bool(self.data["is_at_home"]))
            if was_active != self.data["override_active"]:
                self._persist()
            return state

    # ------------------------------------------------------------------
    # External mutation points
    # ------------------------------------------------------------------

    def set_presence(self, at_home: bool) -> None:
        """
        Record the latest "at home" signal.

        Triggers no verdict side effects; callers must follow up with
        evaluate() to keep enforcement timely.
        """
        with self._lock:
            changed = bool(at_home) != bool(self.data["is_at_home"])
            self.data["is_at_home"] = bool(at_home)
            if changed:
                self._persist()
        if changed:
            logger.info(f"Presence changed: {'at home' if at_home else 'away from home'}")

    def update_presence(self, latitude: Optional[float] = None,
                        longitude: Optional[float] = None,
                        wifi_ssid: Optional[str] = None) -> bool:
        """
        Compute presence from a location fix / Wi-Fi network and record it.

        Returns:
            The resulting "at home" value.
        """
        at_home = is_at_home(self.home_profile(), latitude, longitude, wifi_ssid)
        self.set_presence(at_home)
        return at_home

    def app_closed(self) -> int:
        """
        The restricted app left the foreground: end and commit the session.

        Returns:
            Minutes committed.
        """
        with self._lock:
            minutes = self.session.end()
            # Next open is a fresh event for transition purposes
            self._last_verdict = None
            self._persist()
        return minutes

    def activate_override(self) -> bool:
        """
        Activate an emergency override.

        Returns:
            True if activated; False if none remain or one is already active.
        """
        with self._lock:
            activated = self.overrides.activate()
            if activated:
                self._persist()
        return activated

    def set_daily_limit(self, minutes: int) -> int:
        """Set the daily quota (clamped). Returns the applied value."""
        with self._lock:
            applied = self.usage.set_daily_limit(minutes)
            self._persist()
        return applied

    def set_home_profile(self, profile: HomeProfile) -> None:
        """Replace the stored home profile."""
        with self._lock:
            self.data["home_latitude"] = profile.latitude
            self.data["home_longitude"] = profile.longitude
            self.data["home_wifi_ssid"] = profile.wifi_ssid
            self.data["is_home_location_set"] = True
            self._persist()
        logger.info(f"Home profile set ({profile.latitude:.5f}, {profile.longitude:.5f}, "
                    f"wifi={'yes' if profile.has_wifi else 'no'})")

    def home_profile(self) -> Optional[HomeProfile]:
        with self._lock:
            if not self.data["is_home_location_set"]:
                return None
            return HomeProfile(
                latitude=float(self.data["home_latitude"]),
                longitude=float(self.data["home_longitude"]),
                wifi_ssid=self.data["home_wifi_ssid"] or "",
            )

    def set_setup_flag(self, name: str, enabled: bool) -> None:
        """
        Record a platform setup step.

        Args:
            name: One of SETUP_FLAGS ("device_admin", "accessibility_service").

        Raises:
            ValueError: If name is not a known setup flag.
        """
        if name not in SETUP_FLAGS:
            raise ValueError(f"Unknown setup flag: {name}")
        with self._lock:
            self.data[SETUP_FLAGS[name]] = bool(enabled)
            self._persist()

    def is_fully_configured(self) -> bool:
        with self._lock:
            return bool(
                self.data["is_home_location_set"]
                and self.data["is_device_admin_enabled"]
                and self.data["is_accessibility_service_enabled"]
            )

    # ------------------------------------------------------------------
    # Status accessors
    # ------------------------------------------------------------------

    def is_at_home(self) -> bool:
        with self._lock:
            return bool(self.data["is_at_home"])

    def remaining_minutes(self) -> int:
        return self.usage.remaining()

    def exceeded(self) -> bool:
        return self.usage.exceeded()

    def overrides_remaining(self) -> int:
        return self.overrides.remaining()

    def override_remaining_minutes(self) -> int:
        with self._lock:
            was_active = self.data["override_active"]
            minutes = self.overrides.remaining_active_minutes()
            if was_active != self.data["override_active"]:
                self._persist()
            return minutes

    def total_blocks_count(self) -> int:
        with self._lock:
            return int(self.data["total_blocks_count"])

    def total_usage_minutes(self) -> int:
        return self.session.total_usage_minutes()

    def get_status(self) -> Dict[str, Any]:
        """
        Get the composed status (polled by UI and notification glue).

        Returns:
            dict with keys: at_home, verdict, state, daily_used_minutes,
            daily_remaining_minutes, daily_limit_minutes, limit_exceeded,
            overrides_used, overrides_remaining, override_active,
            override_remaining_minutes, session_active, total_usage_minutes,
            total_blocks_count, is_fully_configured, tampered.
        """
        with self._lock:
            was_active = self.data["override_active"]
            state = self._derive_state(bool(self.data["is_at_home"]))
            status = self._build_status(self._last_verdict, state)
            if was_active != self.data["override_active"]:
                self._persist()
        return status

    def _build_status(self, verdict: Optional[Verdict], state: PolicyState) -> Dict[str, Any]:
        """Caller holds the lock."""
        return {
            "at_home": bool(self.data["is_at_home"]),
            "verdict": verdict.value if verdict else None,
            "state": state.value,
            "daily_used_minutes": self.usage.used(),
            "daily_remaining_minutes": self.usage.remaining(),
            "daily_limit_minutes": self.usage.daily_limit(),
            "limit_exceeded": self.usage.exceeded(),
            "overrides_used": self.overrides.used(),
            "overrides_remaining": self.overrides.remaining(),
            "override_active": self.overrides.is_active(),
            "override_remaining_minutes": self.overrides.remaining_active_minutes(),
            "session_active": self.session.is_active(),
            "total_usage_minutes": self.session.total_usage_minutes(),
            "total_blocks_count": int(self.data["total_blocks_count"]),
            "is_fully_configured": self.is_fully_configured(),
            "tampered": self.store.was_tampered() if self.store else False,
        }

    # ------------------------------------------------------------------
    # Persistence and callbacks
    # ------------------------------------------------------------------

    def _persist(self) -> None:
        """Queue a snapshot if the state changed since the last one. Caller holds the lock."""
        if self._writer is None:
            return
        snapshot = dict(self.data)
        if snapshot == self._last_snapshot:
            return
        self._last_snapshot = snapshot
        self._writer.submit(snapshot)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued state to reach the store. True if it did within the timeout."""
        if self._writer is None:
            return True
        return self._writer.flush(timeout)

    def close(self) -> None:
        """Write any queued state and stop the background writer."""
        if self._writer is not None:
            self._writer.close()

    def _notify_block(self, status: Dict[str, Any]) -> None:
        if self.on_block:
            try:
                self.on_block(status)
            except Exception as e:
                logger.error(f"on_block callback error: {e}")

    def _notify_verdict_change(self, verdict: Verdict, state: PolicyState) -> None:
        if self.on_verdict_change:
            try:
                self.on_verdict_change(verdict, state)
            except Exception as e:
                logger.error(f"on_verdict_change callback error: {e}")
