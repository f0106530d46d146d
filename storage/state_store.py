"""
State store for HomeGate.

Persists the policy engine's flat state record as JSON.
Includes integrity protection so that hand-editing the file cannot
hand out fresh quota or overrides.
"""

import hashlib
import json
import logging
import math
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import config

logger = logging.getLogger(__name__)

# Salt for integrity hash (obfuscated to prevent easy bypass)
_INTEGRITY_SALT = b"HomeGate_v1_" + b"\x5e\x21\xb7\x0c"

# Fields covered by the integrity hash (the ones that gate access)
_PROTECTED_FIELDS = (
    "daily_limit_minutes",
    "daily_used_minutes",
    "last_usage_date",
    "overrides_used",
    "override_month",
    "override_active",
    "override_start_time",
    "total_usage_minutes",
    "total_blocks_count",
    "is_at_home",
    "home_latitude",
    "home_longitude",
    "home_wifi_ssid",
    "is_home_location_set",
)

# Period identifiers compare as strings, so they must be well-formed
_PERIOD_FORMATS = {
    "last_usage_date": "%Y-%m-%d",
    "override_month": "%Y-%m",
}

_TIMESTAMP_FIELDS = ("session_start_time", "override_start_time")

_COORDINATE_BOUNDS = {"home_latitude": 90.0, "home_longitude": 180.0}


def _coerce_value(key: str, value: Any, default: Any) -> Any:
    """
    Convert a loaded value to the type of its default.

    Raises:
        ValueError: If the value cannot stand in for the default.
    """
    if key in _TIMESTAMP_FIELDS:
        if value is None or isinstance(value, str):
            return value
        raise ValueError("expected a timestamp string or null")
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        raise ValueError("expected true/false")
    if isinstance(default, (int, float)):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("expected a number")
        if not math.isfinite(value):
            raise ValueError("expected a finite number")
        if key == "daily_limit_minutes":
            return max(config.MIN_DAILY_LIMIT_MINUTES,
                       min(config.MAX_DAILY_LIMIT_MINUTES, int(value)))
        if isinstance(default, int):
            return max(0, int(value))
        bound = _COORDINATE_BOUNDS.get(key)
        if bound is not None and abs(value) > bound:
            raise ValueError(f"outside +/-{bound}")
        return float(value)
    if isinstance(default, str):
        if not isinstance(value, str):
            raise ValueError("expected a string")
        if key in _PERIOD_FORMATS and value:
            datetime.strptime(value, _PERIOD_FORMATS[key])
        return value
    return value


def coerce_state(data: Dict[str, Any], keys=None) -> Dict[str, Any]:
    """
    Build a full state from loaded values, keeping only those that fit.

    Unknown keys are dropped. A value of the wrong type or shape falls
    back to its default and is logged.

    Args:
        data: Values read from disk.
        keys: Restrict the copy to these keys (all known keys by default).
    """
    state = create_default_state()
    for key in keys if keys is not None else state:
        if key not in data:
            continue
        try:
            state[key] = _coerce_value(key, data[key], state[key])
        except (TypeError, ValueError, OverflowError) as e:
            logger.warning(f"Invalid stored value for {key!r} ({data[key]!r}): {e}. Using default.")
    return state


def create_default_state() -> Dict[str, Any]:
    """Create the fully-zeroed state used on first run."""
    return {
        # Daily quota
        "daily_limit_minutes": config.DEFAULT_DAILY_LIMIT_MINUTES,
        "daily_used_minutes": 0,
        "last_usage_date": "",
        # Session
        "session_active": False,
        "session_start_time": None,
        # Emergency overrides
        "overrides_used": 0,
        "override_month": "",
        "override_active": False,
        "override_start_time": None,
        # Lifetime statistics
        "total_usage_minutes": 0,
        "total_blocks_count": 0,
        # Presence and home profile
        "is_at_home": False,
        "home_latitude": 0.0,
        "home_longitude": 0.0,
        "home_wifi_ssid": "",
        # Setup flags
        "is_home_location_set": False,
        "is_device_admin_enabled": False,
        "is_accessibility_service_enabled": False,
    }


class StateStore:
    """
    Loads and saves the engine state as a flat JSON record.

    The store never raises into the engine: load failures fall back to
    defaults and save failures are retried, then logged.
    """

    def __init__(self, data_file: Optional[Path] = None) -> None:
        self.data_file: Path = Path(data_file) if data_file else config.STATE_FILE
        self._tampered: bool = False
        self.save_retries: int = max(0, config.STATE_SAVE_RETRIES)

    def _compute_integrity_hash(self, data: dict) -> str:
        """
        Compute integrity hash for the access-gating fields.

        Args:
            data: State dictionary (without _integrity field).

        Returns:
            Hex string of the integrity hash.
        """
        canonical = json.dumps(
            {key: data.get(key) for key in _PROTECTED_FIELDS},
            sort_keys=True,
        )
        hash_input = _INTEGRITY_SALT + canonical.encode('utf-8')
        return hashlib.sha256(hash_input).hexdigest()[:16]

    def _verify_integrity(self, data: dict) -> bool:
        stored_hash = data.get("_integrity")
        if not stored_hash:
            # No hash yet (file written by hand or by an older build); accept it
            return True
        return stored_hash == self._compute_integrity_hash(data)

    def was_tampered(self) -> bool:
        """True if the last load failed the integrity check."""
        return self._tampered

    def load(self) -> Dict[str, Any]:
        """
        Load the persisted state.

        A missing or unreadable file yields the default state. A file that
        fails the integrity check yields a locked-down state: today's quota
        used up and this month's overrides exhausted.

        Returns:
            Flat state dictionary with every known key present.
        """
        state = create_default_state()
        if not self.data_file.exists():
            logger.debug(f"No state file at {self.data_file}, starting fresh")
            return state

        try:
            with open(self.data_file, 'r') as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("state file does not contain a JSON object")
        except (json.JSONDecodeError, ValueError, IOError, OSError) as e:
            logger.warning(f"Failed to load state from {self.data_file}: {e}. Starting fresh.")
            return state

        if not self._verify_integrity(data):
            logger.warning("State integrity check failed - possible tampering, locking down")
            self._tampered = True
            return self._locked_down_state(data)

        self._tampered = False
        data.pop("_integrity", None)
        state = coerce_state(data)
        logger.debug(f"Loaded state: {state}")
        return state

    def _locked_down_state(self, data: dict) -> Dict[str, Any]:
        """Build the state returned when the file was tampered with."""
        # Keep the home profile, setup flags and lifetime counters
        state = coerce_state(data, keys=(
            "home_latitude", "home_longitude", "home_wifi_ssid",
            "is_home_location_set", "is_device_admin_enabled",
            "is_accessibility_service_enabled",
            "total_usage_minutes", "total_blocks_count",
        ))
        # A stored location counts as configured even if the flag was cleared
        if state["home_latitude"] or state["home_longitude"] or state["home_wifi_ssid"]:
            state["is_home_location_set"] = True
        # Presumed at home until the presence source reports otherwise
        state["is_at_home"] = state["is_home_location_set"]
        # Empty dates/months are stamped with "today" by the engine on start-up
        state["daily_used_minutes"] = config.MAX_DAILY_LIMIT_MINUTES
        state["overrides_used"] = config.MONTHLY_OVERRIDE_LIMIT
        state["lockdown_pending"] = True
        return state

    def save(self, state: Dict[str, Any]) -> bool:
        """
        Save the state to disk with an integrity hash.

        Uses atomic write (write to temp file, then rename) to prevent
        data corruption if the process dies during save. Retries a
        bounded number of times before giving up.

        Returns:
            True if the state reached disk, False otherwise.
        """
        save_data = {key: value for key, value in state.items() if key != "lockdown_pending"}
        save_data["_integrity"] = self._compute_integrity_hash(save_data)

        for attempt in range(self.save_retries + 1):
            try:
                self._write_atomic(save_data)
                logger.debug("Saved state with integrity hash")
                return True
            except (IOError, OSError) as e:
                logger.error(f"Failed to save state (attempt {attempt + 1}): {e}")
        return False

    def _write_atomic(self, save_data: dict) -> None:
        # Ensure parent directory exists
        self.data_file.parent.mkdir(parents=True, exist_ok=True)

        temp_fd, temp_path = tempfile.mkstemp(
            suffix='.tmp',
            prefix='state_',
            dir=self.data_file.parent
        )
        try:
            with os.fdopen(temp_fd, 'w') as f:
                json.dump(save_data, f, indent=2)
            os.replace(temp_path, self.data_file)
        except Exception:
            # Clean up temp file on error
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise
