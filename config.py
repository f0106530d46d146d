"""Configuration settings for HomeGate."""

import os
from pathlib import Path
from dotenv import load_dotenv


def _env_flag(name: str, default: str = "") -> bool:
    """Read a boolean flag from the environment ("true", "1", "yes")."""
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def get_user_data_dir() -> Path:
    """
    Get the directory for user-writable data (persisted engine state).

    HOMEGATE_DATA_DIR overrides the location; otherwise data lives in
    a "data" folder next to this file.

    Returns:
        Path to the user data directory.
    """
    override = os.getenv("HOMEGATE_DATA_DIR", "")
    if override:
        return Path(override).expanduser()
    return Path(__file__).parent / "data"


# Explicitly load from the project root (where config.py lives)
# This ensures .env is found regardless of current working directory
_env_path = Path(__file__).parent / ".env"
load_dotenv(_env_path)

# User data directory (for writable data like the engine state)
USER_DATA_DIR = get_user_data_dir()
STATE_FILE = USER_DATA_DIR / "homegate_state.json"

# Restricted application (package id reported by the foreground monitor)
RESTRICTED_APP_PACKAGE = os.getenv("HOMEGATE_RESTRICTED_APP", "com.instagram.android")
RESTRICTED_APP_NAME = os.getenv("HOMEGATE_RESTRICTED_APP_NAME", "Instagram")

# Daily usage quota (minutes)
DEFAULT_DAILY_LIMIT_MINUTES = 120  # 2 hours
MIN_DAILY_LIMIT_MINUTES = 30
MAX_DAILY_LIMIT_MINUTES = 240

# Emergency overrides
MONTHLY_OVERRIDE_LIMIT = 3  # per calendar month
OVERRIDE_DURATION_MINUTES = 60  # 1 hour of access per override

# Home geofence
HOME_RADIUS_METERS = 50.0
LOCATION_UPDATE_INTERVAL = 30  # Seconds between location fixes
FASTEST_UPDATE_INTERVAL = 15  # Seconds, lower bound for bursty fixes

# Product decision: at home, the daily quota does NOT grant access by itself.
# Only an active emergency override does. Flip this to let remaining quota
# allow the app at home.
ALLOW_AT_HOME_UNDER_QUOTA = _env_flag("HOMEGATE_ALLOW_UNDER_QUOTA")

# Notifications
# Warn when remaining daily minutes drop to each of these thresholds
TIME_WARNING_THRESHOLDS = [30, 15, 5]
MIN_NOTIFICATION_INTERVAL = 5  # Seconds between block notifications

# Persistence
STATE_SAVE_RETRIES = int(os.getenv("HOMEGATE_SAVE_RETRIES", "2"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")  # Can override in .env: DEBUG, INFO, WARNING, ERROR
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
