"""
Notification text for HomeGate.

Pure functions that turn the engine's status dict into the strings the
platform glue shows in notifications and toasts. Displaying them is the
platform's job.

The CLI prints a subset of them. monthly_reset_message() and
NotificationThrottle only make sense for a long-running monitor and are
provided for the platform glue.
"""

import time
from typing import Any, Dict, Optional

import config

APP_NAME = config.RESTRICTED_APP_NAME


def format_minutes(minutes: int) -> str:
    """
    Format a minute count as a human-readable string.

    Examples:
        >>> format_minutes(45)
        "45 mins"
        >>> format_minutes(90)
        "1 hr 30 mins"
        >>> format_minutes(120)
        "2 hrs"
    """
    total = int(minutes) if minutes >= 0 else 0
    hours, mins = divmod(total, 60)

    parts = []
    if hours > 0:
        parts.append(f"{hours} {'hr' if hours == 1 else 'hrs'}")
    if mins > 0 or hours == 0:
        parts.append(f"{mins} {'min' if mins == 1 else 'mins'}")
    return " ".join(parts)


def block_message(status: Dict[str, Any]) -> str:
    """Message shown when the restricted app is sent away."""
    at_home = status["at_home"]
    remaining = status["daily_remaining_minutes"]

    if at_home and status["limit_exceeded"]:
        return f"Daily {format_minutes(status['daily_limit_minutes'])} limit exceeded"
    if at_home and remaining > 0:
        return f"{APP_NAME} restricted at home. {remaining} minutes remaining today"
    return f"{APP_NAME} blocked at home location"


def override_action_label(status: Dict[str, Any]) -> Optional[str]:
    """Label for the "use an override" action, or None when none can be offered."""
    if status["at_home"] and status["overrides_remaining"] > 0 and not status["override_active"]:
        return f"Emergency Override ({status['overrides_remaining']} left)"
    return None


def override_activated_message(status: Dict[str, Any]) -> str:
    duration = format_minutes(config.OVERRIDE_DURATION_MINUTES)
    return (
        f"{duration} {APP_NAME} access granted. "
        f"{status['overrides_remaining']} overrides remaining this month. "
        f"{status['override_remaining_minutes']} minutes left."
    )


def limit_exceeded_message(status: Dict[str, Any]) -> str:
    """Body for the "daily limit reached" notification."""
    limit = format_minutes(status["daily_limit_minutes"])
    if status["at_home"] and status["overrides_remaining"] > 0:
        return f"{limit} limit exceeded. Use emergency override or wait until tomorrow."
    if status["at_home"]:
        return f"{limit} limit exceeded. Wait until tomorrow or go outside to use {APP_NAME}."
    return f"{limit} limit exceeded but you're away from home. {APP_NAME} is available."


def time_warning_due(previous_remaining: int, remaining: int) -> Optional[int]:
    """
    Find the warning threshold crossed between two remaining-minute readings.

    Returns:
        The smallest threshold crossed, or None if no warning is due.
    """
    crossed = [t for t in config.TIME_WARNING_THRESHOLDS if remaining <= t < previous_remaining]
    return min(crossed) if crossed else None


def time_warning_title(remaining: int) -> Optional[str]:
    if remaining <= 5:
        return f"Only {remaining} minutes left!"
    if remaining <= 15:
        return "15 Minutes Remaining"
    if remaining <= 30:
        return "30 Minutes Remaining"
    return None


def location_change_message(status: Dict[str, Any]) -> str:
    if status["at_home"]:
        return (f"{APP_NAME} restrictions active. "
                f"{status['daily_remaining_minutes']} minutes remaining today.")
    return f"{APP_NAME} restrictions lifted. You can use {APP_NAME} freely."


def monthly_reset_message() -> str:
    return (f"Emergency overrides have been reset. You now have "
            f"{config.MONTHLY_OVERRIDE_LIMIT} overrides available for this month.")


def daily_summary_message(status: Dict[str, Any]) -> str:
    return (f"Used: {status['daily_used_minutes']} minutes | "
            f"Blocks: {status['total_blocks_count']} | "
            f"Remaining: {status['daily_remaining_minutes']} minutes")


class NotificationThrottle:
    """Suppresses repeat block notifications fired in quick succession."""

    def __init__(self, min_interval: float = config.MIN_NOTIFICATION_INTERVAL,
                 time_func=time.monotonic) -> None:
        self.min_interval = min_interval
        self._time = time_func
        self._last: Optional[float] = None

    def should_notify(self) -> bool:
        now = self._time()
        if self._last is not None and now - self._last < self.min_interval:
            return False
        self._last = now
        return True
