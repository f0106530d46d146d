#!/usr/bin/env python3
"""
HomeGate - Main Entry Point

Location-based access policy for a restricted app: blocked at home
unless an emergency override is active, with a daily usage quota and
three overrides per month.

This CLI drives the policy engine against the persisted state, standing
in for the platform glue (presence source, foreground-app monitor).

Usage:
    python main.py status
    python main.py check --lat 52.37 --lon 4.89 --wifi HomeNet
    python main.py open --home
    python main.py close
    python main.py override
    python main.py set-limit 90
    python main.py set-home --lat 52.37 --lon 4.89 --wifi HomeNet
"""

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import config
from core.clock import Clock, FrozenClock, SystemClock
from core.engine import PolicyEngine, Verdict
from presence.geofence import HomeProfile
from reporting import messages
from storage.state_store import StateStore

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format=config.LOG_FORMAT
)
logger = logging.getLogger(__name__)


def build_engine(args: argparse.Namespace) -> PolicyEngine:
    """Create an engine bound to the state file and clock chosen on the command line."""
    clock: Clock = SystemClock()
    if args.at:
        clock = FrozenClock(datetime.fromisoformat(args.at))
    store = StateStore(Path(args.state) if args.state else config.STATE_FILE)
    # Each invocation is one step of the same logical monitor, so sessions carry over
    return PolicyEngine(store=store, clock=clock, resume_session=True)


def print_status(engine: PolicyEngine) -> None:
    """Print the composed engine status."""
    status = engine.get_status()
    print("\n" + "=" * 50)
    print("HomeGate status")
    print("=" * 50)
    print(f"  Location:           {'At home' if status['at_home'] else 'Away from home'}")
    print(f"  Policy:             {status['state']}")
    print(f"  Used today:         {messages.format_minutes(status['daily_used_minutes'])}")
    print(f"  Remaining today:    {messages.format_minutes(status['daily_remaining_minutes'])}"
          f" of {messages.format_minutes(status['daily_limit_minutes'])}")
    print(f"  Overrides left:     {status['overrides_remaining']} this month")
    if status["override_active"]:
        print(f"  Override active:    {status['override_remaining_minutes']} minutes left")
    print(f"  Session active:     {'yes' if status['session_active'] else 'no'}")
    print(f"  Lifetime usage:     {messages.format_minutes(status['total_usage_minutes'])}")
    print(f"  Lifetime blocks:    {status['total_blocks_count']}")
    print(f"  Today:              {messages.daily_summary_message(status)}")
    if not status["is_fully_configured"]:
        print("  Setup incomplete:   home location, device admin and accessibility required")
    if status["tampered"]:
        print("  WARNING: state file failed its integrity check; quota locked")
    print("=" * 50)


def report_verdict(engine: PolicyEngine, verdict: Verdict) -> None:
    """Print the verdict and, when blocked, the notification text."""
    status = engine.get_status()
    if verdict is Verdict.ALLOW:
        print(f"ALLOW ({status['state']})")
        return
    print(f"BLOCK: {messages.block_message(status)}")
    if status["limit_exceeded"]:
        print(f"  {messages.limit_exceeded_message(status)}")
    label = messages.override_action_label(status)
    if label:
        print(f"  Action available: {label}")


def cmd_status(engine: PolicyEngine, args: argparse.Namespace) -> int:
    print_status(engine)
    return 0


def cmd_check(engine: PolicyEngine, args: argparse.Namespace) -> int:
    if engine.home_profile() is None:
        print("Home location not set. Run: python main.py set-home --lat LAT --lon LON")
        return 1
    was_at_home = engine.is_at_home()
    at_home = engine.update_presence(args.lat, args.lon, args.wifi)
    print(f"Presence: {'at home' if at_home else 'away from home'}")
    if at_home != was_at_home:
        print(f"  {messages.location_change_message(engine.get_status())}")
    report_verdict(engine, engine.evaluate())
    return 0


def cmd_open(engine: PolicyEngine, args: argparse.Namespace) -> int:
    presence = None
    if args.home:
        presence = True
    elif args.away:
        presence = False
    report_verdict(engine, engine.evaluate(presence))
    return 0


def cmd_close(engine: PolicyEngine, args: argparse.Namespace) -> int:
    remaining_before = engine.remaining_minutes()
    minutes = engine.app_closed()
    print(f"Session closed: {messages.format_minutes(minutes)} recorded")
    threshold = messages.time_warning_due(remaining_before, engine.remaining_minutes())
    if threshold is not None:
        print(f"  {messages.time_warning_title(engine.remaining_minutes())}")
    return 0


def cmd_override(engine: PolicyEngine, args: argparse.Namespace) -> int:
    if not engine.activate_override():
        if engine.overrides_remaining() == 0:
            print("No emergency overrides remaining this month.")
        else:
            print("An emergency override is already active.")
        return 1
    print("Emergency Override Activated")
    print(messages.override_activated_message(engine.get_status()))
    return 0


def cmd_set_limit(engine: PolicyEngine, args: argparse.Namespace) -> int:
    applied = engine.set_daily_limit(args.minutes)
    print(f"Daily limit set to {messages.format_minutes(applied)}")
    return 0


def cmd_set_home(engine: PolicyEngine, args: argparse.Namespace) -> int:
    try:
        profile = HomeProfile(latitude=args.lat, longitude=args.lon, wifi_ssid=args.wifi or "")
    except ValueError as e:
        print(f"Invalid home location: {e}")
        return 1
    engine.set_home_profile(profile)
    print(f"Home set to ({profile.latitude}, {profile.longitude})"
          + (f", Wi-Fi '{profile.wifi_ssid}'" if profile.has_wifi else ""))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="HomeGate - location-based app access policy",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py status                         Show quota, overrides and counters
  python main.py check --lat 52.37 --lon 4.89   Update presence from a fix and evaluate
  python main.py open --home                    Restricted app opened at home
  python main.py --at 2024-02-01T09:00 status   Inspect state at a given time
        """
    )
    parser.add_argument("--state", help="Path to the state file (default: %(default)s)",
                        default=None)
    parser.add_argument("--at", help="Evaluate at this ISO datetime instead of now")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Show engine status").set_defaults(func=cmd_status)

    check = sub.add_parser("check", help="Compute presence from a fix, then evaluate")
    check.add_argument("--lat", type=float, required=True)
    check.add_argument("--lon", type=float, required=True)
    check.add_argument("--wifi", default=None, help="Connected Wi-Fi network name")
    check.set_defaults(func=cmd_check)

    open_cmd = sub.add_parser("open", help="Restricted app came to the foreground")
    where = open_cmd.add_mutually_exclusive_group()
    where.add_argument("--home", action="store_true", help="Device is at home")
    where.add_argument("--away", action="store_true", help="Device is away from home")
    open_cmd.set_defaults(func=cmd_open)

    sub.add_parser("close", help="Restricted app left the foreground").set_defaults(func=cmd_close)
    sub.add_parser("override", help="Use an emergency override").set_defaults(func=cmd_override)

    limit = sub.add_parser("set-limit", help="Set the daily quota in minutes "
                           f"({config.MIN_DAILY_LIMIT_MINUTES}-{config.MAX_DAILY_LIMIT_MINUTES})")
    limit.add_argument("minutes", type=int)
    limit.set_defaults(func=cmd_set_limit)

    home = sub.add_parser("set-home", help="Configure the home location")
    home.add_argument("--lat", type=float, required=True)
    home.add_argument("--lon", type=float, required=True)
    home.add_argument("--wifi", default=None, help="Home Wi-Fi network name")
    home.set_defaults(func=cmd_set_home)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point — parses arguments and runs the chosen command.

    Returns:
        Process exit code.
    """
    args = build_parser().parse_args(argv)
    engine: Optional[PolicyEngine] = None
    try:
        engine = build_engine(args)
        return args.func(engine, args)
    except ValueError as e:
        print(f"\nError: {e}")
        return 2
    except KeyboardInterrupt:
        return 130
    finally:
        if engine is not None:
            # Queued state must reach disk before the process exits
            engine.close()


if __name__ == "__main__":
    sys.exit(main())
