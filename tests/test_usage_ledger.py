"""
Tests for tracking/usage_ledger.py: daily quota accounting and the
lazy midnight reset.
"""

import sys
import unittest
from datetime import datetime
from pathlib import Path

# Ensure project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

import config
from core.clock import FrozenClock
from tracking.usage_ledger import UsageLedger, period_is_stale


class TestUsageLedgerSameDay(unittest.TestCase):
    """Accumulation within a single day."""

    def setUp(self):
        self.clock = FrozenClock(datetime(2024, 1, 15, 9, 0))
        self.ledger = UsageLedger(clock=self.clock)

    def test_fresh_ledger_defaults(self):
        """A new ledger has nothing used and the default limit."""
        self.assertEqual(self.ledger.used(), 0)
        self.assertEqual(self.ledger.daily_limit(), config.DEFAULT_DAILY_LIMIT_MINUTES)
        self.assertEqual(self.ledger.remaining(), 120)
        self.assertFalse(self.ledger.exceeded())

    def test_used_is_sum_of_added_minutes(self):
        for minutes in (10, 0, 25, 7):
            self.ledger.add_minutes(minutes)
            self.clock.advance(minutes=30)
        self.assertEqual(self.ledger.used(), 42)

    def test_remaining_plus_used_equals_limit(self):
        """remaining + used == limit while under the limit."""
        for minutes in (15, 30, 45):
            self.ledger.add_minutes(minutes)
            self.assertEqual(self.ledger.remaining() + self.ledger.used(),
                             self.ledger.daily_limit())

    def test_remaining_is_zero_past_limit(self):
        self.ledger.add_minutes(150)
        self.assertEqual(self.ledger.remaining(), 0)
        self.assertTrue(self.ledger.exceeded())

    def test_exceeded_at_exact_limit(self):
        self.ledger.add_minutes(119)
        self.assertFalse(self.ledger.exceeded())
        self.ledger.add_minutes(1)
        self.assertTrue(self.ledger.exceeded())

    def test_negative_minutes_rejected(self):
        """Negative input raises and leaves counters untouched."""
        self.ledger.add_minutes(10)
        with self.assertRaises(ValueError):
            self.ledger.add_minutes(-5)
        self.assertEqual(self.ledger.used(), 10)


class TestUsageLedgerRollover(unittest.TestCase):
    """Day boundary behaviour."""

    def setUp(self):
        self.clock = FrozenClock(datetime(2024, 1, 15, 23, 30))
        self.ledger = UsageLedger(clock=self.clock)

    def test_next_day_starts_fresh(self):
        self.ledger.add_minutes(100)
        self.clock.advance(minutes=31)  # 00:01 on the 16th
        self.assertEqual(self.ledger.used(), 0)
        self.ledger.add_minutes(5)
        self.assertEqual(self.ledger.used(), 5)
        self.assertEqual(self.ledger.data["last_usage_date"], "2024-01-16")

    def test_read_does_not_persist_reset(self):
        """used() on a new day reports 0 without rewriting the stored values."""
        self.ledger.add_minutes(100)
        self.clock.advance(days=1)
        self.assertEqual(self.ledger.used(), 0)
        self.assertEqual(self.ledger.data["daily_used_minutes"], 100)
        self.assertEqual(self.ledger.data["last_usage_date"], "2024-01-15")

    def test_stale_date_loaded_from_state(self):
        data = {"daily_used_minutes": 200, "last_usage_date": "2023-12-31"}
        ledger = UsageLedger(data, clock=self.clock)
        self.assertEqual(ledger.used(), 0)
        self.assertFalse(ledger.exceeded())

    def test_clock_rollback_keeps_usage(self):
        """A clock moved back a day does not hand out a fresh quota."""
        self.ledger.add_minutes(120)
        self.clock.advance(days=-1)
        self.assertEqual(self.ledger.used(), 120)
        self.assertTrue(self.ledger.exceeded())
        self.ledger.add_minutes(3)
        self.assertEqual(self.ledger.used(), 123)
        self.assertEqual(self.ledger.data["last_usage_date"], "2024-01-15")


class TestDailyLimit(unittest.TestCase):

    def setUp(self):
        self.ledger = UsageLedger(clock=FrozenClock(datetime(2024, 1, 15, 12, 0)))

    def test_limit_within_range(self):
        self.assertEqual(self.ledger.set_daily_limit(90), 90)
        self.assertEqual(self.ledger.daily_limit(), 90)

    def test_limit_clamped(self):
        self.assertEqual(self.ledger.set_daily_limit(5), 30)
        self.assertEqual(self.ledger.set_daily_limit(1000), 240)

    def test_lower_limit_can_exceed_immediately(self):
        self.ledger.add_minutes(45)
        self.ledger.set_daily_limit(30)
        self.assertTrue(self.ledger.exceeded())
        self.assertEqual(self.ledger.remaining(), 0)


class TestPeriodIsStale(unittest.TestCase):

    def test_comparisons(self):
        self.assertFalse(period_is_stale("2024-01-15", "2024-01-15"))
        self.assertTrue(period_is_stale("2024-01-14", "2024-01-15"))
        self.assertTrue(period_is_stale("", "2024-01-15"))
        self.assertFalse(period_is_stale("2024-02", "2024-01"))


if __name__ == "__main__":
    unittest.main()
