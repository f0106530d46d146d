"""
Tests for storage/state_store.py: atomic JSON persistence and the
integrity lockdown.
"""

import json
import sys
import tempfile
import unittest
from datetime import datetime
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.clock import FrozenClock
from core.engine import PolicyEngine, Verdict
from presence.geofence import HomeProfile
from storage.state_store import StateStore, create_default_state


class StoreTestCase(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "state.json"
        self.store = StateStore(self.path)

    def tearDown(self):
        self._tmp.cleanup()


class TestLoad(StoreTestCase):

    def test_missing_file_gives_defaults(self):
        self.assertEqual(self.store.load(), create_default_state())
        self.assertFalse(self.store.was_tampered())

    def test_corrupt_file_gives_defaults(self):
        self.path.write_text("{not json")
        self.assertEqual(self.store.load(), create_default_state())
        self.assertFalse(self.store.was_tampered())

    def test_non_object_file_gives_defaults(self):
        self.path.write_text("[1, 2, 3]")
        self.assertEqual(self.store.load(), create_default_state())

    def test_missing_keys_filled_and_unknown_dropped(self):
        self.path.write_text(json.dumps({"daily_used_minutes": 12, "legacy_key": 1}))
        state = self.store.load()
        self.assertEqual(state["daily_used_minutes"], 12)
        self.assertEqual(state["daily_limit_minutes"], 120)
        self.assertNotIn("legacy_key", state)

    def test_wrongly_typed_values_fall_back_to_defaults(self):
        self.path.write_text(json.dumps({
            "daily_used_minutes": None,
            "last_usage_date": "2024-01-15",
            "total_blocks_count": "many",
            "overrides_used": True,
            "override_month": "January",
            "override_active": "yes",
            "home_latitude": 500,
            "home_wifi_ssid": 42,
            "daily_limit_minutes": 100000,
            "total_usage_minutes": 12.9,
        }))
        with self.assertLogs("storage.state_store", level="WARNING"):
            state = self.store.load()
        self.assertEqual(state["daily_used_minutes"], 0)
        self.assertEqual(state["last_usage_date"], "2024-01-15")
        self.assertEqual(state["total_blocks_count"], 0)
        self.assertEqual(state["overrides_used"], 0)
        self.assertEqual(state["override_month"], "")
        self.assertFalse(state["override_active"])
        self.assertEqual(state["home_latitude"], 0.0)
        self.assertEqual(state["home_wifi_ssid"], "")
        self.assertEqual(state["daily_limit_minutes"], 240)
        self.assertEqual(state["total_usage_minutes"], 12)

    def test_engine_evaluates_after_loading_bad_values(self):
        self.path.write_text(json.dumps({
            "daily_used_minutes": None,
            "last_usage_date": "2024-01-15",
            "total_blocks_count": None,
        }))
        engine = PolicyEngine(store=self.store, clock=FrozenClock(datetime(2024, 1, 15, 12, 0)))
        self.assertIs(engine.evaluate(True), Verdict.BLOCK)
        self.assertEqual(engine.total_blocks_count(), 1)
        self.assertEqual(engine.remaining_minutes(), 120)
        engine.close()


class TestSave(StoreTestCase):

    def test_round_trip_with_integrity(self):
        state = create_default_state()
        state.update(daily_used_minutes=42, last_usage_date="2024-01-15", total_blocks_count=7)
        self.assertTrue(self.store.save(state))

        on_disk = json.loads(self.path.read_text())
        self.assertIn("_integrity", on_disk)

        loaded = self.store.load()
        self.assertEqual(loaded, state)
        self.assertFalse(self.store.was_tampered())

    def test_no_temp_files_left(self):
        self.store.save(create_default_state())
        leftovers = [p.name for p in self.path.parent.iterdir() if p.name.endswith(".tmp")]
        self.assertEqual(leftovers, [])

    def test_creates_parent_directory(self):
        store = StateStore(self.path.parent / "nested" / "state.json")
        self.assertTrue(store.save(create_default_state()))
        self.assertTrue(store.data_file.exists())

    def test_failed_write_is_retried_then_reported(self):
        self.store.save_retries = 2
        with patch.object(self.store, "_write_atomic", side_effect=OSError("disk full")) as write:
            self.assertFalse(self.store.save(create_default_state()))
        self.assertEqual(write.call_count, 3)


class TestTampering(StoreTestCase):

    def _tamper(self, **changes):
        data = json.loads(self.path.read_text())
        data.update(changes)
        self.path.write_text(json.dumps(data))

    def test_edited_counter_locks_down(self):
        state = create_default_state()
        state.update(daily_used_minutes=120, last_usage_date="2024-01-15",
                     overrides_used=3, override_month="2024-01",
                     total_usage_minutes=900, home_wifi_ssid="HomeNet",
                     is_home_location_set=True)
        self.store.save(state)
        self._tamper(daily_used_minutes=0, overrides_used=0)

        loaded = self.store.load()
        self.assertTrue(self.store.was_tampered())
        self.assertEqual(loaded["overrides_used"], 3)
        self.assertEqual(loaded["total_usage_minutes"], 900)
        self.assertEqual(loaded["home_wifi_ssid"], "HomeNet")
        self.assertTrue(loaded["lockdown_pending"])

    def test_engine_blocks_after_tampering(self):
        """The engine pins the locked-down counters to the current day and month."""
        clock = FrozenClock(datetime(2024, 3, 5, 12, 0))
        self.store.save(create_default_state())
        self._tamper(overrides_used=-10)

        engine = PolicyEngine(store=self.store, clock=clock)
        self.assertTrue(engine.exceeded())
        self.assertEqual(engine.overrides_remaining(), 0)
        self.assertFalse(engine.activate_override())
        self.assertIs(engine.evaluate(True), Verdict.BLOCK)
        self.assertTrue(engine.get_status()["tampered"])
        self.assertNotIn("lockdown_pending", engine.data)
        engine.close()

    def test_clearing_home_location_locks_down(self):
        """Unsetting the home profile by hand neither passes the check nor lifts the block."""
        clock = FrozenClock(datetime(2024, 3, 5, 12, 0))
        engine = PolicyEngine(store=self.store, clock=clock)
        engine.set_home_profile(HomeProfile(52.3702, 4.8952, "HomeNet"))
        self.assertIs(engine.evaluate(True), Verdict.BLOCK)
        engine.close()

        self._tamper(is_home_location_set=False)

        restarted = PolicyEngine(store=self.store, clock=clock)
        self.assertTrue(self.store.was_tampered())
        self.assertIsNotNone(restarted.home_profile())
        self.assertEqual(restarted.home_profile().wifi_ssid, "HomeNet")
        self.assertIs(restarted.evaluate(), Verdict.BLOCK)
        self.assertTrue(restarted.update_presence(wifi_ssid="HomeNet"))
        self.assertIs(restarted.evaluate(), Verdict.BLOCK)
        restarted.close()

    def test_edited_home_coordinates_lock_down(self):
        state = create_default_state()
        state.update(home_latitude=52.3702, home_longitude=4.8952, is_home_location_set=True)
        self.store.save(state)
        self._tamper(home_latitude=0.0, is_at_home=False)

        loaded = self.store.load()
        self.assertTrue(self.store.was_tampered())
        self.assertTrue(loaded["is_home_location_set"])
        self.assertTrue(loaded["is_at_home"])

    def test_hashless_file_is_trusted(self):
        self.path.write_text(json.dumps({"overrides_used": 1, "override_month": "2024-01"}))
        loaded = self.store.load()
        self.assertFalse(self.store.was_tampered())
        self.assertEqual(loaded["overrides_used"], 1)


if __name__ == "__main__":
    unittest.main()
