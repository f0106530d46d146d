"""Tests for storage/state_writer.py: background, coalescing state writes."""

import json
import sys
import tempfile
import threading
import unittest
from pathlib import Path
from unittest.mock import MagicMock

sys.path.insert(0, str(Path(__file__).parent.parent))

from storage.state_store import StateStore, create_default_state
from storage.state_writer import StateWriter


class TestStateWriter(unittest.TestCase):

    def test_submitted_state_reaches_disk(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = StateStore(Path(tmpdir) / "state.json")
            writer = StateWriter(store)
            state = create_default_state()
            state["total_blocks_count"] = 5
            writer.submit(state)
            self.assertTrue(writer.flush(5))
            self.assertEqual(json.loads(store.data_file.read_text())["total_blocks_count"], 5)
            writer.close()

    def test_snapshots_coalesce_while_a_write_is_running(self):
        started = threading.Event()
        release = threading.Event()
        written = []

        def slow_save(snapshot):
            written.append(snapshot["n"])
            started.set()
            release.wait(5)
            return True

        store = MagicMock()
        store.save.side_effect = slow_save
        writer = StateWriter(store)

        writer.submit({"n": 1})
        self.assertTrue(started.wait(5))
        writer.submit({"n": 2})
        writer.submit({"n": 3})
        release.set()

        self.assertTrue(writer.flush(5))
        self.assertEqual(written, [1, 3])
        writer.close()

    def test_close_writes_pending_snapshot(self):
        store = MagicMock()
        store.save.return_value = True
        writer = StateWriter(store)
        writer.submit({"n": 1})
        writer.close(5)
        store.save.assert_called_with({"n": 1})

    def test_save_errors_are_logged_not_raised(self):
        store = MagicMock()
        store.save.side_effect = RuntimeError("disk gone")
        writer = StateWriter(store)
        with self.assertLogs("storage.state_writer", level="ERROR"):
            writer.submit({"n": 1})
            self.assertTrue(writer.flush(5))
        writer.close()

    def test_submit_after_close_saves_inline(self):
        store = MagicMock()
        store.save.return_value = True
        writer = StateWriter(store)
        writer.close()
        writer.submit({"n": 7})
        store.save.assert_called_once_with({"n": 7})


if __name__ == "__main__":
    unittest.main()
