"""
Durable Actors — Scheduler Pump Tests
"""

import os
import sys
import time
import unittest

_base = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _base)

from support import FakeClock, make_runtime

from api.models import PumpStats
from api.worker import InlinePump, ThreadPump, create_pump


class TestInlinePump(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.rt = make_runtime(self.clock)
        self.pump = InlinePump(self.rt)

    def test_nothing_due(self):
        self.rt.call("schedule_manager", "acct", "schedule", {"to": "a@b.c"})
        self.assertEqual(self.pump.tick(), 0)
        self.assertEqual(self.pump.stats.ticks, 1)
        self.assertEqual(self.pump.stats.fired, 0)

    def test_fires_due_follow_up(self):
        self.rt.call("schedule_manager", "acct", "schedule", {"to": "a@b.c"})
        self.clock.advance(self.rt.settings.follow_up_delay_seconds)
        self.assertEqual(self.pump.tick(), 1)
        self.assertEqual(self.pump.stats.fired, 1)
        state = self.rt.call("schedule_manager", "acct", "get_state")
        self.assertIsNone(state["followUpTaskId"])
        self.assertEqual(self.rt.scheduler.stats()["fired"], 1)

    def test_explicit_now(self):
        self.rt.call("schedule_manager", "acct", "schedule")
        due_at = self.clock.now + self.rt.settings.follow_up_delay_seconds
        self.assertEqual(self.pump.tick(now=due_at), 1)

    def test_counts_failures(self):
        def boom(task):
            raise RuntimeError("store unavailable")

        self.rt.call("schedule_manager", "acct", "schedule")
        self.clock.advance(self.rt.settings.follow_up_delay_seconds)
        self.rt.fire = boom
        with self.assertLogs("durable_actors.worker", level="ERROR"):
            self.pump.tick()
        self.assertEqual(self.pump.stats.failed, 1)
        self.assertEqual(self.pump.stats.fired, 0)


class TestThreadPump(unittest.TestCase):

    def test_background_loop_fires(self):
        clock = FakeClock()
        rt = make_runtime(clock)
        rt.call("schedule_manager", "acct", "schedule")
        clock.advance(rt.settings.follow_up_delay_seconds)

        pump = ThreadPump(rt, poll_seconds=0.01, max_workers=2)
        pump.start()
        try:
            deadline = time.time() + 5
            while pump.stats.fired < 1 and time.time() < deadline:
                time.sleep(0.01)
        finally:
            pump.shutdown()

        self.assertEqual(pump.stats.fired, 1)
        self.assertGreaterEqual(pump.stats.ticks, 1)
        self.assertEqual(rt.scheduler.stats()["pending"], 0)

    def test_start_is_idempotent(self):
        pump = ThreadPump(make_runtime(), poll_seconds=0.01)
        pump.start()
        thread = pump._thread
        pump.start()
        self.assertIs(pump._thread, thread)
        pump.shutdown()
        self.assertIsNone(pump._thread)


class TestCreatePump(unittest.TestCase):

    def setUp(self):
        self.rt = make_runtime()

    def test_inline(self):
        self.assertIsInstance(create_pump(self.rt, mode="inline"), InlinePump)

    def test_arq_uses_inline(self):
        self.assertIsInstance(create_pump(self.rt, mode="arq"), InlinePump)

    def test_thread_uses_settings(self):
        pump = create_pump(self.rt, mode="thread")
        try:
            self.assertIsInstance(pump, ThreadPump)
            self.assertEqual(pump.poll_seconds, self.rt.settings.scheduler_poll_seconds)
        finally:
            pump.shutdown()

    def test_env_selects_mode(self):
        os.environ["DA_PUMP_MODE"] = "inline"
        try:
            self.assertIsInstance(create_pump(self.rt), InlinePump)
        finally:
            del os.environ["DA_PUMP_MODE"]

    def test_unknown_mode(self):
        with self.assertRaises(ValueError):
            create_pump(self.rt, mode="celery")


class TestPumpStats(unittest.TestCase):

    def test_to_dict(self):
        stats = PumpStats(ticks=2, fired=1)
        self.assertEqual(stats.to_dict(), {"ticks": 2, "fired": 1, "failed": 0, "last_tick_at": 0.0})


if __name__ == "__main__":
    unittest.main()
