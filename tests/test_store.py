"""
Durable Actors — State Store and Scheduler Tests

Tests:
  - state blob load/commit, scoped per identity
  - meta rows, record append/query/replace
  - scheduled tasks: due ordering, cancel/claim single winner
  - everything survives reopening the database file
"""

import os
import sys
import tempfile
import unittest

_base = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _base)

from support import FakeClock

from actors.scheduler import DurableScheduler
from actors.store import ActorStore
from actors.types import ActorRef, TaskStatus
from runtime.db import SQLiteBackend

ALICE = ActorRef("migrating", "alice")
BOB = ActorRef("migrating", "bob")


class TestStateBlob(unittest.TestCase):

    def setUp(self):
        self.store = ActorStore(SQLiteBackend(":memory:"))

    def test_missing_state_is_none(self):
        self.assertIsNone(self.store.get_state(ALICE))

    def test_set_and_get(self):
        self.store.set_state(ALICE, {"follow_up_task_id": "task_1"})
        self.assertEqual(self.store.get_state(ALICE), {"follow_up_task_id": "task_1"})

    def test_overwrite_bumps_version(self):
        self.store.set_state(ALICE, {"n": 1})
        self.store.set_state(ALICE, {"n": 2})
        row = self.store.db.fetchone(
            "SELECT version FROM actor_state WHERE actor_type = ? AND actor_id = ?",
            (ALICE.actor_type, ALICE.actor_id),
        )
        self.assertEqual(row["version"], 2)
        self.assertEqual(self.store.get_state(ALICE), {"n": 2})

    def test_identities_isolated(self):
        self.store.set_state(ALICE, {"who": "alice"})
        self.assertIsNone(self.store.get_state(BOB))
        self.assertIsNone(self.store.get_state(ActorRef("review", "alice")))

    def test_atomic_rolls_back(self):
        with self.assertRaises(RuntimeError):
            with self.store.atomic():
                self.store.set_state(ALICE, {"half": True})
                raise RuntimeError("crash mid-update")
        self.assertIsNone(self.store.get_state(ALICE))


class TestMetaAndRecords(unittest.TestCase):

    def setUp(self):
        self.store = ActorStore(SQLiteBackend(":memory:"))

    def test_meta_upsert(self):
        self.assertIsNone(self.store.get_meta(ALICE, "migration_status"))
        self.store.set_meta(ALICE, "migration_status", "ok")
        self.store.set_meta(ALICE, "migration_status", "failed")
        self.assertEqual(self.store.get_meta(ALICE, "migration_status"), "failed")

    def test_append_and_query(self):
        self.store.append(ALICE, "user", {"id": "u2", "name": "Zed"}, key="u2")
        self.store.append(ALICE, "user", {"id": "u1", "name": "Amy"}, key="u1")
        self.assertEqual([u["id"] for u in self.store.query(ALICE, "user", order_by_key=True)],
                         ["u1", "u2"])
        self.assertEqual(self.store.query(BOB, "user"), [])

    def test_has_record(self):
        self.store.append(ALICE, "user", {"id": "u1"}, key="u1")
        self.assertTrue(self.store.has_record(ALICE, "user", "u1"))
        self.assertFalse(self.store.has_record(ALICE, "user", "u2"))
        self.assertFalse(self.store.has_record(BOB, "user", "u1"))

    def test_unkeyed_records_allowed_repeatedly(self):
        self.store.append(ALICE, "followup", {"n": 1})
        self.store.append(ALICE, "followup", {"n": 2})
        self.assertEqual(len(self.store.query(ALICE, "followup")), 2)

    def test_replace_records(self):
        self.store.append(ALICE, "user", {"id": "u1"}, key="u1")
        self.store.append(ALICE, "user", {"id": "u2"}, key="u2")
        n = self.store.replace_records(ALICE, "user", lambda u: {**u, "email": None})
        self.assertEqual(n, 2)
        self.assertTrue(all("email" in u for u in self.store.query(ALICE, "user")))


class TestDurableScheduler(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.sched = DurableScheduler(SQLiteBackend(":memory:"), clock=self.clock)

    def test_schedule_returns_pending_task(self):
        tid = self.sched.schedule(ALICE, 10, "send_follow_up", {"x": 1})
        task = self.sched.get(tid)
        self.assertEqual(task.status, TaskStatus.PENDING)
        self.assertEqual(task.actor, ALICE)
        self.assertEqual(task.target_method, "send_follow_up")
        self.assertEqual(task.payload, {"x": 1})
        self.assertEqual(task.not_before, self.clock.now + 10)

    def test_negative_delay_rejected(self):
        with self.assertRaises(ValueError):
            self.sched.schedule(ALICE, -1, "m")

    def test_due_respects_not_before(self):
        later = self.sched.schedule(ALICE, 100, "m")
        sooner = self.sched.schedule(BOB, 10, "m")
        self.assertEqual(self.sched.due(), [])
        self.clock.advance(10)
        self.assertEqual([t.task_id for t in self.sched.due()], [sooner])
        self.clock.advance(90)
        self.assertEqual([t.task_id for t in self.sched.due()], [sooner, later])

    def test_cancel_pending(self):
        tid = self.sched.schedule(ALICE, 10, "m")
        self.assertTrue(self.sched.cancel(tid))
        self.assertEqual(self.sched.get(tid).status, TaskStatus.CANCELLED)
        self.clock.advance(10)
        self.assertEqual(self.sched.due(), [])

    def test_cancel_twice(self):
        tid = self.sched.schedule(ALICE, 10, "m")
        self.assertTrue(self.sched.cancel(tid))
        self.assertFalse(self.sched.cancel(tid))

    def test_cancel_unknown(self):
        self.assertFalse(self.sched.cancel("task_missing"))

    def test_claim_then_cancel_fails(self):
        tid = self.sched.schedule(ALICE, 0, "m")
        self.assertTrue(self.sched.claim(tid))
        self.assertFalse(self.sched.cancel(tid))
        task = self.sched.get(tid)
        self.assertEqual(task.status, TaskStatus.FIRED)
        self.assertEqual(task.fired_at, self.clock.now)

    def test_cancel_then_claim_fails(self):
        tid = self.sched.schedule(ALICE, 0, "m")
        self.assertTrue(self.sched.cancel(tid))
        self.assertFalse(self.sched.claim(tid))

    def test_claim_once(self):
        tid = self.sched.schedule(ALICE, 0, "m")
        self.assertTrue(self.sched.claim(tid))
        self.assertFalse(self.sched.claim(tid))

    def test_pending_for_and_stats(self):
        a = self.sched.schedule(ALICE, 5, "m")
        self.sched.schedule(BOB, 5, "m")
        self.sched.cancel(self.sched.schedule(ALICE, 5, "m"))
        self.assertEqual([t.task_id for t in self.sched.pending_for(ALICE)], [a])
        self.assertEqual(self.sched.stats(), {"pending": 2, "fired": 0, "cancelled": 1})


class TestSurvivesRestart(unittest.TestCase):

    def test_state_and_tasks_persist(self):
        path = os.path.join(tempfile.mkdtemp(), "actors.db")
        db = SQLiteBackend(path)
        store, sched = ActorStore(db), DurableScheduler(db)
        store.set_state(ALICE, {"follow_up_task_id": "placeholder"})
        store.set_meta(ALICE, "migration_status", "failed")
        tid = sched.schedule(ALICE, 3600, "send_follow_up")
        db.close()

        db2 = SQLiteBackend(path)
        store2, sched2 = ActorStore(db2), DurableScheduler(db2)
        self.assertEqual(store2.get_state(ALICE), {"follow_up_task_id": "placeholder"})
        self.assertEqual(store2.get_meta(ALICE, "migration_status"), "failed")
        self.assertEqual(sched2.get(tid).status, TaskStatus.PENDING)
        db2.close()


if __name__ == "__main__":
    unittest.main()
