"""
Durable Actors — Migration Guard Tests

Tests:
  - setup runs once; status persisted as ok
  - failed setup is recorded (not raised) and its writes are rolled back
  - a locked instance rejects every operation, including after a restart
  - MigratingActor: v1/v2 migrations, add_user validation and duplicates
"""

import os
import sys
import tempfile
import unittest

_base = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _base)

from support import make_runtime

from actors.agents import MigratingActor
from actors.migration import MIGRATION_STATUS_KEY, MigrationGuard
from actors.store import ActorStore
from actors.types import ActorRef, MigrationStatus
from runtime.db import SQLiteBackend
from runtime.errors import Conflict, InstanceLocked, ValidationError

ALICE = ActorRef("migrating", "alice")


class TestMigrationGuard(unittest.TestCase):

    def setUp(self):
        self.store = ActorStore(SQLiteBackend(":memory:"))
        self.guard = MigrationGuard(self.store, ALICE)

    def test_uninitialized_is_operational(self):
        self.assertIs(self.guard.status(), MigrationStatus.UNINITIALIZED)
        self.guard.assert_operational()

    def test_success_persists_ok(self):
        calls = []
        self.assertIs(self.guard.initialize(lambda: calls.append(1)), MigrationStatus.OK)
        self.assertEqual(self.store.get_meta(ALICE, MIGRATION_STATUS_KEY), "ok")
        self.guard.assert_operational()
        self.assertEqual(calls, [1])

    def test_setup_runs_once(self):
        calls = []
        self.guard.initialize(lambda: calls.append(1))
        self.guard.initialize(lambda: calls.append(2))
        self.assertEqual(calls, [1])

    def test_failure_recorded_not_raised(self):
        def setup():
            raise RuntimeError("bad migration")
        self.assertIs(self.guard.initialize(setup), MigrationStatus.FAILED)
        self.assertEqual(self.store.get_meta(ALICE, MIGRATION_STATUS_KEY), "failed")

    def test_failed_setup_writes_rolled_back(self):
        def setup():
            self.store.append(ALICE, "user", {"id": "half"}, key="half")
            raise RuntimeError("bad migration")
        self.guard.initialize(setup)
        self.assertEqual(self.store.query(ALICE, "user"), [])

    def test_locked_rejects(self):
        self.guard.initialize(lambda: 1 / 0)
        with self.assertRaises(InstanceLocked) as cm:
            self.guard.assert_operational()
        self.assertIn("alice", cm.exception.message)

    def test_failed_never_retried(self):
        self.guard.initialize(lambda: 1 / 0)
        self.assertIs(self.guard.initialize(lambda: None), MigrationStatus.FAILED)
        with self.assertRaises(InstanceLocked):
            self.guard.assert_operational()

    def test_other_identity_unaffected(self):
        self.guard.initialize(lambda: 1 / 0)
        MigrationGuard(self.store, ActorRef("migrating", "bob")).assert_operational()


def _failing_v2(ctx):
    raise RuntimeError("Simulated failure in migration v2")


class _BrokenMigratingActor(MigratingActor):
    """Second migration raises, as a bad schema change would."""
    migrations = [MigratingActor.migrations[0], (2, _failing_v2)]


class TestLockSurvivesRestart(unittest.TestCase):

    def setUp(self):
        self.path = os.path.join(tempfile.mkdtemp(), "actors.db")

    def test_locked_after_restart(self):
        rt = make_runtime(path=self.path)
        rt.register("migrating", _BrokenMigratingActor())
        with self.assertRaises(InstanceLocked):
            rt.call("migrating", "alice", "get_users")
        rt.close()

        # New process, healthy code: the persisted failure still locks the instance
        rt2 = make_runtime(path=self.path)
        for method, payload in (("get_users", {}), ("add_user", {"id": "u1", "name": "Amy"})):
            with self.assertRaises(InstanceLocked):
                rt2.call("migrating", "alice", method, payload)
        rt2.call("migrating", "bob", "get_users")
        rt2.close()

    def test_partial_migration_rolled_back(self):
        rt = make_runtime(path=self.path)
        rt.register("migrating", _BrokenMigratingActor())
        with self.assertRaises(InstanceLocked):
            rt.call("migrating", "alice", "get_users")
        self.assertIsNone(rt.store.get_meta(ALICE, "schema_version"))
        rt.close()


class TestMigratingActor(unittest.TestCase):

    def setUp(self):
        self.rt = make_runtime()

    def test_migrations_reach_latest(self):
        self.rt.call("migrating", "alice", "get_users")
        self.assertEqual(self.rt.store.get_meta(ALICE, "schema_version"), "2")
        self.assertEqual(self.rt.store.get_meta(ALICE, MIGRATION_STATUS_KEY), "ok")

    def test_add_and_list_users(self):
        self.rt.call("migrating", "alice", "add_user", {"id": "u2", "name": "Zed"})
        self.rt.call("migrating", "alice", "add_user",
                     {"id": "u1", "name": "Amy", "email": "amy@example.com"})
        users = self.rt.call("migrating", "alice", "get_users")
        self.assertEqual([u["id"] for u in users], ["u1", "u2"])
        self.assertEqual(users[0]["email"], "amy@example.com")
        self.assertIsNone(users[1]["email"])

    def test_duplicate_id_conflict(self):
        self.rt.call("migrating", "alice", "add_user", {"id": "u1", "name": "Amy"})
        with self.assertRaises(Conflict):
            self.rt.call("migrating", "alice", "add_user", {"id": "u1", "name": "Again"})
        self.assertEqual(len(self.rt.call("migrating", "alice", "get_users")), 1)

    def test_validation(self):
        for payload in ({"name": "No id"}, {"id": "u1"}, {"id": " ", "name": "x"},
                        {"id": "u1", "name": "x", "email": "not-an-email"}):
            with self.assertRaises(ValidationError):
                self.rt.call("migrating", "alice", "add_user", payload)
        self.assertEqual(self.rt.call("migrating", "alice", "get_users"), [])

    def test_v2_backfills_existing_users(self):
        ref = ActorRef("migrating", "carol")
        ctx = self.rt.context(ref)
        # State left behind by a v1 schema
        self.rt.store.set_meta(ref, "schema_version", "1")
        self.rt.store.append(ref, "user", {"id": "old", "name": "Legacy"}, key="old")

        MigratingActor()._migrate(ctx)
        self.assertEqual(self.rt.store.query(ref, "user"),
                         [{"id": "old", "name": "Legacy", "email": None}])
        self.assertEqual(self.rt.store.get_meta(ref, "schema_version"), "2")
        self.assertEqual(self.rt.store.get_meta(ref, "collection:user"), None)

    def test_latest_version(self):
        self.assertEqual(MigratingActor().latest_version, 2)


if __name__ == "__main__":
    unittest.main()
