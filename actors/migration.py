"""
Durable Actors — Migration Guard

Wraps an actor's one-time setup. The outcome is written to the
`migration_status` meta row:

  no row   → not yet migrated; operations are allowed
  ok       → setup succeeded; operations are allowed
  failed   → setup raised; every operation fails with InstanceLocked, forever

Setup failures are recorded, not re-raised, so the lock check keeps
working on every later call (including after a restart). There is no
unlock path.
"""

from __future__ import annotations

from typing import Any, Callable

from actors.store import ActorStore
from actors.types import ActorRef, MigrationStatus
from runtime.errors import InstanceLocked
from runtime.logging import ActorLogger

MIGRATION_STATUS_KEY = "migration_status"


class MigrationGuard:

    def __init__(self, store: ActorStore, actor: ActorRef, log: ActorLogger | None = None):
        self.store = store
        self.actor = actor
        self.log = log or ActorLogger(actor.actor_type, actor.actor_id)

    def status(self) -> MigrationStatus:
        value = self.store.get_meta(self.actor, MIGRATION_STATUS_KEY)
        if value is None:
            return MigrationStatus.UNINITIALIZED
        return MigrationStatus(value)

    def initialize(self, setup: Callable[[], Any]) -> MigrationStatus:
        """
        Run `setup` unless a status is already persisted.

        Returns the resulting status. Never raises for a setup failure.
        """
        current = self.status()
        if current is not MigrationStatus.UNINITIALIZED:
            return current

        try:
            with self.store.atomic():
                setup()
                self.store.set_meta(self.actor, MIGRATION_STATUS_KEY, MigrationStatus.OK.value)
        except Exception as e:
            # Setup's own writes were rolled back with the transaction.
            self.store.set_meta(self.actor, MIGRATION_STATUS_KEY, MigrationStatus.FAILED.value)
            self.log.error(
                "migration.failed",
                f"MIGRATION FAILED for agent {self.actor.actor_id}: {e}",
                error=str(e)[:500],
                error_type=type(e).__name__,
            )
            return MigrationStatus.FAILED

        self.log.info("migration.ok", f"Agent {self.actor.actor_id} initialized")
        return MigrationStatus.OK

    def assert_operational(self) -> None:
        if self.status() is MigrationStatus.FAILED:
            self.log.warn("instance.locked", "Rejected call on locked instance")
            raise InstanceLocked(self.actor.actor_id)
