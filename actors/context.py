"""
Durable Actors — Actor Context

What an actor sees while handling one call: its identity, an explicit
load()/commit() pair over its state blob, its scheduler slot, its
connection subscribers and its migration guard.

State is never mutated implicitly. load() hands out a copy; commit()
persists a whole new state and returns it.
"""

from __future__ import annotations

import copy
from typing import Any

from actors.connections import ConnectionHub
from actors.migration import MigrationGuard
from actors.scheduler import DurableScheduler
from actors.store import ActorStore
from actors.tokens import InterventionTokenSigner
from actors.types import ActorRef
from runtime.config import ActorSettings
from runtime.logging import ActorLogger


class ActorContext:

    def __init__(
        self,
        actor: ActorRef,
        actor_class: str,
        store: ActorStore,
        scheduler: DurableScheduler,
        hub: ConnectionHub,
        signer: InterventionTokenSigner,
        settings: ActorSettings,
        initial_state: dict[str, Any] | None = None,
    ):
        self.actor = actor
        self.store = store
        self.scheduler = scheduler
        self.hub = hub
        self.signer = signer
        self.settings = settings
        self.log = ActorLogger(actor_class, actor.actor_id)
        self.guard = MigrationGuard(store, actor, self.log)
        self._initial_state = initial_state or {}

    @property
    def actor_id(self) -> str:
        return self.actor.actor_id

    # ─── State ───────────────────────────────────────────────────────

    def load(self) -> dict[str, Any]:
        state = self.store.get_state(self.actor)
        if state is None:
            return copy.deepcopy(self._initial_state)
        return state

    def commit(self, new_state: dict[str, Any]) -> dict[str, Any]:
        self.store.set_state(self.actor, new_state)
        return copy.deepcopy(new_state)

    # ─── Scheduling ─────────────────────────────────────────────────

    def schedule(self, delay_seconds: float, method: str, payload: dict[str, Any] | None = None) -> str:
        return self.scheduler.schedule(self.actor, delay_seconds, method, payload)

    def cancel_schedule(self, task_id: str) -> bool:
        return self.scheduler.cancel(task_id)

    # ─── Connections ────────────────────────────────────────────────

    def broadcast(self, message: dict[str, Any]) -> int:
        return self.hub.broadcast(self.actor, message)
