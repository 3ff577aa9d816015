"""
Durable Actors — Runtime

Routes calls, channel messages and scheduled firings to actor types by
(type tag, id). One runtime owns the shared database, scheduler,
connection hub and token signer.

Per identity:
  - calls are serialized under a re-entrant lock, so an actor never sees
    two of its own operations interleaved
  - the actor's `initialize` runs once per process, before its first
    operation; afterwards every entry point checks the migration guard

Usage:
    from actors.dispatch import build_runtime

    rt = build_runtime()
    rt.call("schedule_manager", "acct-42", "schedule", {})
    rt.run_due()
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Protocol

from actors.agents import ACTOR_TYPES
from actors.connections import Connection, ConnectionHub
from actors.context import ActorContext
from actors.scheduler import DurableScheduler
from actors.store import ActorStore
from actors.tokens import InterventionTokenSigner
from actors.types import ActorRef, ScheduledTask
from runtime.config import ActorSettings, get_settings
from runtime.db import DatabaseBackend, create_backend
from runtime.errors import InstanceLocked, NotFound, ValidationError
from runtime.secrets import get_secret

logger = logging.getLogger("durable_actors.runtime")

TOKEN_SECRET_NAME = "INTERVENTION_TOKEN_SECRET"


class Actor(Protocol):
    """Interface every registered actor type implements."""
    actor_class: str
    initial_state: dict[str, Any]
    public_methods: set[str]

    def initialize(self, ctx: ActorContext) -> None: ...

    def handle_call(self, ctx: ActorContext, method: str, payload: dict[str, Any]) -> Any: ...

    def on_connect(self, ctx: ActorContext, conn: Connection) -> None: ...

    def handle_message(self, ctx: ActorContext, conn: Connection, message: str) -> None: ...


class ActorRuntime:

    def __init__(
        self,
        store: ActorStore,
        scheduler: DurableScheduler,
        signer: InterventionTokenSigner,
        settings: ActorSettings | None = None,
        hub: ConnectionHub | None = None,
        actor_types: dict[str, Actor] | None = None,
    ):
        self.store = store
        self.scheduler = scheduler
        self.signer = signer
        self.settings = settings or ActorSettings()
        self.hub = hub or ConnectionHub()
        self.actor_types: dict[str, Actor] = dict(ACTOR_TYPES if actor_types is None else actor_types)

        self._locks: dict[ActorRef, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self._started: set[ActorRef] = set()

    # ─── Registry ───────────────────────────────────────────────────

    def register(self, type_tag: str, actor: Actor) -> None:
        self.actor_types[type_tag] = actor

    def ref(self, actor_type: str, actor_id: str) -> ActorRef:
        if not isinstance(actor_type, str) or actor_type not in self.actor_types:
            raise NotFound(actor_id, f"Unknown agent type: {actor_type}")
        if not isinstance(actor_id, str) or not actor_id.strip():
            raise ValidationError(actor_id or "", "Agent id must be a non-empty string")
        return ActorRef(actor_type, actor_id)

    def context(self, ref: ActorRef) -> ActorContext:
        actor = self.actor_types[ref.actor_type]
        return ActorContext(
            ref, actor.actor_class, self.store, self.scheduler,
            self.hub, self.signer, self.settings,
            initial_state=actor.initial_state,
        )

    # ─── Serialization ──────────────────────────────────────────────

    def _lock_for(self, ref: ActorRef) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(ref)
            if lock is None:
                lock = self._locks[ref] = threading.RLock()
            return lock

    @contextmanager
    def _entered(self, ref: ActorRef) -> Iterator[ActorContext]:
        """Hold the identity lock, initialize once, reject if locked."""
        with self._lock_for(ref):
            ctx = self.context(ref)
            if ref not in self._started:
                self.actor_types[ref.actor_type].initialize(ctx)
                self._started.add(ref)
            ctx.guard.assert_operational()
            yield ctx

    # ─── Entry points ───────────────────────────────────────────────

    def call(
        self,
        actor_type: str,
        actor_id: str,
        method: str,
        payload: dict[str, Any] | None = None,
        internal: bool = False,
    ) -> Any:
        """
        Invoke a method on an actor. External callers may only reach the
        type's public methods; scheduled handlers need internal=True.
        """
        ref = self.ref(actor_type, actor_id)
        actor = self.actor_types[actor_type]
        if not internal and method not in actor.public_methods:
            raise NotFound(actor_id, f"Unknown method: {method}")
        if payload is not None and not isinstance(payload, dict):
            raise ValidationError(actor_id, "Request body must be a JSON object")

        with self._entered(ref) as ctx:
            return actor.handle_call(ctx, method, payload or {})

    def connect(self, actor_type: str, actor_id: str, conn: Connection, token: str | None = None) -> None:
        """Subscribe a connection. Types with a guarded channel need a valid token."""
        ref = self.ref(actor_type, actor_id)
        if token or getattr(self.actor_types[actor_type], "channel_requires_token", False):
            self.signer.verify(token or "", ref)
        with self._entered(ref) as ctx:
            self.hub.subscribe(ref, conn)
            self.actor_types[actor_type].on_connect(ctx, conn)

    def message(self, actor_type: str, actor_id: str, conn: Connection, text: str) -> None:
        ref = self.ref(actor_type, actor_id)
        with self._entered(ref) as ctx:
            self.actor_types[actor_type].handle_message(ctx, conn, text)

    def disconnect(self, actor_type: str, actor_id: str, conn: Connection) -> None:
        self.hub.unsubscribe(ActorRef(actor_type, actor_id), conn)

    def decide(self, actor_type: str, actor_id: str, token: str, op: str,
               new_data: Any = None, has_new_data: bool = False) -> Any:
        """Out-of-band human decision, authorized by an intervention token."""
        payload: dict[str, Any] = {"token": token, "op": op}
        if has_new_data:
            payload["newData"] = new_data
        return self.call(actor_type, actor_id, "decide", payload)

    # ─── Scheduled work ─────────────────────────────────────────────

    def fire(self, task: ScheduledTask) -> Any:
        """
        Run one scheduled task. The claim happens under the identity lock,
        so it is ordered with any cancel issued by the actor itself; a task
        that lost to a cancel is skipped.
        """
        ref = task.actor
        with self._lock_for(ref):
            if not self.scheduler.claim(task.task_id):
                logger.debug("Skipping %s: no longer pending", task.task_id)
                return None
            if ref.actor_type not in self.actor_types:
                logger.error("Task %s targets unknown agent type %s", task.task_id, ref.actor_type)
                return None

            try:
                with self._entered(ref) as ctx:
                    ctx.log.info("task.fired", f"Firing {task.target_method}", task_id=task.task_id)
                    return self.actor_types[ref.actor_type].handle_call(
                        ctx, task.target_method, task.payload,
                    )
            except InstanceLocked:
                logger.warning("Dropped %s: %s is locked", task.task_id, ref)
                return None

    def run_due(self, now: float | None = None, limit: int = 100) -> int:
        """Fire every due task. Returns how many were dispatched."""
        fired = 0
        for task in self.scheduler.due(now, limit):
            try:
                self.fire(task)
            except Exception as e:
                logger.exception("Scheduled task %s failed: %s", task.task_id, e)
            fired += 1
        return fired

    def close(self) -> None:
        self.store.db.close()


def build_runtime(
    settings: ActorSettings | None = None,
    db: DatabaseBackend | None = None,
    clock: Callable[[], float] = time.time,
    secret: str = "",
) -> ActorRuntime:
    """
    Wire a runtime over one shared database. The signing key comes from
    INTERVENTION_TOKEN_SECRET; without it an ephemeral key is generated
    and tokens do not survive a restart.
    """
    settings = settings or get_settings()
    db = db or create_backend(path=settings.db_path)

    secret = secret or get_secret(TOKEN_SECRET_NAME)
    if not secret:
        logger.warning("%s not set; using an ephemeral signing key", TOKEN_SECRET_NAME)
        secret = secrets.token_hex(32)

    return ActorRuntime(
        store=ActorStore(db, clock=clock),
        scheduler=DurableScheduler(db, clock=clock),
        signer=InterventionTokenSigner(secret, settings.intervention_ttl_seconds, clock=clock),
        settings=settings,
    )
