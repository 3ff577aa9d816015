"""
Durable Actors — Actor Types

Concrete actors registered with the runtime by tag:

  migrating         versioned setup behind MigrationGuard; user records
  reminder          RetryableTask with a controllable failure count
  schedule_manager  SingleFlightScheduler follow-ups
  review            HumanGate-paused transactions

Actors hold no per-identity fields; everything goes through the
ActorContext, so one instance serves every identity of its type.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Callable

from actors.connections import Connection, send_json
from actors.context import ActorContext
from actors.human_gate import HumanGate
from actors.retry import RetryableTask
from actors.single_flight import SingleFlightScheduler
from runtime.errors import Conflict, NotFound, ValidationError


def _route(ctx: ActorContext, routes: dict[str, Callable], method: str) -> Callable:
    handler = routes.get(method)
    if handler is None:
        raise NotFound(ctx.actor_id, f"Unknown method: {method}")
    return handler


def _require_str(ctx: ActorContext, payload: dict, field: str, label: str) -> str:
    value = payload.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(ctx.actor_id, f"{label} must be a non-empty string")
    return value.strip()


def _optional_int(ctx: ActorContext, payload: dict, field: str, default: int | None) -> int | None:
    value = payload.get(field, default)
    if value is None:
        return None
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ValidationError(ctx.actor_id, f"{field} must be a non-negative integer")
    return value


class _NoChannel:
    """Mixin-free default for actors without a connection channel."""

    def on_connect(self, ctx: ActorContext, conn: Connection) -> None:
        send_json(conn, {"type": "state_update", "state": ctx.load()})

    def handle_message(self, ctx: ActorContext, conn: Connection, message: str) -> None:
        send_json(conn, {"type": "error", "message": "This agent does not accept messages"})


# ═══════════════════════════════════════════════════════════════════
# MigratingActor
# ═══════════════════════════════════════════════════════════════════

SCHEMA_VERSION_KEY = "schema_version"


def _migrate_v1(ctx: ActorContext) -> None:
    ctx.store.set_meta(ctx.actor, "collection:user", "created")


def _migrate_v2(ctx: ActorContext) -> None:
    # v2 adds the optional email field to existing users
    ctx.store.replace_records(ctx.actor, "user", lambda u: {"email": None, **u})


class MigratingActor(_NoChannel):
    actor_class = "MigratingActor"
    initial_state: dict[str, Any] = {}
    public_methods = {"add_user", "get_users"}

    migrations: list[tuple[int, Callable[[ActorContext], None]]] = [
        (1, _migrate_v1),
        (2, _migrate_v2),
    ]

    @property
    def latest_version(self) -> int:
        return max(v for v, _ in self.migrations)

    def initialize(self, ctx: ActorContext) -> None:
        ctx.guard.initialize(lambda: self._migrate(ctx))

    def _migrate(self, ctx: ActorContext) -> None:
        version = int(ctx.store.get_meta(ctx.actor, SCHEMA_VERSION_KEY) or 0)
        for target, step in self.migrations:
            if version < target:
                ctx.log.info("migration.step", f"Migrating {ctx.actor_id} from version {version} to {target}")
                step(ctx)
                ctx.store.set_meta(ctx.actor, SCHEMA_VERSION_KEY, str(target))
                version = target

    def handle_call(self, ctx: ActorContext, method: str, payload: dict[str, Any]) -> Any:
        return _route(ctx, {
            "add_user": self.add_user,
            "get_users": self.get_users,
        }, method)(ctx, payload)

    def add_user(self, ctx: ActorContext, payload: dict[str, Any]) -> dict[str, Any]:
        ctx.guard.assert_operational()
        user_id = _require_str(ctx, payload, "id", "User ID")
        name = _require_str(ctx, payload, "name", "User name")
        email = payload.get("email")
        if email is not None and (not isinstance(email, str) or "@" not in email):
            raise ValidationError(ctx.actor_id, "Email must be a valid email address")

        user = {"id": user_id, "name": name, "email": email.strip() if email else None}
        with ctx.store.atomic():
            if ctx.store.has_record(ctx.actor, "user", user_id):
                raise Conflict(ctx.actor_id, "User with this ID already exists")
            ctx.store.append(ctx.actor, "user", user, key=user_id)
        return user

    def get_users(self, ctx: ActorContext, payload: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        ctx.guard.assert_operational()
        return ctx.store.query(ctx.actor, "user", order_by_key=True)


# ═══════════════════════════════════════════════════════════════════
# ReminderActor
# ═══════════════════════════════════════════════════════════════════

class ReminderActor(_NoChannel):
    actor_class = "ReminderActor"
    initial_state: dict[str, Any] = {}
    public_methods = {"set_reminder", "history"}

    def initialize(self, ctx: ActorContext) -> None:
        ctx.guard.initialize(lambda: None)

    def _task(self, ctx: ActorContext, message: str) -> RetryableTask:
        return RetryableTask(
            ctx, "send_reminder",
            lambda body, attempt: self._deliver(ctx, body, attempt),
            label=f"Reminder '{message}'",
        )

    def _deliver(self, ctx: ActorContext, body: dict[str, Any], attempt: int) -> None:
        if attempt < int(body.get("fail_for", 0)):
            raise RuntimeError(f"Intentionally failing for test purposes. Attempt #{attempt + 1}.")
        ctx.store.append(ctx.actor, "reminder_sent", {"message": body["message"], "attempt": attempt})
        ctx.log.info("reminder.sent", f"REMINDER: {body['message']}", attempt_count=attempt)

    def handle_call(self, ctx: ActorContext, method: str, payload: dict[str, Any]) -> Any:
        return _route(ctx, {
            "set_reminder": self.set_reminder,
            "send_reminder": self.send_reminder,
            "history": self.history,
        }, method)(ctx, payload)

    def set_reminder(self, ctx: ActorContext, payload: dict[str, Any]) -> dict[str, Any]:
        message = _require_str(ctx, payload, "message", "message")
        fail_for = _optional_int(ctx, payload, "fail_for", 0)
        max_retries = _optional_int(ctx, payload, "max_retries", None)

        task_id = self._task(ctx, message).start(
            {"message": message, "fail_for": fail_for}, max_attempts=max_retries,
        )
        return {"status": "Resilient reminder set!", "taskId": task_id}

    def send_reminder(self, ctx: ActorContext, payload: dict[str, Any]) -> dict[str, Any]:
        message = (payload.get("business_payload") or {}).get("message", "")
        outcome = self._task(ctx, message).run(payload)
        return {**asdict(outcome), "state": outcome.state.value}

    def history(self, ctx: ActorContext, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        return {
            "sent": ctx.store.query(ctx.actor, "reminder_sent"),
            "aborted": ctx.store.query(ctx.actor, "task_aborted"),
        }


# ═══════════════════════════════════════════════════════════════════
# ScheduleManagerActor
# ═══════════════════════════════════════════════════════════════════

class ScheduleManagerActor(_NoChannel):
    actor_class = "ScheduleManagerActor"
    initial_state: dict[str, Any] = {"follow_up_task_id": None}
    public_methods = {"schedule", "cancel", "get_state"}

    def initialize(self, ctx: ActorContext) -> None:
        ctx.guard.initialize(lambda: None)

    def handle_call(self, ctx: ActorContext, method: str, payload: dict[str, Any]) -> Any:
        flight = SingleFlightScheduler(ctx, "send_follow_up")
        routes = {
            "schedule": lambda: {"status": "Task scheduled", "taskId": flight.schedule_follow_up(payload)},
            "cancel": lambda: self._cancel(flight),
            "send_follow_up": lambda: flight.on_fire(lambda: self._send_follow_up(ctx, payload)),
            "get_state": lambda: {"followUpTaskId": flight.state().outstanding_task_id},
        }
        return _route(ctx, routes, method)()

    def _cancel(self, flight: SingleFlightScheduler) -> dict[str, Any]:
        result = flight.cancel_follow_up()
        return {
            "status": "Task cancelled" if result.was_cancelled else "Task may have already executed",
            "taskId": result.task_id,
            "wasCancelled": result.was_cancelled,
        }

    def _send_follow_up(self, ctx: ActorContext, payload: dict[str, Any]) -> dict[str, Any]:
        ctx.store.append(ctx.actor, "followup", {"payload": payload})
        ctx.log.info("followup.sent", "Sending follow-up email")
        return {"status": "Follow-up sent"}


# ═══════════════════════════════════════════════════════════════════
# ReviewActor
# ═══════════════════════════════════════════════════════════════════

class ReviewActor:
    actor_class = "ReviewActor"
    channel_requires_token = True
    initial_state: dict[str, Any] = {"review": {"status": "idle", "data": None}}
    public_methods = {"execute_transaction", "get_state", "decide", "transactions"}

    def initialize(self, ctx: ActorContext) -> None:
        ctx.guard.initialize(lambda: None)

    def _gate(self, ctx: ActorContext) -> HumanGate:
        return HumanGate(ctx, lambda data: self._continue_transaction(ctx, data))

    def _continue_transaction(self, ctx: ActorContext, data: Any) -> None:
        ctx.log.info("review.resumed", "Continuing original task")
        ctx.store.append(ctx.actor, "transaction", {"data": data})

    def handle_call(self, ctx: ActorContext, method: str, payload: dict[str, Any]) -> Any:
        gate = self._gate(ctx)
        routes = {
            "execute_transaction": lambda: self._execute(ctx, gate, payload),
            "get_state": lambda: gate.session().to_dict(),
            "decide": lambda: gate.decide_with_token(
                payload.get("token", ""), payload.get("op", ""),
                payload.get("newData"), has_new_data="newData" in payload,
            ).to_dict(),
            "transactions": lambda: ctx.store.query(ctx.actor, "transaction"),
        }
        return _route(ctx, routes, method)()

    def _execute(self, ctx: ActorContext, gate: HumanGate, payload: dict[str, Any]) -> dict[str, Any]:
        if "data" not in payload:
            raise ValidationError(ctx.actor_id, "data is required")
        url = gate.request_review(payload["data"])
        return {"message": "Awaiting human approval.", "interventionUrl": url}

    def on_connect(self, ctx: ActorContext, conn: Connection) -> None:
        self._gate(ctx).on_connect(conn)

    def handle_message(self, ctx: ActorContext, conn: Connection, message: str) -> None:
        self._gate(ctx).handle_command(conn, message)


ACTOR_TYPES: dict[str, Any] = {
    "migrating": MigratingActor(),
    "reminder": ReminderActor(),
    "schedule_manager": ScheduleManagerActor(),
    "review": ReviewActor(),
}
