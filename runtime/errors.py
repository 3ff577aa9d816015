"""
Durable Actors — Error Taxonomy

Every caller-facing failure of the actor core is an ActorError subclass
carrying the actor identity, a human-readable message and a machine kind.
The HTTP layer maps `kind` to a status code; nothing here is fatal to the
process.

    ValidationError   malformed caller input, rejected before touching state
    InstanceLocked    migration previously failed, permanent
    Conflict          an outstanding single-flight task already exists
    ReviewNotPending  human decision sent while no review is pending
    NotFound          cancel requested with nothing outstanding / unknown target
    TaskAborted       retry limit exceeded (logged, never raised to callers)
    TokenInvalid      intervention token failed signature/purpose/binding/expiry
"""

from __future__ import annotations

from typing import Any


class ActorError(Exception):
    """Base class for typed actor failures."""
    kind = "actor_error"

    def __init__(self, actor_id: str = "", message: str = "", **details: Any):
        self.actor_id = actor_id
        self.details = details
        self.message = message or self.default_message()
        super().__init__(self.message)

    def default_message(self) -> str:
        return f"Actor {self.actor_id!r} failed"

    def to_dict(self) -> dict[str, Any]:
        out = {
            "error": self.kind,
            "actor_id": self.actor_id,
            "message": self.message,
        }
        if self.details:
            out["details"] = self.details
        return out


class ValidationError(ActorError):
    kind = "validation_error"

    def default_message(self) -> str:
        return "Invalid input"


class InstanceLocked(ActorError):
    """Raised on every operation once an actor's migration has failed."""
    kind = "instance_locked"

    def default_message(self) -> str:
        return f"Agent instance {self.actor_id} is locked due to a migration failure."


class Conflict(ActorError):
    kind = "conflict"

    def __init__(self, actor_id: str = "", message: str = "", task_id: str | None = None, **details: Any):
        self.task_id = task_id
        if task_id is not None:
            details.setdefault("current_task_id", task_id)
        super().__init__(actor_id, message, **details)

    def default_message(self) -> str:
        return "A follow-up is already scheduled."


class ReviewNotPending(Conflict):
    kind = "review_not_pending"

    def default_message(self) -> str:
        return "Agent is not in pending review state"


class NotFound(ActorError):
    kind = "not_found"

    def default_message(self) -> str:
        return "No task to cancel."


class TaskAborted(ActorError):
    kind = "task_aborted"

    def __init__(self, actor_id: str = "", message: str = "", attempts: int = 0, **details: Any):
        self.attempts = attempts
        super().__init__(actor_id, message, attempts=attempts, **details)

    def default_message(self) -> str:
        return f"Task aborted after {self.details.get('attempts', 0)} attempts"


class TokenInvalid(ActorError):
    kind = "token_invalid"

    def __init__(self, actor_id: str = "", message: str = "", reason: str = "", **details: Any):
        self.reason = reason
        super().__init__(actor_id, message or f"Intervention token rejected: {reason}", reason=reason, **details)


# kind → HTTP status, used by api.server
STATUS_CODES = {
    ValidationError.kind: 400,
    InstanceLocked.kind: 503,
    Conflict.kind: 409,
    ReviewNotPending.kind: 409,
    NotFound.kind: 404,
    TaskAborted.kind: 500,
    TokenInvalid.kind: 401,
}
