"""
Durable Actors — Type Definitions

Data structures shared by the guard, retry, single-flight and human-gate
components. Everything here is plain data; persistence lives in
actors.store and actors.scheduler.
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field, replace
from typing import Any


@dataclass(frozen=True)
class ActorRef:
    """Identity of one actor: (type tag, name). All state is scoped to it."""
    actor_type: str
    actor_id: str

    def __str__(self) -> str:
        return f"{self.actor_type}/{self.actor_id}"


# ─── Migration ──────────────────────────────────────────────────────

class MigrationStatus(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    OK = "ok"
    FAILED = "failed"


# ─── Scheduling ─────────────────────────────────────────────────────

class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    FIRED = "fired"
    CANCELLED = "cancelled"


@dataclass
class ScheduledTask:
    """A row in the durable scheduler. Actors hold only task_id."""
    task_id: str
    actor: ActorRef
    target_method: str
    not_before: float
    payload: dict[str, Any] = field(default_factory=dict)
    status: TaskStatus = TaskStatus.PENDING
    created_at: float = 0.0
    fired_at: float | None = None


@dataclass(frozen=True)
class RetryPayload:
    """
    Payload carried by each attempt of a RetryableTask.

    Frozen: a retry builds a new payload with next_attempt() rather than
    mutating the one it was invoked with.
    """
    attempt_count: int
    max_attempts: int
    base_delay_seconds: int
    business_payload: dict[str, Any] = field(default_factory=dict)

    def next_attempt(self) -> RetryPayload:
        return replace(self, attempt_count=self.attempt_count + 1)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> RetryPayload:
        return cls(
            attempt_count=int(d.get("attempt_count", 0)),
            max_attempts=int(d["max_attempts"]),
            base_delay_seconds=int(d["base_delay_seconds"]),
            business_payload=dict(d.get("business_payload") or {}),
        )


class RetryState(str, enum.Enum):
    SCHEDULED = "scheduled"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED_WILL_RETRY = "failed_will_retry"
    FAILED_ABORTED = "failed_aborted"


@dataclass
class RetryOutcome:
    """What one invocation of a RetryableTask decided."""
    state: RetryState
    attempt_count: int
    next_task_id: str | None = None
    delay_seconds: int | None = None
    error: str = ""


@dataclass
class SingleFlightState:
    outstanding_task_id: str | None = None


@dataclass
class CancelResult:
    task_id: str
    was_cancelled: bool


# ─── Human review ───────────────────────────────────────────────────

class ReviewStatus(str, enum.Enum):
    IDLE = "idle"
    PENDING_REVIEW = "pending_review"
    RUNNING = "running"
    ABORTED = "aborted"
    COMPLETED = "completed"


class ReviewOp(str, enum.Enum):
    PROCEED = "proceed"
    OVERRIDE = "override"
    ABORT = "abort"


# Valid transitions: {from_status: [valid_to_statuses]}
REVIEW_TRANSITIONS = {
    ReviewStatus.IDLE: [ReviewStatus.PENDING_REVIEW],
    ReviewStatus.PENDING_REVIEW: [ReviewStatus.RUNNING, ReviewStatus.ABORTED],
    ReviewStatus.RUNNING: [ReviewStatus.COMPLETED],
    ReviewStatus.COMPLETED: [ReviewStatus.PENDING_REVIEW],
    ReviewStatus.ABORTED: [ReviewStatus.PENDING_REVIEW],
}


@dataclass
class HumanReviewSession:
    status: ReviewStatus = ReviewStatus.IDLE
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status.value, "data": self.data}

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> HumanReviewSession:
        if not d:
            return cls()
        return cls(status=ReviewStatus(d.get("status", "idle")), data=d.get("data"))


INTERVENTION_PURPOSE = "intervention"


@dataclass
class InterventionClaims:
    """Verified contents of an intervention token."""
    actor_id: str
    actor_type: str
    purpose: str
    issued_at: int
    expires_at: int
