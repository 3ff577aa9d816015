"""
Durable Actors — Retryable Task

A self-rescheduling unit of work. Each invocation runs the business action
once; on failure it asks the durable scheduler to invoke the same handler
again later instead of sleeping.

    scheduled → running → succeeded
                        → failed_will_retry   (new task scheduled)
                        → failed_aborted      (TaskAborted logged, nothing scheduled)

Backoff: delay = 2 ** next_attempt * base_delay_seconds, where next_attempt
is attempt_count + 1. With base 10 the retries wait 20, 40, 80, 160, 320s.

Business-action errors never escape `run()`; they become scheduling
decisions. Only the terminal abort is surfaced, as an ERROR log event and a
`task_aborted` record on the actor.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from actors.context import ActorContext
from actors.types import RetryOutcome, RetryPayload, RetryState
from runtime.errors import TaskAborted, ValidationError

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BASE_DELAY_SECONDS = 10


def backoff_delay(next_attempt: int, base_delay_seconds: int) -> int:
    return (2 ** next_attempt) * base_delay_seconds


@dataclass
class RetryPolicy:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay_seconds: int = DEFAULT_BASE_DELAY_SECONDS
    initial_delay_seconds: int = 1

    @classmethod
    def from_settings(cls, settings: Any) -> RetryPolicy:
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay_seconds=settings.retry_base_delay_seconds,
            initial_delay_seconds=settings.retry_initial_delay_seconds,
        )


class RetryableTask:
    """
    Retry protocol bound to one actor and one handler method.

    `action(business_payload, attempt_count)` performs the work and raises
    on failure. `method` is the name the scheduler invokes, which must
    route back to `run()`.
    """

    def __init__(
        self,
        ctx: ActorContext,
        method: str,
        action: Callable[[dict[str, Any], int], Any],
        policy: RetryPolicy | None = None,
        label: str = "task",
    ):
        self.ctx = ctx
        self.method = method
        self.action = action
        self.policy = policy or RetryPolicy.from_settings(ctx.settings)
        self.label = label

    def start(
        self,
        business_payload: dict[str, Any],
        max_attempts: int | None = None,
        base_delay_seconds: int | None = None,
    ) -> str:
        """Schedule the first attempt (attempt_count=0). Returns its task id."""
        max_attempts = self.policy.max_attempts if max_attempts is None else max_attempts
        base = self.policy.base_delay_seconds if base_delay_seconds is None else base_delay_seconds
        if not isinstance(max_attempts, int) or isinstance(max_attempts, bool) or max_attempts < 0:
            raise ValidationError(self.ctx.actor_id, "max_attempts must be a non-negative integer")
        if not isinstance(base, int) or isinstance(base, bool) or base < 0:
            raise ValidationError(self.ctx.actor_id, "base_delay_seconds must be a non-negative integer")

        payload = RetryPayload(
            attempt_count=0,
            max_attempts=max_attempts,
            base_delay_seconds=base,
            business_payload=business_payload,
        )
        task_id = self.ctx.schedule(self.policy.initial_delay_seconds, self.method, payload.to_dict())
        self.ctx.log.info(
            "task.scheduled", f"{self.label} scheduled",
            task_id=task_id, delay_seconds=self.policy.initial_delay_seconds,
        )
        return task_id

    def run(self, raw_payload: dict[str, Any]) -> RetryOutcome:
        """Handle one scheduler invocation."""
        payload = RetryPayload.from_dict(raw_payload)
        attempt = payload.attempt_count

        try:
            self.action(payload.business_payload, attempt)
        except Exception as e:
            return self._on_failure(payload, e)

        self.ctx.log.info(
            "TaskSucceeded", f"{self.label} succeeded on attempt #{attempt + 1}",
            attempt_count=attempt,
        )
        return RetryOutcome(state=RetryState.SUCCEEDED, attempt_count=attempt)

    def _on_failure(self, payload: RetryPayload, error: Exception) -> RetryOutcome:
        attempt = payload.attempt_count
        self.ctx.log.warn(
            "TaskFailed", f"Attempt #{attempt + 1} failed for {self.label}",
            attempt_count=attempt, error=str(error)[:500],
        )

        retry = payload.next_attempt()
        if retry.attempt_count > payload.max_attempts:
            aborted = TaskAborted(
                self.ctx.actor_id,
                f"{self.label} has failed maximum retries ({payload.max_attempts}) and is being aborted.",
                attempts=attempt,
                task=self.label,
            )
            self.ctx.log.error("TaskAborted", aborted.message, attempt_count=attempt, error=str(error)[:500])
            self.ctx.store.append(self.ctx.actor, "task_aborted", {
                **aborted.to_dict(),
                "business_payload": payload.business_payload,
                "last_error": str(error)[:500],
            })
            return RetryOutcome(
                state=RetryState.FAILED_ABORTED,
                attempt_count=attempt,
                error=str(error)[:500],
            )

        delay = backoff_delay(retry.attempt_count, payload.base_delay_seconds)
        task_id = self.ctx.schedule(delay, self.method, retry.to_dict())
        self.ctx.log.info(
            "TaskRetrying", f"Scheduling retry #{retry.attempt_count} in {delay}s.",
            attempt_count=retry.attempt_count, delay_seconds=delay, task_id=task_id,
        )
        return RetryOutcome(
            state=RetryState.FAILED_WILL_RETRY,
            attempt_count=attempt,
            next_task_id=task_id,
            delay_seconds=delay,
            error=str(error)[:500],
        )
