"""
Durable Actors — Single-Flight Scheduler

At most one outstanding follow-up task per actor. The id lives in the
actor's persisted state blob under `follow_up_task_id`.

  schedule_follow_up   Conflict if an id is stored, else schedule + store
  cancel_follow_up     NotFound if none; clear only when the cancel succeeded
  on_fire              clear the id before running the follow-up logic

A failed cancel leaves the id in place: the task may already have run or
be running, and the stored id has to keep saying so.
"""

from __future__ import annotations

from typing import Any, Callable

from actors.context import ActorContext
from actors.types import CancelResult, SingleFlightState
from runtime.errors import Conflict, NotFound

STATE_KEY = "follow_up_task_id"


class SingleFlightScheduler:

    def __init__(self, ctx: ActorContext, method: str, delay_seconds: float | None = None):
        self.ctx = ctx
        self.method = method
        if delay_seconds is None:
            delay_seconds = ctx.settings.follow_up_delay_seconds
        self.delay_seconds = delay_seconds

    def state(self) -> SingleFlightState:
        return SingleFlightState(outstanding_task_id=self.ctx.load().get(STATE_KEY))

    def _store(self, task_id: str | None) -> None:
        state = self.ctx.load()
        state[STATE_KEY] = task_id
        self.ctx.commit(state)

    def schedule_follow_up(self, payload: dict[str, Any] | None = None) -> str:
        with self.ctx.store.atomic():
            current = self.state().outstanding_task_id
            if current:
                raise Conflict(self.ctx.actor_id, task_id=current)
            task_id = self.ctx.schedule(self.delay_seconds, self.method, payload or {})
            self._store(task_id)

        self.ctx.log.info(
            "task.scheduled", "Follow-up task scheduled",
            task_id=task_id, delay_seconds=self.delay_seconds,
        )
        return task_id

    def cancel_follow_up(self) -> CancelResult:
        with self.ctx.store.atomic():
            task_id = self.state().outstanding_task_id
            if not task_id:
                raise NotFound(self.ctx.actor_id)
            was_cancelled = self.ctx.cancel_schedule(task_id)
            if was_cancelled:
                self._store(None)

        if was_cancelled:
            self.ctx.log.info(
                "task.cancelled", "Follow-up task cancelled successfully",
                task_id=task_id, was_cancelled=True,
            )
        else:
            self.ctx.log.warn(
                "task.cancel_failed", "Task cancellation failed - task may have already executed",
                task_id=task_id, was_cancelled=False,
            )
        return CancelResult(task_id=task_id, was_cancelled=was_cancelled)

    def on_fire(self, follow_up: Callable[[], Any]) -> Any:
        """Body of the scheduled handler: clear first, then run."""
        self._store(None)
        return follow_up()
