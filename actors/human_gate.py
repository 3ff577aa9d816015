"""
Durable Actors — Human Gate

Pause/resume state machine that suspends an actor's business operation
until a person decides, over a connection channel or an out-of-band
request carrying an intervention token.

States: idle → pending_review → running → completed
                              → aborted
completed / aborted end a session; a new request_review starts the next.

Commands:
  proceed    running (data kept) → resume → completed
  override   running (data replaced by newData) → resume → completed
  abort      aborted, no resume

Any command while not pending_review is rejected with an explicit error
and leaves the session untouched. A resume that raises rolls the session
back to pending_review, so the same review can be decided again.

Every status change is broadcast as {"type": "state_update", "state": {...}}
to all subscribers, after it is committed.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable
from urllib.parse import urlencode

from actors.connections import Connection, send_json
from actors.context import ActorContext
from actors.types import REVIEW_TRANSITIONS, HumanReviewSession, ReviewOp, ReviewStatus
from runtime.errors import ReviewNotPending, ValidationError

logger = logging.getLogger("durable_actors.human_gate")

STATE_KEY = "review"


class HumanGate:
    """
    `on_resume(data)` is the suspended business logic; it runs after a
    proceed/override, between the running and completed transitions.
    """

    def __init__(self, ctx: ActorContext, on_resume: Callable[[Any], Any]):
        self.ctx = ctx
        self.on_resume = on_resume

    # ─── Session state ──────────────────────────────────────────────

    def session(self) -> HumanReviewSession:
        return HumanReviewSession.from_dict(self.ctx.load().get(STATE_KEY))

    def _transition(self, to_status: ReviewStatus, data: Any, notify: bool = True) -> HumanReviewSession:
        current = self.session()
        if to_status not in REVIEW_TRANSITIONS[current.status]:
            raise ReviewNotPending(
                self.ctx.actor_id,
                f"Cannot transition from {current.status.value} to {to_status.value}",
                status=current.status.value,
            )
        new = HumanReviewSession(status=to_status, data=data)
        state = self.ctx.load()
        state[STATE_KEY] = new.to_dict()
        self.ctx.commit(state)

        self.ctx.log.info(
            "review.transition", f"Review {current.status.value}→{to_status.value}",
            from_status=current.status.value, to_status=to_status.value,
        )
        if notify:
            self._notify(new)
        return new

    def _notify(self, session: HumanReviewSession) -> None:
        self.ctx.broadcast({"type": "state_update", "state": session.to_dict()})

    # ─── Pause ──────────────────────────────────────────────────────

    def request_review(self, data: Any) -> str:
        """Suspend pending a decision. Returns the capability URL."""
        if data is None:
            raise ValidationError(self.ctx.actor_id, "data is required")
        try:
            json.dumps(data)
        except (TypeError, ValueError):
            raise ValidationError(self.ctx.actor_id, "data must be JSON-serializable")

        current = self.session()
        if current.status in (ReviewStatus.PENDING_REVIEW, ReviewStatus.RUNNING):
            raise ReviewNotPending(
                self.ctx.actor_id,
                "A review session is already in progress",
                status=current.status.value,
            )

        self._transition(ReviewStatus.PENDING_REVIEW, data)
        token = self.ctx.signer.mint(self.ctx.actor)
        query = urlencode({
            "agentType": self.ctx.actor.actor_type,
            "agentId": self.ctx.actor_id,
            "token": token,
        })
        url = f"{self.ctx.settings.intervention_base_url}/intervention?{query}"
        self.ctx.log.info("review.requested", f"NEEDS REVIEW: {self.ctx.actor_id}")
        return url

    # ─── Decide ─────────────────────────────────────────────────────

    def decide(self, op: str, new_data: Any = None, has_new_data: bool = False) -> HumanReviewSession:
        """
        Apply a decision. Raises ReviewNotPending when no review is pending
        and ValidationError for an unknown op or override without newData.
        """
        try:
            op_enum = ReviewOp(op)
        except ValueError:
            raise ValidationError(self.ctx.actor_id, "Invalid command operation")

        current = self.session()
        if current.status is not ReviewStatus.PENDING_REVIEW:
            self.ctx.log.warn(
                "review.rejected", f"Rejected {op_enum.value}: not pending review",
                status=current.status.value,
            )
            raise ReviewNotPending(self.ctx.actor_id, status=current.status.value)

        if op_enum is ReviewOp.ABORT:
            return self._transition(ReviewStatus.ABORTED, current.data)

        if op_enum is ReviewOp.OVERRIDE:
            if not has_new_data:
                raise ValidationError(self.ctx.actor_id, "override requires newData")
            data = new_data
        else:
            data = current.data

        # running → resume → completed commits as one unit; a failed resume
        # leaves the session pending_review and nothing is broadcast
        with self.ctx.store.atomic():
            running = self._transition(ReviewStatus.RUNNING, data, notify=False)
            try:
                self.on_resume(running.data)
            except Exception as e:
                self.ctx.log.error(
                    "review.resume_failed", f"Resume failed for {self.ctx.actor_id}; review still pending",
                    error=str(e)[:500], error_type=type(e).__name__,
                )
                raise
            completed = self._transition(ReviewStatus.COMPLETED, running.data, notify=False)

        self._notify(running)
        self._notify(completed)
        return completed

    def decide_with_token(self, token: str, op: str, new_data: Any = None,
                          has_new_data: bool = False) -> HumanReviewSession:
        """Out-of-band decision: the token is verified before anything else."""
        self.ctx.signer.verify(token, self.ctx.actor)
        return self.decide(op, new_data, has_new_data)

    # ─── Connection channel ─────────────────────────────────────────

    def on_connect(self, conn: Connection) -> None:
        send_json(conn, {"type": "state_update", "state": self.session().to_dict()})

    def handle_command(self, conn: Connection, message: str) -> HumanReviewSession | None:
        """
        Parse and apply one channel message. Errors go back to `conn` as
        {"type": "error", "message": ...}; nothing is raised.
        """
        try:
            command = json.loads(message)
        except (TypeError, ValueError):
            command = None
        if not isinstance(command, dict) or "op" not in command:
            send_json(conn, {"type": "error", "message": "Invalid command format"})
            return None

        try:
            return self.decide(
                command.get("op"),
                command.get("newData"),
                has_new_data="newData" in command,
            )
        except (ReviewNotPending, ValidationError) as e:
            send_json(conn, {"type": "error", "message": e.message})
            return None
        except Exception:
            logger.exception("Command %r failed on %s", command.get("op"), self.ctx.actor)
            send_json(conn, {"type": "error", "message": "Command failed; review is still pending"})
            return None
