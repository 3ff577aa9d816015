"""
Durable Actors — Durable Scheduler

"Invoke method M on actor A with payload P after D seconds", stored in the
`scheduled_tasks` table so pending work survives a restart.

A task leaves `pending` exactly once: either `cancel()` moves it to
`cancelled` or `claim()` moves it to `fired`. Both are conditional updates
on status='pending', so a cancel racing a firing has a single winner.
Actual invocation is the runtime's job (ActorRuntime.fire); pumps in
api.worker / api.arq_worker call `due()` and hand tasks to the runtime.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any, Callable

from actors.types import ActorRef, ScheduledTask, TaskStatus
from runtime.db import DatabaseBackend, create_backend

logger = logging.getLogger("durable_actors.scheduler")

SCHEMA = """
CREATE TABLE IF NOT EXISTS scheduled_tasks (
    task_id TEXT PRIMARY KEY,
    actor_type TEXT NOT NULL,
    actor_id TEXT NOT NULL,
    method TEXT NOT NULL,
    payload TEXT NOT NULL DEFAULT '{}',
    not_before REAL NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    created_at REAL NOT NULL,
    fired_at REAL
);

CREATE INDEX IF NOT EXISTS idx_tasks_due ON scheduled_tasks(status, not_before);
CREATE INDEX IF NOT EXISTS idx_tasks_actor ON scheduled_tasks(actor_type, actor_id)
"""


class DurableScheduler:
    """SQL-backed delayed invocation queue."""

    def __init__(self, db: DatabaseBackend | None = None, clock: Callable[[], float] = time.time):
        self.db = db or create_backend("sqlite", path=":memory:")
        self.clock = clock
        self.db.executescript(SCHEMA)

    def schedule(
        self,
        actor: ActorRef,
        delay_seconds: float,
        method: str,
        payload: dict[str, Any] | None = None,
    ) -> str:
        """Queue an invocation. Returns the task id."""
        if delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")
        task_id = f"task_{uuid.uuid4().hex[:16]}"
        now = self.clock()
        self.db.execute("""
            INSERT INTO scheduled_tasks
            (task_id, actor_type, actor_id, method, payload, not_before, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            task_id, actor.actor_type, actor.actor_id, method,
            json.dumps(payload or {}), now + delay_seconds,
            TaskStatus.PENDING.value, now,
        ))
        logger.debug("Scheduled %s → %s.%s in %ss", task_id, actor, method, delay_seconds)
        return task_id

    def cancel(self, task_id: str) -> bool:
        """True iff the task was still pending (had not fired) and is now cancelled."""
        cursor = self.db.execute(
            "UPDATE scheduled_tasks SET status = ? WHERE task_id = ? AND status = ?",
            (TaskStatus.CANCELLED.value, task_id, TaskStatus.PENDING.value),
        )
        return cursor.rowcount == 1

    def claim(self, task_id: str) -> bool:
        """Mark a pending task fired. False if it was cancelled or already fired."""
        cursor = self.db.execute(
            "UPDATE scheduled_tasks SET status = ?, fired_at = ? WHERE task_id = ? AND status = ?",
            (TaskStatus.FIRED.value, self.clock(), task_id, TaskStatus.PENDING.value),
        )
        return cursor.rowcount == 1

    def get(self, task_id: str) -> ScheduledTask | None:
        row = self.db.fetchone("SELECT * FROM scheduled_tasks WHERE task_id = ?", (task_id,))
        return _row_to_task(row) if row else None

    def due(self, now: float | None = None, limit: int = 100) -> list[ScheduledTask]:
        """Pending tasks whose not_before has passed, oldest first."""
        now = self.clock() if now is None else now
        rows = self.db.fetchall("""
            SELECT * FROM scheduled_tasks
            WHERE status = ? AND not_before <= ?
            ORDER BY not_before, created_at
            LIMIT ?
        """, (TaskStatus.PENDING.value, now, limit))
        return [_row_to_task(r) for r in rows]

    def pending_for(self, actor: ActorRef) -> list[ScheduledTask]:
        rows = self.db.fetchall("""
            SELECT * FROM scheduled_tasks
            WHERE actor_type = ? AND actor_id = ? AND status = ?
            ORDER BY not_before
        """, (actor.actor_type, actor.actor_id, TaskStatus.PENDING.value))
        return [_row_to_task(r) for r in rows]

    def stats(self) -> dict[str, int]:
        rows = self.db.fetchall(
            "SELECT status, COUNT(*) AS n FROM scheduled_tasks GROUP BY status"
        )
        counts = {s.value: 0 for s in TaskStatus}
        for r in rows:
            counts[r["status"]] = int(r["n"])
        return counts


def _row_to_task(row: dict[str, Any]) -> ScheduledTask:
    return ScheduledTask(
        task_id=row["task_id"],
        actor=ActorRef(row["actor_type"], row["actor_id"]),
        target_method=row["method"],
        not_before=row["not_before"],
        payload=json.loads(row["payload"] or "{}"),
        status=TaskStatus(row["status"]),
        created_at=row["created_at"],
        fired_at=row["fired_at"],
    )
