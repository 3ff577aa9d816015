"""
Durable Actors — State Store

Persistence for per-actor data, keyed by (actor_type, actor_id):

  actor_state    one JSON state blob per actor (load / commit)
  actor_meta     small key/value rows, e.g. the migration status
  actor_records  append-only structured rows (users, follow-ups, audit)

All three survive process restart. Read-modify-write sequences run inside
`store.atomic()`, which maps to a single database transaction.
"""

from __future__ import annotations

import json
import time
import uuid
from typing import Any, Callable

from actors.types import ActorRef
from runtime.db import DatabaseBackend, create_backend

SCHEMA = """
CREATE TABLE IF NOT EXISTS actor_state (
    actor_type TEXT NOT NULL,
    actor_id TEXT NOT NULL,
    state TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 0,
    updated_at REAL NOT NULL,
    PRIMARY KEY (actor_type, actor_id)
);

CREATE TABLE IF NOT EXISTS actor_meta (
    actor_type TEXT NOT NULL,
    actor_id TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    updated_at REAL NOT NULL,
    PRIMARY KEY (actor_type, actor_id, key)
);

CREATE TABLE IF NOT EXISTS actor_records (
    record_id TEXT PRIMARY KEY,
    actor_type TEXT NOT NULL,
    actor_id TEXT NOT NULL,
    kind TEXT NOT NULL,
    record_key TEXT,
    body TEXT NOT NULL,
    created_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_records_actor ON actor_records(actor_type, actor_id, kind);
CREATE UNIQUE INDEX IF NOT EXISTS idx_records_key ON actor_records(actor_type, actor_id, kind, record_key)
"""


class ActorStore:
    """Durable per-actor state, meta rows and structured records."""

    def __init__(self, db: DatabaseBackend | None = None, clock: Callable[[], float] = time.time):
        self.db = db or create_backend("sqlite", path=":memory:")
        self._clock = clock
        self.db.executescript(SCHEMA)

    def atomic(self):
        """Transaction boundary for one actor's read-modify-write."""
        return self.db.transaction()

    # ─── State blob ──────────────────────────────────────────────────

    def get_state(self, ref: ActorRef) -> dict[str, Any] | None:
        row = self.db.fetchone(
            "SELECT state FROM actor_state WHERE actor_type = ? AND actor_id = ?",
            (ref.actor_type, ref.actor_id),
        )
        return json.loads(row["state"]) if row else None

    def set_state(self, ref: ActorRef, state: dict[str, Any]) -> None:
        self.db.execute("""
            INSERT INTO actor_state (actor_type, actor_id, state, version, updated_at)
            VALUES (?, ?, ?, 1, ?)
            ON CONFLICT (actor_type, actor_id) DO UPDATE SET
                state = excluded.state,
                version = actor_state.version + 1,
                updated_at = excluded.updated_at
        """, (ref.actor_type, ref.actor_id, json.dumps(state), self._clock()))

    # ─── Meta rows ───────────────────────────────────────────────────

    def get_meta(self, ref: ActorRef, key: str) -> str | None:
        row = self.db.fetchone(
            "SELECT value FROM actor_meta WHERE actor_type = ? AND actor_id = ? AND key = ?",
            (ref.actor_type, ref.actor_id, key),
        )
        return row["value"] if row else None

    def set_meta(self, ref: ActorRef, key: str, value: str) -> None:
        self.db.execute("""
            INSERT INTO actor_meta (actor_type, actor_id, key, value, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (actor_type, actor_id, key) DO UPDATE SET
                value = excluded.value,
                updated_at = excluded.updated_at
        """, (ref.actor_type, ref.actor_id, key, value, self._clock()))

    # ─── Structured records ─────────────────────────────────────────

    def append(self, ref: ActorRef, kind: str, body: dict[str, Any], key: str | None = None) -> str:
        """
        Append a structured row. When `key` is given it must be unique per
        (actor, kind); a duplicate raises the backend's integrity error.
        """
        record_id = f"rec_{uuid.uuid4().hex[:16]}"
        self.db.execute("""
            INSERT INTO actor_records
            (record_id, actor_type, actor_id, kind, record_key, body, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (record_id, ref.actor_type, ref.actor_id, kind, key, json.dumps(body), self._clock()))
        return record_id

    def has_record(self, ref: ActorRef, kind: str, key: str) -> bool:
        row = self.db.fetchone("""
            SELECT 1 AS hit FROM actor_records
            WHERE actor_type = ? AND actor_id = ? AND kind = ? AND record_key = ?
        """, (ref.actor_type, ref.actor_id, kind, key))
        return row is not None

    def query(self, ref: ActorRef, kind: str, order_by_key: bool = False) -> list[dict[str, Any]]:
        order = "record_key" if order_by_key else "created_at, record_id"
        rows = self.db.fetchall(f"""
            SELECT record_id, record_key, body, created_at FROM actor_records
            WHERE actor_type = ? AND actor_id = ? AND kind = ?
            ORDER BY {order}
        """, (ref.actor_type, ref.actor_id, kind))
        return [json.loads(r["body"]) for r in rows]

    def replace_records(self, ref: ActorRef, kind: str, transform: Callable[[dict], dict]) -> int:
        """Rewrite every row of a kind in place. Used by data migrations."""
        rows = self.db.fetchall("""
            SELECT record_id, body FROM actor_records
            WHERE actor_type = ? AND actor_id = ? AND kind = ?
        """, (ref.actor_type, ref.actor_id, kind))
        for r in rows:
            new_body = transform(json.loads(r["body"]))
            self.db.execute(
                "UPDATE actor_records SET body = ? WHERE record_id = ?",
                (json.dumps(new_body), r["record_id"]),
            )
        return len(rows)
