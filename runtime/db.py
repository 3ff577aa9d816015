"""
Durable Actors — Database Backend Abstraction

One interface over SQLite and PostgreSQL. The actor state store and the
durable scheduler both talk to this layer instead of raw sqlite3/psycopg.

Usage:
    from runtime.db import create_backend

    db = create_backend("sqlite", path="actors.db")
    db.execute("INSERT INTO actor_meta (actor_type, actor_id, key, value) VALUES (?, ?, ?, ?)",
               ("migrating", "alice", "migration_status", "ok"))
    row = db.fetchone("SELECT value FROM actor_meta WHERE actor_id = ?", ("alice",))

    with db.transaction():
        ...  # read-modify-write, committed or rolled back as a unit

SQL is written in the SQLite dialect. The Postgres backend translates
`?` placeholders and AUTOINCREMENT; upserts use `ON CONFLICT (...) DO UPDATE`,
which both engines accept.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from typing import Any, Iterator

logger = logging.getLogger("durable_actors.db")


class DatabaseBackend:
    """Abstract database backend interface."""

    def execute(self, sql: str, params: tuple = ()) -> Any:
        raise NotImplementedError

    def executescript(self, sql: str) -> None:
        raise NotImplementedError

    def fetchone(self, sql: str, params: tuple = ()) -> dict[str, Any] | None:
        raise NotImplementedError

    def fetchall(self, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        raise NotImplementedError

    @contextmanager
    def transaction(self) -> Iterator[None]:
        raise NotImplementedError
        yield  # pragma: no cover

    def close(self) -> None:
        raise NotImplementedError

    @property
    def backend_type(self) -> str:
        raise NotImplementedError

    def translate_sql(self, sql: str) -> str:
        """Translate SQL from canonical (SQLite) form to backend-specific form."""
        return sql


# ═══════════════════════════════════════════════════════════════
# SQLite Backend
# ═══════════════════════════════════════════════════════════════

class SQLiteBackend(DatabaseBackend):
    """SQLite backend — default."""

    def __init__(self, path: str = ":memory:", wal: bool = True, busy_timeout: int = 5000):
        self._path = path
        self._conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        if wal and path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(f"PRAGMA busy_timeout={busy_timeout}")
        self._lock = threading.RLock()
        self._depth = 0
        logger.info("SQLite backend initialized: %s", path)

    def execute(self, sql: str, params: tuple = ()) -> Any:
        with self._lock:
            return self._conn.execute(sql, params)

    def executescript(self, sql: str) -> None:
        with self._lock:
            self._conn.executescript(sql)

    def fetchone(self, sql: str, params: tuple = ()) -> dict[str, Any] | None:
        with self._lock:
            row = self._conn.execute(sql, params).fetchone()
            return dict(row) if row is not None else None

    def fetchall(self, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(r) for r in self._conn.execute(sql, params).fetchall()]

    @contextmanager
    def transaction(self) -> Iterator[None]:
        # Nested blocks join the outermost transaction.
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return
            self._conn.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield
                self._conn.execute("COMMIT")
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            finally:
                self._depth = 0

    def close(self) -> None:
        self._conn.close()

    @property
    def backend_type(self) -> str:
        return "sqlite"


# ═══════════════════════════════════════════════════════════════
# PostgreSQL Backend
# ═══════════════════════════════════════════════════════════════

class PostgresBackend(DatabaseBackend):
    """
    PostgreSQL backend for multi-process deployments.

    Requires psycopg (v3) or psycopg2, whichever is installed.
    """

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._lock = threading.RLock()
        self._depth = 0
        self._cursor_factory = None

        try:
            import psycopg
            self._conn = psycopg.connect(dsn, autocommit=False)
            self._driver = "psycopg3"
        except ImportError:
            try:
                import psycopg2
                import psycopg2.extras
            except ImportError:
                raise ImportError(
                    "PostgreSQL backend requires psycopg (v3) or psycopg2. "
                    "Install with: pip install psycopg[binary]"
                )
            self._conn = psycopg2.connect(dsn)
            self._conn.autocommit = False
            self._cursor_factory = psycopg2.extras.RealDictCursor
            self._driver = "psycopg2"
        logger.info("PostgreSQL backend initialized (%s): %s", self._driver, _safe_dsn(dsn))

    def translate_sql(self, sql: str) -> str:
        s = sql.replace("?", "%s")
        s = s.replace("INTEGER PRIMARY KEY AUTOINCREMENT", "SERIAL PRIMARY KEY")
        s = s.replace(" REAL", " DOUBLE PRECISION")
        if s.strip().upper().startswith("PRAGMA"):
            return "SELECT 1"
        return s

    def _cursor(self):
        if self._cursor_factory is not None:
            return self._conn.cursor(cursor_factory=self._cursor_factory)
        return self._conn.cursor()

    def execute(self, sql: str, params: tuple = ()) -> Any:
        with self._lock:
            cursor = self._cursor()
            cursor.execute(self.translate_sql(sql), params)
            if not self._depth:
                self._conn.commit()
            return cursor

    def executescript(self, sql: str) -> None:
        with self._lock:
            cursor = self._cursor()
            for stmt in (s.strip() for s in sql.split(";")):
                if stmt:
                    cursor.execute(self.translate_sql(stmt))
            if not self._depth:
                self._conn.commit()

    def _rows(self, cursor, rows) -> list[dict[str, Any]]:
        if not rows:
            return []
        if isinstance(rows[0], dict):
            return [dict(r) for r in rows]
        cols = [d[0] for d in cursor.description]
        return [dict(zip(cols, r)) for r in rows]

    def fetchone(self, sql: str, params: tuple = ()) -> dict[str, Any] | None:
        with self._lock:
            cursor = self._cursor()
            cursor.execute(self.translate_sql(sql), params)
            row = cursor.fetchone()
            if not self._depth:
                self._conn.commit()
            if row is None:
                return None
            return self._rows(cursor, [row])[0]

    def fetchall(self, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        with self._lock:
            cursor = self._cursor()
            cursor.execute(self.translate_sql(sql), params)
            rows = cursor.fetchall()
            if not self._depth:
                self._conn.commit()
            return self._rows(cursor, rows)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            self._depth += 1
            try:
                yield
                if self._depth == 1:
                    self._conn.commit()
            except BaseException:
                if self._depth == 1:
                    self._conn.rollback()
                raise
            finally:
                self._depth -= 1

    def close(self) -> None:
        self._conn.close()

    @property
    def backend_type(self) -> str:
        return "postgres"


# ═══════════════════════════════════════════════════════════════
# Factory
# ═══════════════════════════════════════════════════════════════

def create_backend(
    backend_type: str | None = None,
    path: str = "actors.db",
    dsn: str = "",
    **kwargs,
) -> DatabaseBackend:
    """
    Create a database backend.

    Auto-detects from environment when backend_type is None:
      - DA_DB_BACKEND=postgres + DA_DB_DSN=postgresql://...  → Postgres
      - DA_DB_BACKEND=sqlite (or unset)                      → SQLite
    """
    if backend_type is None:
        backend_type = os.environ.get("DA_DB_BACKEND", "sqlite").lower()

    if backend_type in ("postgres", "postgresql"):
        dsn = dsn or os.environ.get("DA_DB_DSN", "")
        if not dsn:
            raise ValueError(
                "PostgreSQL backend requires a DSN. Set DA_DB_DSN or pass dsn parameter."
            )
        return PostgresBackend(dsn=dsn)
    return SQLiteBackend(path=path, **kwargs)


def _safe_dsn(dsn: str) -> str:
    """Mask password in DSN for logging."""
    if "@" in dsn:
        prefix, host = dsn.rsplit("@", 1)
        if prefix.count(":") >= 2:
            user_part = prefix.rsplit(":", 1)[0]
            return f"{user_part}:****@{host}"
    return dsn
