"""
Durable Actors — Connection Channels

Subscribers attached to one actor identity. The human gate broadcasts
every status change here; a failed send drops that subscriber only.

Connections are process-local (sockets cannot be persisted); actor state
they observe is durable.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from typing import Any, Protocol

from actors.types import ActorRef

logger = logging.getLogger("durable_actors.connections")


class Connection(Protocol):
    id: str

    def send(self, message: str) -> None: ...


class BufferedConnection:
    """Connection that keeps every message it is sent. Used by tests."""

    def __init__(self, conn_id: str | None = None):
        self.id = conn_id or f"conn_{uuid.uuid4().hex[:8]}"
        self.sent: list[str] = []

    def send(self, message: str) -> None:
        self.sent.append(message)

    @property
    def messages(self) -> list[dict[str, Any]]:
        return [json.loads(m) for m in self.sent]

    @property
    def last(self) -> dict[str, Any] | None:
        return json.loads(self.sent[-1]) if self.sent else None


def send_json(conn: Connection, message: dict[str, Any]) -> None:
    conn.send(json.dumps(message, default=str))


class ConnectionHub:
    """Thread-safe registry of subscribers per actor identity."""

    def __init__(self):
        self._subs: dict[ActorRef, dict[str, Connection]] = {}
        self._lock = threading.Lock()

    def subscribe(self, actor: ActorRef, conn: Connection) -> None:
        with self._lock:
            self._subs.setdefault(actor, {})[conn.id] = conn
        logger.info("Connection %s subscribed to %s", conn.id, actor)

    def unsubscribe(self, actor: ActorRef, conn: Connection) -> None:
        with self._lock:
            subs = self._subs.get(actor, {})
            subs.pop(conn.id, None)
            if not subs:
                self._subs.pop(actor, None)

    def subscribers(self, actor: ActorRef) -> list[Connection]:
        with self._lock:
            return list(self._subs.get(actor, {}).values())

    def broadcast(self, actor: ActorRef, message: dict[str, Any]) -> int:
        """Send to every subscriber of `actor`. Returns the delivered count."""
        data = json.dumps(message, default=str)
        delivered = 0
        for conn in self.subscribers(actor):
            try:
                conn.send(data)
                delivered += 1
            except Exception as e:
                logger.warning("Dropping connection %s on %s: %s", conn.id, actor, e)
                self.unsubscribe(actor, conn)
        return delivered
