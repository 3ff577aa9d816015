"""
Durable Actors — Structured Logging

JSON-lines logging for the actor runtime. Every actor event carries the
actor class, actor identity and a trace id so a retry chain or a review
session can be followed across scheduler firings.

Usage:
    from runtime.logging import ActorLogger, configure_logging

    configure_logging(level="INFO")
    log = ActorLogger("ReminderActor", "alice")
    log.warn("TaskFailed", "Attempt #1 failed", error="boom")
    log.error("TaskAborted", "Reminder aborted after 3 retries")
"""

from __future__ import annotations

import json
import logging
import os
import sys
import uuid
from datetime import datetime, timezone
from typing import Any

ROOT_LOGGER = "durable_actors"


# ═══════════════════════════════════════════════════════════════════
# JSON Formatter
# ═══════════════════════════════════════════════════════════════════

class JSONFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects."""

    def __init__(self, service_name: str = ROOT_LOGGER):
        super().__init__()
        self.service_name = service_name
        self.service_version = os.environ.get("DA_VERSION", "0.1.0")

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service.name": self.service_name,
            "service.version": self.service_version,
        }

        if hasattr(record, "structured"):
            entry.update(record.structured)

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception.type"] = record.exc_info[0].__name__
            entry["exception.message"] = str(record.exc_info[1])

        return json.dumps(entry, default=str)


# ═══════════════════════════════════════════════════════════════════
# Log Configuration
# ═══════════════════════════════════════════════════════════════════

def configure_logging(
    level: str = "INFO",
    stream: Any = None,
    service_name: str = ROOT_LOGGER,
) -> logging.Logger:
    """
    Configure the durable_actors logger with JSON output.

    Safe to call repeatedly; existing handlers are replaced.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.handlers.clear()

    for name in list(logging.Logger.manager.loggerDict.keys()):
        if name.startswith(ROOT_LOGGER + "."):
            child = logging.getLogger(name)
            child.handlers.clear()
            child.setLevel(logging.NOTSET)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter(service_name=service_name))
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name: str = "") -> logging.Logger:
    """Get a child logger under the durable_actors namespace."""
    if name:
        return logging.getLogger(f"{ROOT_LOGGER}.{name}")
    return logging.getLogger(ROOT_LOGGER)


def generate_trace_id() -> str:
    return uuid.uuid4().hex


# ═══════════════════════════════════════════════════════════════════
# Actor Logger
# ═══════════════════════════════════════════════════════════════════

class ActorLogger:
    """
    Emits structured actor events.

    Each entry has agent_class, agent_id, trace_id, event_type and a data
    dict. The plain message is kept human readable for console tailing.
    """

    def __init__(self, actor_class: str, actor_id: str, trace_id: str | None = None):
        self.actor_class = actor_class
        self.actor_id = actor_id
        self.trace_id = trace_id or generate_trace_id()
        self._logger = get_logger("actor")

    def _emit(self, level: int, event_type: str, message: str, data: dict[str, Any]):
        if not self._logger.isEnabledFor(level):
            return
        record = self._logger.makeRecord(
            name=self._logger.name,
            level=level,
            fn="", lno=0, msg=message,
            args=(), exc_info=None,
        )
        record.structured = {
            "agent_class": self.actor_class,
            "agent_id": self.actor_id,
            "trace_id": self.trace_id,
            "event_type": event_type,
            "data": data,
        }
        self._logger.handle(record)

    def debug(self, event_type: str, message: str, **data: Any):
        self._emit(logging.DEBUG, event_type, message, data)

    def info(self, event_type: str, message: str, **data: Any):
        self._emit(logging.INFO, event_type, message, data)

    def warn(self, event_type: str, message: str, **data: Any):
        self._emit(logging.WARNING, event_type, message, data)

    def error(self, event_type: str, message: str, **data: Any):
        self._emit(logging.ERROR, event_type, message, data)
