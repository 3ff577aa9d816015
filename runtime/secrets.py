"""
Durable Actors — Secrets

Environment-backed secret lookup with an in-memory TTL cache. Used for the
intervention token signing key. Secret values are never logged.

Usage:
    from runtime.secrets import get_secret

    key = get_secret("INTERVENTION_TOKEN_SECRET")
"""

from __future__ import annotations

import logging
import os
import threading
import time

logger = logging.getLogger("durable_actors.secrets")


class SecretStore:
    """Thread-safe secrets store reading from the process environment."""

    def __init__(self, cache_ttl: int = 3600):
        self._cache_ttl = int(os.environ.get("DA_SECRETS_CACHE_TTL", str(cache_ttl)))
        self._cache: dict[str, tuple[str, float]] = {}  # name → (value, expires_at)
        self._lock = threading.Lock()

    def get(self, name: str, default: str = "") -> str:
        with self._lock:
            if name in self._cache:
                value, expires = self._cache[name]
                if time.time() < expires:
                    return value

        value = os.environ.get(name, "")
        if value:
            with self._lock:
                self._cache[name] = (value, time.time() + self._cache_ttl)
            logger.debug("Secret loaded from environment: %s", name)
            return value
        return default

    def clear_cache(self):
        """Clear the cache, e.g. after key rotation."""
        with self._lock:
            self._cache.clear()
        logger.info("Secret cache cleared")


_default_store: SecretStore | None = None
_store_lock = threading.Lock()


def get_store() -> SecretStore:
    global _default_store
    with _store_lock:
        if _default_store is None:
            _default_store = SecretStore()
    return _default_store


def get_secret(name: str, default: str = "") -> str:
    return get_store().get(name, default)


def reset_store():
    """Reset the default store (for testing)."""
    global _default_store
    with _store_lock:
        _default_store = None
