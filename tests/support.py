"""Shared fixtures for the actor test suites."""

import os
import sys

_base = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _base)

from actors.dispatch import ActorRuntime, build_runtime
from runtime.config import ActorSettings
from runtime.db import SQLiteBackend

TEST_SECRET = "test-secret-0123456789abcdef"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


def make_runtime(clock: FakeClock | None = None, path: str = ":memory:", **settings) -> ActorRuntime:
    """Runtime over its own SQLite database with a fixed signing key."""
    return build_runtime(
        settings=ActorSettings(db_path=path, **settings),
        db=SQLiteBackend(path=path),
        clock=clock or FakeClock(),
        secret=TEST_SECRET,
    )
