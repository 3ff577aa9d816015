"""
Durable Actors — Actor Core

Stateful actors addressed by (type, id) with a durable state store,
a durable scheduler and connection channels. The reusable pieces are
MigrationGuard, RetryableTask, SingleFlightScheduler and HumanGate.

Usage:
    from actors.dispatch import build_runtime

    rt = build_runtime()
    rt.call("reminder", "alice", "set_reminder", {"message": "hi", "fail_for": 2})
    rt.run_due()
"""

from actors.types import (
    ActorRef,
    MigrationStatus,
    TaskStatus,
    RetryState,
    ReviewStatus,
    ReviewOp,
)
