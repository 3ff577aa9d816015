"""
Durable Actors — Scheduler Pumps

A pump asks the durable scheduler for due tasks and hands each one to
ActorRuntime.fire. Pumps hold no task state of their own; a crash between
ticks loses nothing because pending rows stay in `scheduled_tasks`.

  - InlinePump: fires on explicit tick() (dev/testing)
  - ThreadPump: background polling thread, fires on a bounded pool
  - arq: the cron job in api.arq_worker drains due tasks; in-process
    this selects an InlinePump that nothing ticks

The active pump is selected by DA_PUMP_MODE:
  inline    → InlinePump
  thread    → ThreadPump (default)
  arq       → InlinePump (external drain)
"""

from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor

from actors.dispatch import ActorRuntime
from actors.types import ScheduledTask
from api.models import PumpStats

logger = logging.getLogger("durable_actors.worker")


# ═══════════════════════════════════════════════════════════════════
# Pump Interface
# ═══════════════════════════════════════════════════════════════════

class SchedulerPump:
    """Abstract interface for draining due tasks."""

    def __init__(self, runtime: ActorRuntime):
        self.runtime = runtime
        self.stats = PumpStats()
        self._stats_lock = threading.Lock()

    def _fire(self, task: ScheduledTask) -> None:
        try:
            self.runtime.fire(task)
            with self._stats_lock:
                self.stats.fired += 1
        except Exception as e:
            with self._stats_lock:
                self.stats.failed += 1
            logger.error("Scheduled task %s (%s.%s) failed: %s",
                         task.task_id, task.actor, task.target_method, e)

    def tick(self, now: float | None = None) -> int:
        """Dispatch every task due at `now`. Returns how many were dispatched."""
        raise NotImplementedError

    def start(self):
        pass

    def shutdown(self):
        pass


# ═══════════════════════════════════════════════════════════════════
# Inline Pump (synchronous, dev/test)
# ═══════════════════════════════════════════════════════════════════

class InlinePump(SchedulerPump):
    """Fires due tasks in the calling thread, one at a time."""

    def tick(self, now: float | None = None) -> int:
        due = self.runtime.scheduler.due(now)
        for task in due:
            self._fire(task)
        with self._stats_lock:
            self.stats.ticks += 1
            self.stats.last_tick_at = time.time()
        return len(due)


# ═══════════════════════════════════════════════════════════════════
# Thread Pump
# ═══════════════════════════════════════════════════════════════════

class ThreadPump(SchedulerPump):
    """
    Background poller. Tasks for different actors fire in parallel on the
    pool; tasks for one actor are serialized by the runtime's identity lock.
    """

    def __init__(
        self,
        runtime: ActorRuntime,
        poll_seconds: float = 1.0,
        max_workers: int = 4,
    ):
        super().__init__(runtime)
        self.poll_seconds = poll_seconds
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="da_pump",
        )
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._inflight: dict[str, Future] = {}
        self._lock = threading.Lock()

    def tick(self, now: float | None = None) -> int:
        submitted = 0
        for task in self.runtime.scheduler.due(now):
            with self._lock:
                running = self._inflight.get(task.task_id)
                if running is not None and not running.done():
                    continue
                self._inflight[task.task_id] = self._pool.submit(self._fire, task)
            submitted += 1

        with self._lock:
            self._inflight = {k: f for k, f in self._inflight.items() if not f.done()}
        with self._stats_lock:
            self.stats.ticks += 1
            self.stats.last_tick_at = time.time()
        return submitted

    def _loop(self):
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception as e:
                logger.error("Scheduler poll failed: %s", e)
            self._stop.wait(self.poll_seconds)

    def start(self):
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._loop, name="da_pump_poll", daemon=True)
        self._thread.start()
        logger.info("ThreadPump started: poll=%.2fs", self.poll_seconds)

    def shutdown(self):
        logger.info("Shutting down ThreadPump...")
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=max(self.poll_seconds * 2, 1.0))
            self._thread = None
        self._pool.shutdown(wait=True, cancel_futures=False)


# ═══════════════════════════════════════════════════════════════════
# Pump Factory
# ═══════════════════════════════════════════════════════════════════

def create_pump(
    runtime: ActorRuntime,
    mode: str | None = None,
    max_workers: int = 4,
) -> SchedulerPump:
    """
    Create the pump for this process.

    Mode selection:
      DA_PUMP_MODE env var or explicit mode parameter.
      - "inline": InlinePump (manual tick)
      - "thread": ThreadPump (background)
      - "arq": InlinePump; the arq worker's cron drains due tasks
    """
    mode = mode or os.environ.get("DA_PUMP_MODE", "thread")

    if mode == "inline":
        logger.info("Scheduler pump: InlinePump")
        return InlinePump(runtime)

    elif mode == "arq":
        logger.info("Scheduler pump: external (arq cron)")
        return InlinePump(runtime)

    elif mode == "thread":
        poll = runtime.settings.scheduler_poll_seconds
        logger.info("Scheduler pump: ThreadPump (poll=%.2fs, max_workers=%d)", poll, max_workers)
        return ThreadPump(runtime, poll_seconds=poll, max_workers=max_workers)

    raise ValueError(f"Unknown pump mode: {mode}")
