"""
Durable Actors — arq Worker Entry Point

This module is the CMD target for the worker container. A cron job
drains due tasks from the durable scheduler every second; the API
process then runs with DA_PUMP_MODE=arq so only the worker fires.

Usage:
    python -m api.arq_worker

    # Or via arq CLI:
    arq api.arq_worker.WorkerSettings
"""

from __future__ import annotations

import asyncio
import logging
import os
from concurrent.futures import ThreadPoolExecutor

from arq import cron, run_worker
from arq.connections import RedisSettings

from actors.dispatch import build_runtime
from runtime.config import get_settings
from runtime.logging import configure_logging

logger = logging.getLogger("durable_actors.arq_worker")


async def drain_due_tasks(ctx: dict) -> int:
    """
    arq cron function. Fires due tasks in a thread pool to avoid
    blocking the async event loop.
    """
    loop = asyncio.get_running_loop()
    pool: ThreadPoolExecutor = ctx["pool"]
    runtime = ctx["runtime"]

    fired = await loop.run_in_executor(pool, runtime.run_due)
    if fired:
        logger.info("Fired %d due task(s)", fired)
    return fired


async def startup(ctx: dict):
    """arq startup hook — build the runtime and thread pool."""
    settings = get_settings()
    configure_logging(level=settings.log_level)
    max_workers = int(os.environ.get("DA_MAX_WORKERS", "4"))
    ctx["runtime"] = build_runtime(settings)
    ctx["pool"] = ThreadPoolExecutor(
        max_workers=max_workers,
        thread_name_prefix="da_worker",
    )
    logger.info("arq worker started: max_workers=%d", max_workers)


async def shutdown(ctx: dict):
    """arq shutdown hook — clean up thread pool and database."""
    pool = ctx.get("pool")
    if pool:
        pool.shutdown(wait=True)
    runtime = ctx.get("runtime")
    if runtime:
        runtime.close()
    logger.info("arq worker shutdown complete")


class WorkerSettings:
    """arq worker configuration."""
    functions = [drain_due_tasks]
    cron_jobs = [
        cron(drain_due_tasks, second=set(range(60)), run_at_startup=True, unique=True),
    ]
    on_startup = startup
    on_shutdown = shutdown
    max_jobs = int(os.environ.get("DA_MAX_WORKERS", "4"))
    job_timeout = int(os.environ.get("DA_JOB_TIMEOUT", "300"))
    redis_settings = RedisSettings.from_dsn(os.environ.get("REDIS_URL", "redis://localhost:6379"))


if __name__ == "__main__":
    run_worker(WorkerSettings)
