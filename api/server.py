"""
Durable Actors — API Server

FastAPI application serving:
  GET|POST /agents/{type}/{id}/{method}   — call a public actor method
  WS       /agents/{type}/{id}/ws         — actor connection channel
  POST     /v1/interventions/{id}         — out-of-band human decision (token)
  GET      /v1/stats                      — scheduler and pump counters
  GET      /health                        — liveness
  GET      /ready                         — readiness

Actor errors map to status codes through runtime.errors.STATUS_CODES.
Actor code is synchronous; handlers run it on the default executor.

Usage:
    uvicorn api.server:app --host 0.0.0.0 --port 8080

    # Development (no background pump, no Redis)
    DA_PUMP_MODE=inline uvicorn api.server:app --reload
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from functools import partial
from typing import Any

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from actors.dispatch import ActorRuntime, build_runtime
from api.models import AgentCall, InterventionDecision
from api.worker import SchedulerPump, create_pump
from runtime.errors import STATUS_CODES, ActorError, ValidationError

logger = logging.getLogger("durable_actors.api")

# Methods that start work rather than finish it
ACCEPTED_METHODS = {"execute_transaction": 202}


class QueueConnection:
    """
    Connection handed to the runtime for one websocket. send() may be
    called from any thread; frames are delivered in order by the
    socket's writer task.
    """

    _counter = 0

    def __init__(self, loop: asyncio.AbstractEventLoop):
        QueueConnection._counter += 1
        self.id = f"ws_{QueueConnection._counter}_{int(time.time() * 1000)}"
        self.queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._loop = loop

    def send(self, message: str) -> None:
        self._loop.call_soon_threadsafe(self.queue.put_nowait, message)

    def close(self) -> None:
        self._loop.call_soon_threadsafe(self.queue.put_nowait, None)


async def _drain(conn: QueueConnection, websocket: WebSocket):
    while True:
        message = await conn.queue.get()
        if message is None:
            return
        await websocket.send_text(message)


def create_app(runtime: ActorRuntime | None = None, pump_mode: str | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Separated from module-level creation so tests can pass their own
    runtime (in-memory database, fixed clock) and an inline pump.
    """
    # ── State ────────────────────────────────────────────────

    _runtime: ActorRuntime | None = runtime
    _pump: SchedulerPump | None = None

    def get_runtime() -> ActorRuntime:
        nonlocal _runtime
        if _runtime is None:
            _runtime = build_runtime()
        return _runtime

    def get_pump() -> SchedulerPump:
        nonlocal _pump
        if _pump is None:
            _pump = create_pump(get_runtime(), mode=pump_mode)
        return _pump

    # ── Lifecycle ─────────────────────────────────────────────

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        get_pump().start()
        try:
            yield
        finally:
            if _pump:
                _pump.shutdown()

    app = FastAPI(
        title="Durable Actors API",
        version="0.1.0",
        description="Stateful actors with durable scheduling and human review",
        lifespan=lifespan,
    )
    app.state.get_runtime = get_runtime
    app.state.get_pump = get_pump

    async def run_sync(fn, *args, **kwargs) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(fn, *args, **kwargs))

    # ── Errors ────────────────────────────────────────────────

    @app.exception_handler(ActorError)
    async def actor_error(request: Request, exc: ActorError):
        status = STATUS_CODES.get(exc.kind, 500)
        if status >= 500:
            logger.error("%s %s → %s: %s", request.method, request.url.path, exc.kind, exc.message)
        else:
            logger.info("%s %s → %s: %s", request.method, request.url.path, exc.kind, exc.message)
        return JSONResponse(status_code=status, content=exc.to_dict())

    # ── Actor calls ───────────────────────────────────────────

    @app.api_route("/agents/{agent_type}/{agent_id}/{method}", methods=["GET", "POST"])
    async def call_agent(agent_type: str, agent_id: str, method: str, request: Request):
        payload: Any = {}
        if request.method == "POST":
            raw = await request.body()
            if raw:
                try:
                    payload = json.loads(raw)
                except ValueError:
                    raise ValidationError(agent_id, "Request body must be valid JSON")

        call = AgentCall(agent_type=agent_type, agent_id=agent_id, method=method, payload=payload)
        errors = call.validate()
        if errors:
            raise ValidationError(agent_id, "; ".join(errors))

        result = await run_sync(get_runtime().call, agent_type, agent_id, method, call.payload)
        return JSONResponse(status_code=ACCEPTED_METHODS.get(method, 200), content=result)

    # ── Connection channel ────────────────────────────────────

    @app.websocket("/agents/{agent_type}/{agent_id}/ws")
    async def agent_channel(websocket: WebSocket, agent_type: str, agent_id: str,
                            token: str | None = None):
        rt = get_runtime()
        conn = QueueConnection(asyncio.get_running_loop())
        await websocket.accept()

        try:
            await run_sync(rt.connect, agent_type, agent_id, conn, token)
        except ActorError as e:
            await websocket.send_json({"type": "error", "message": e.message, "error": e.kind})
            await websocket.close(code=1008)
            return

        writer = asyncio.create_task(_drain(conn, websocket))
        try:
            while True:
                text = await websocket.receive_text()
                try:
                    await run_sync(rt.message, agent_type, agent_id, conn, text)
                except ActorError as e:
                    conn.send(json.dumps({"type": "error", "message": e.message, "error": e.kind}))
        except WebSocketDisconnect:
            logger.debug("Connection %s closed", conn.id)
        finally:
            rt.disconnect(agent_type, agent_id, conn)
            conn.close()
            await asyncio.gather(writer, return_exceptions=True)

    # ── Interventions ─────────────────────────────────────────

    @app.post("/v1/interventions/{agent_id}")
    async def intervene(agent_id: str, request: Request):
        try:
            body = await request.json()
        except ValueError:
            raise ValidationError(agent_id, "Request body must be valid JSON")
        if not isinstance(body, dict):
            raise ValidationError(agent_id, "Request body must be a JSON object")

        decision = InterventionDecision.from_body(body)
        errors = decision.validate()
        if errors:
            raise ValidationError(agent_id, "; ".join(errors))

        state = await run_sync(
            get_runtime().decide,
            decision.agent_type, agent_id, decision.token, decision.op,
            new_data=decision.new_data, has_new_data=decision.has_new_data,
        )
        return JSONResponse(content={"agentId": agent_id, "state": state})

    # ── Stats ─────────────────────────────────────────────────

    @app.get("/v1/stats")
    async def get_stats():
        rt = get_runtime()
        return JSONResponse(content={
            "tasks": rt.scheduler.stats(),
            "pump": get_pump().stats.to_dict(),
            "agent_types": sorted(rt.actor_types),
        })

    # ── Health ────────────────────────────────────────────────

    @app.get("/health")
    async def health():
        return JSONResponse(content={
            "status": "ok",
            "timestamp": time.time(),
        })

    @app.get("/ready")
    async def ready():
        # Check the shared database is reachable
        try:
            get_runtime().scheduler.stats()
            return JSONResponse(content={"status": "ok"})
        except Exception as e:
            return JSONResponse(
                status_code=503,
                content={"status": "fail", "error": str(e)[:200]},
            )

    return app


# ── Module-level app for uvicorn ──────────────────────────────

app = create_app()
