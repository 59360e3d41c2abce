"""FastAPI application routing requests to per-identity reminder agents."""
from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, Optional, Union

from fastapi import Body, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .agent import DEFAULT_REMINDER_DELAY, Completion, ReminderAgent
from .config import load_config
from .errors import AgentError
from .llm import create_from_config
from .router import IdentityRouter
from .scheduler import DiskScheduler
from .store import DiskStateStore

logger = logging.getLogger(__name__)


# -----------------------------
# Pydantic responses
# -----------------------------
class ChatResponse(BaseModel):
    response: str


class ReminderResponse(BaseModel):
    scheduledId: str = Field(..., min_length=1)


AgentResponse = Union[ChatResponse, ReminderResponse]


# -----------------------------
# Utilities
# -----------------------------
def _data_dir(cfg: Dict[str, Any]) -> str:
    return str(cfg.get("storage", {}).get("data_dir") or "data")


def _make_scheduler(cfg: Dict[str, Any], clock: Callable[[], float]) -> DiskScheduler:
    sched_cfg = cfg.get("scheduler", {})
    return DiskScheduler(
        _data_dir(cfg),
        callbacks=ReminderAgent.callbacks,
        clock=clock,
        poll_interval=float(sched_cfg.get("poll_interval", 1.0)),
    )


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    completion: Optional[Completion] = None,
    store: Optional[DiskStateStore] = None,
    scheduler: Optional[DiskScheduler] = None,
    clock: Optional[Callable[[], float]] = None,
) -> FastAPI:
    cfg = load_config(config_path)
    clock = clock or time.time

    # Services
    store = store or DiskStateStore(_data_dir(cfg))
    scheduler = scheduler or _make_scheduler(cfg, clock)
    completion = completion or create_from_config(cfg)
    router = IdentityRouter(
        store=store,
        scheduler=scheduler,
        completion=completion,
        clock=clock,
        default_delay=float(cfg.get("agent", {}).get("default_delay", DEFAULT_REMINDER_DELAY)),
    )
    autostart = bool(cfg.get("scheduler", {}).get("autostart", True))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if autostart:
            scheduler.start()
        try:
            yield
        finally:
            scheduler.stop()
            router.shutdown()

    app = FastAPI(title="Reminder Agent Server", version="0.1.0", lifespan=lifespan)
    app.state.store = store
    app.state.scheduler = scheduler
    app.state.router = router

    @app.exception_handler(AgentError)
    async def agent_error(request: Request, exc: AgentError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail, exc_info=exc)
        return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def bad_body(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse({"detail": "Invalid JSON body"}, status_code=400)

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {
            "ok": True,
            "data_dir": str(store.root),
            "pending_tasks": len(scheduler.pending()),
        }

    @app.post("/agents/{agent}/{identity}", response_model=AgentResponse)
    def agent_request(agent: str, identity: str, body: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
        return router.handle(agent, identity, body)

    @app.post("/agent", response_model=AgentResponse)
    def default_agent_request(body: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
        return router.handle(router.default_agent, body.get("id"), body)

    return app
