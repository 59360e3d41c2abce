"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import os
import sys
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import pytest

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from reminder_server.router import IdentityRouter  # noqa: E402
from reminder_server.scheduler import DiskScheduler  # noqa: E402
from reminder_server.store import DiskStateStore  # noqa: E402


class FakeClock:
    """Manually advanced clock used in place of time.time."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedCompletion:
    """Completion stand-in that records every call.

    ``reply`` maps the message list to the reply text; ``latency`` maps the
    last user message to a sleep before replying.
    """

    def __init__(
        self,
        reply: Optional[Callable[[List[Dict[str, str]]], str]] = None,
        latency: Optional[Dict[str, float]] = None,
    ) -> None:
        self.reply = reply or (lambda msgs: f"reply to {msgs[-1]['content']}")
        self.latency = latency or {}
        self.calls: List[List[Dict[str, str]]] = []
        self._lock = threading.Lock()

    def complete(self, messages: Sequence[Mapping[str, Any]]) -> str:
        snapshot = [{"role": m["role"], "content": m["content"]} for m in messages]
        with self._lock:
            self.calls.append(snapshot)
        delay = self.latency.get(snapshot[-1]["content"], 0.0)
        if delay:
            time.sleep(delay)
        return self.reply(snapshot)


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the root directory of the project."""
    return Path(__file__).resolve().parent.parent


@pytest.fixture(scope="function")
def tmp_data_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for actor state and scheduled tasks."""
    d = tmp_path / "data"
    d.mkdir(parents=True, exist_ok=True)
    return d


@pytest.fixture(scope="function")
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    for var in list(os.environ):
        if var.startswith("REMINDER_SERVER"):
            monkeypatch.delenv(var, raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    yield


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def completion() -> ScriptedCompletion:
    return ScriptedCompletion()


@pytest.fixture
def store(tmp_data_dir: Path) -> DiskStateStore:
    return DiskStateStore(str(tmp_data_dir))


@pytest.fixture
def scheduler(tmp_data_dir: Path, clock: FakeClock) -> DiskScheduler:
    return DiskScheduler(str(tmp_data_dir), clock=clock, poll_interval=0.01)


@pytest.fixture
def make_router(store, scheduler, clock):
    """Build an IdentityRouter over the shared store/scheduler with a given completion."""
    routers: List[IdentityRouter] = []

    def _make(completion) -> IdentityRouter:
        r = IdentityRouter(store=store, scheduler=scheduler, completion=completion, clock=clock)
        routers.append(r)
        return r

    yield _make
    scheduler.stop()
    for r in routers:
        r.shutdown()


@pytest.fixture
def router(make_router, completion) -> IdentityRouter:
    return make_router(completion)
