"""Durable one-off task scheduler backed by a directory of JSON records.

Each pending task lives in ``<data_dir>/tasks/<id>.json`` from the moment
:meth:`DiskScheduler.register` returns until its callback has been applied,
so tasks survive process restarts. A background thread polls for due tasks
and hands them to a dispatcher (the identity router), which runs the callback
on the owning actor's mailbox. Delivery is at-least-once: a record is only
deleted once its callback completed without raising. Tasks that fail with a
non-retryable error (unknown agent, bad owner) are moved aside.
"""
from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import Future
from concurrent.futures import wait as wait_futures
from dataclasses import asdict, dataclass, field
from functools import partial
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Set

from .errors import AgentError, SchedulerFault
from .fileio import atomic_write_json, ensure_dir, quarantine, read_json

logger = logging.getLogger(__name__)

# Returns a Future for work queued on an actor mailbox, or None when done synchronously.
Dispatcher = Callable[["ScheduledTask"], Optional[Future]]


@dataclass
class ScheduledTask:
    id: str
    fire_time: float                # epoch seconds
    callback: str                   # actor method name, e.g. "send_reminder"
    payload: Dict[str, Any]
    agent: str                      # agent name the task is addressed to
    owner: str                      # identity within that agent
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ScheduledTask":
        return cls(
            id=str(raw["id"]),
            fire_time=float(raw["fire_time"]),
            callback=str(raw["callback"]),
            payload=dict(raw.get("payload") or {}),
            agent=str(raw["agent"]),
            owner=str(raw["owner"]),
            created_at=float(raw.get("created_at", raw["fire_time"])),
        )


class DiskScheduler:
    def __init__(
        self,
        data_dir: str,
        *,
        callbacks: Iterable[str] = ("send_reminder",),
        clock: Callable[[], float] = time.time,
        poll_interval: float = 1.0,
    ) -> None:
        self.tasks_dir = ensure_dir(Path(data_dir) / "tasks")
        self.callbacks: FrozenSet[str] = frozenset(callbacks)
        self.clock = clock
        self.poll_interval = float(poll_interval)
        self._dispatch: Optional[Dispatcher] = None
        self._fire_lock = threading.Lock()
        self._flight_lock = threading.Lock()
        self._in_flight: Set[str] = set()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def set_dispatcher(self, dispatch: Dispatcher) -> None:
        self._dispatch = dispatch

    # --------- registration ----------
    def register(
        self,
        fire_time: float,
        callback: str,
        payload: Dict[str, Any],
        *,
        agent: str,
        owner: str,
    ) -> str:
        """Persist a task and return its id. Durable once this returns."""
        if callback not in self.callbacks:
            raise ValueError(f"Unknown callback {callback!r}; expected one of {sorted(self.callbacks)}")

        task = ScheduledTask(
            id=uuid.uuid4().hex,
            fire_time=float(fire_time),
            callback=callback,
            payload=dict(payload),
            agent=agent,
            owner=owner,
            created_at=self.clock(),
        )
        try:
            atomic_write_json(self._path(task.id), task.to_dict())
        except (OSError, ValueError) as e:
            logger.exception("Failed to persist scheduled task for %s/%s", agent, owner)
            raise SchedulerFault(f"Could not register task: {e}") from e
        logger.debug("Registered %s for %s/%s at %.3f (id=%s)", callback, agent, owner, task.fire_time, task.id)
        return task.id

    # --------- inspection ----------
    def pending(self) -> List[ScheduledTask]:
        """All stored tasks, ordered by fire time then registration time."""
        out: List[ScheduledTask] = []
        for path in self.tasks_dir.glob("*.json"):
            if path.stem.endswith(".corrupt"):
                continue
            try:
                out.append(ScheduledTask.from_dict(read_json(path)))
            except FileNotFoundError:
                continue  # fired between glob() and read
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning("Corrupt task record %s (%s); moving aside", path.name, e)
                try:
                    quarantine(path)
                except OSError as move_err:
                    logger.warning("Could not move %s aside: %s", path, move_err)
        out.sort(key=lambda t: (t.fire_time, t.created_at, t.id))
        return out

    # --------- firing ----------
    def run_due(self, now: Optional[float] = None, *, wait: bool = True) -> int:
        """Fire every task whose fire time has passed.

        All due tasks are handed to the dispatcher before any of them is
        awaited, so a busy actor only delays its own tasks. Each record is
        settled from its future's done callback. With ``wait`` the call blocks
        until every dispatched task settled and returns how many succeeded;
        without it, returns how many were dispatched.
        """
        if self._dispatch is None:
            raise RuntimeError("DiskScheduler has no dispatcher; call set_dispatcher() first")
        now = self.clock() if now is None else now
        futures: List[Future] = []
        with self._fire_lock:
            for task in self.pending():
                if task.fire_time > now:
                    break
                with self._flight_lock:
                    if task.id in self._in_flight:
                        continue
                    self._in_flight.add(task.id)
                try:
                    fut = self._dispatch(task)
                except Exception as e:
                    fut = Future()
                    fut.set_exception(e)
                if fut is None:
                    fut = Future()
                    fut.set_result(None)
                settled: Future = Future()
                fut.add_done_callback(partial(self._settle, task, settled))
                futures.append(settled)

        if not wait:
            return len(futures)
        wait_futures(futures)
        return sum(1 for f in futures if f.result())

    def _settle(self, task: ScheduledTask, settled: Future, fut: Future) -> None:
        """Delete, quarantine or keep the record; resolves ``settled`` to success."""
        exc = fut.exception()
        path = self._path(task.id)
        try:
            if exc is None:
                path.unlink(missing_ok=True)
            elif isinstance(exc, AgentError) and not exc.retryable:
                logger.warning("Task %s (%s/%s) cannot be delivered (%s); moving aside",
                               task.id, task.agent, task.owner, exc.detail)
                try:
                    quarantine(path)
                except OSError as move_err:
                    logger.warning("Could not move %s aside: %s", path, move_err)
            else:
                # Left on disk; retried on the next poll.
                logger.error("Dispatch of task %s (%s/%s) failed", task.id, task.agent, task.owner, exc_info=exc)
        finally:
            with self._flight_lock:
                self._in_flight.discard(task.id)
            settled.set_result(exc is None)

    # --------- background loop ----------
    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="reminder-scheduler", daemon=True)
        self._thread.start()
        logger.info("Scheduler started (poll every %.2fs, %d pending)", self.poll_interval, len(self.pending()))

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_due(wait=False)
            except Exception:
                logger.exception("Scheduler poll failed")
            self._stop.wait(self.poll_interval)

    def _path(self, task_id: str) -> Path:
        return self.tasks_dir / f"{task_id}.json"
