"""Per-identity conversational actor with reminder scheduling.

A :class:`ReminderAgent` owns exactly one identity's state. All work against
that state (inbound requests and fired reminders alike) runs on the agent's
single-worker mailbox, so read-modify-write cycles never interleave and
mutations land in the order they were admitted.
"""
from __future__ import annotations

import logging
import math
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Sequence, Tuple

from .errors import RoutingError, ValidationError
from .scheduler import DiskScheduler, ScheduledTask
from .store import DiskStateStore

logger = logging.getLogger(__name__)

DEFAULT_REMINDER_DELAY = 60.0
REMINDER_PREFIX = "⏰ Reminder: "
FIRED_TASK_LIMIT = 256   # applied task ids remembered per identity


class Completion(Protocol):
    def complete(self, messages: Sequence[Mapping[str, Any]]) -> str: ...


# -----------------------------
# Request parsing
# -----------------------------
def parse_request(body: Any) -> Tuple[Optional[str], str, Any]:
    """Validate a request body and return ``(action, message, delay)``.

    ``action`` is ``"remind"`` for reminder requests and ``None`` for chat.
    """
    if not isinstance(body, Mapping):
        raise ValidationError("Invalid JSON body")
    action = body.get("action")
    message = body.get("message")
    if action is not None and action != "remind":
        raise ValidationError(f"Unsupported action: {action!r}")
    if not isinstance(message, str) or not message.strip():
        raise ValidationError("Missing reminder message" if action == "remind" else "Missing message")
    return action, message, body.get("delay")


def reminder_delay(delay: Any, default: float = DEFAULT_REMINDER_DELAY) -> float:
    """Seconds until a reminder fires: a positive number, else ``default``."""
    if isinstance(delay, bool) or not isinstance(delay, (int, float)):
        return default
    if not math.isfinite(delay) or delay <= 0:
        return default
    return float(delay)


# -----------------------------
# Actor
# -----------------------------
class ReminderAgent:
    """Chat agent that can also schedule one-off reminders into its own history."""

    name = "reminder-agent"
    callbacks = frozenset({"send_reminder"})
    fired_task_limit = FIRED_TASK_LIMIT

    def __init__(
        self,
        identity: str,
        *,
        store: DiskStateStore,
        scheduler: DiskScheduler,
        completion: Completion,
        clock: Callable[[], float] = time.time,
        default_delay: float = DEFAULT_REMINDER_DELAY,
    ) -> None:
        self.identity = identity
        self.store = store
        self.scheduler = scheduler
        self.completion = completion
        self.clock = clock
        self.default_delay = default_delay
        self._mailbox = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"agent-{identity[:32]}")

    # --------- mailbox ----------
    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        """Queue ``fn(*args)`` behind every invocation admitted before it."""
        return self._mailbox.submit(fn, *args)

    def request(self, body: Any) -> Dict[str, Any]:
        """Run :meth:`handle_request` on the mailbox and wait for its result."""
        return self.submit(self.handle_request, body).result()

    def deliver(self, task: ScheduledTask) -> Future:
        """Queue a fired scheduled task on the mailbox; the future resolves once applied."""
        if task.callback not in self.callbacks:
            raise RoutingError(f"{self.name} has no callback {task.callback!r}")
        method = getattr(self, task.callback)
        return self.submit(method, task.payload, task.id)

    def shutdown(self, wait: bool = True) -> None:
        self._mailbox.shutdown(wait=wait)

    # --------- entry point A ----------
    def handle_request(self, body: Any) -> Dict[str, Any]:
        action, message, delay = parse_request(body)
        if action == "remind":
            secs = reminder_delay(delay, self.default_delay)
            return {"scheduledId": self.schedule_reminder(message, secs)}
        return {"response": self.generate_response(message)}

    def schedule_reminder(self, message: str, delay_seconds: float) -> str:
        when = self.clock() + delay_seconds
        return self.scheduler.register(
            when, "send_reminder", {"message": message}, agent=self.name, owner=self.identity
        )

    def generate_response(self, user_msg: str) -> str:
        """Append the user turn, ask the completion service, append its reply.

        The user message is persisted before the completion call, so on an
        upstream failure it stays in history and a retry does not duplicate it.
        """
        state = self.store.load(self.identity)
        state["history"].append({"role": "user", "content": user_msg})
        self.store.save(self.identity, state)

        reply = self.completion.complete(state["history"])

        state["history"].append({"role": "assistant", "content": reply})
        self.store.save(self.identity, state)
        return reply

    # --------- entry point B ----------
    def send_reminder(self, payload: Mapping[str, Any], task_id: Optional[str] = None) -> None:
        """Scheduler callback: add the reminder to history."""
        message = str(payload.get("message", ""))
        state = self.store.load(self.identity)
        if task_id is not None and task_id in state["fired_tasks"]:
            logger.info("Reminder %s for %r already applied; skipping redelivery", task_id, self.identity)
            return
        logger.info("Reminder triggered: %s", message)
        state["history"].append({"role": "assistant", "content": f"{REMINDER_PREFIX}{message}"})
        if task_id is not None:
            state["fired_tasks"].append(task_id)
            # Redelivery only happens while the task record exists, so recent ids suffice.
            del state["fired_tasks"][:-self.fired_task_limit]
        self.store.save(self.identity, state)
