"""Maps (agent name, identity) to the live actor instance, creating it on first use."""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Type

from .agent import DEFAULT_REMINDER_DELAY, Completion, ReminderAgent
from .errors import RoutingError, ValidationError
from .scheduler import DiskScheduler, ScheduledTask
from .store import DiskStateStore

logger = logging.getLogger(__name__)


class IdentityRouter:
    def __init__(
        self,
        *,
        store: DiskStateStore,
        scheduler: DiskScheduler,
        completion: Completion,
        clock: Callable[[], float] = time.time,
        default_delay: float = DEFAULT_REMINDER_DELAY,
        agents: Optional[Mapping[str, Type[ReminderAgent]]] = None,
    ) -> None:
        self.store = store
        self.scheduler = scheduler
        self.completion = completion
        self.clock = clock
        self.default_delay = default_delay
        self.agents: Dict[str, Type[ReminderAgent]] = dict(agents or {ReminderAgent.name: ReminderAgent})
        self.default_agent = next(iter(self.agents))
        self._instances: Dict[Tuple[str, str], ReminderAgent] = {}
        self._lock = threading.Lock()  # guards instance creation only
        scheduler.set_dispatcher(self.deliver)

    def get(self, agent_name: str, identity: Any) -> ReminderAgent:
        agent_cls = self.agents.get(agent_name)
        if agent_cls is None:
            raise RoutingError(f"No agent named {agent_name!r}")
        if not isinstance(identity, str) or not identity.strip():
            raise ValidationError("Missing id")

        key = (agent_name, identity)
        with self._lock:
            agent = self._instances.get(key)
            if agent is None:
                agent = agent_cls(
                    identity,
                    store=self.store,
                    scheduler=self.scheduler,
                    completion=self.completion,
                    clock=self.clock,
                    default_delay=self.default_delay,
                )
                self._instances[key] = agent
                logger.debug("Created %s for %r", agent_name, identity)
        return agent

    def handle(self, agent_name: str, identity: Any, body: Any) -> Dict[str, Any]:
        """Route an inbound request to its actor and return the actor's reply."""
        return self.get(agent_name, identity).request(body)

    def deliver(self, task: ScheduledTask) -> Future:
        """Scheduler dispatcher: queue a fired task on its owning actor's mailbox."""
        return self.get(task.agent, task.owner).deliver(task)

    def shutdown(self) -> None:
        with self._lock:
            agents = list(self._instances.values())
            self._instances.clear()
        for agent in agents:
            agent.shutdown()
