"""Error taxonomy shared by the actor, scheduler and HTTP layer.

Every error carries the HTTP status it maps to, so the server can translate
it at the boundary with a single exception handler.
"""
from __future__ import annotations


class AgentError(Exception):
    """Base class for errors surfaced to callers."""

    status_code: int = 500
    retryable: bool = True   # whether a scheduler redelivery could succeed

    def __init__(self, detail: str = "Internal error") -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationError(AgentError):
    """Malformed or missing request fields. Never retried, no state change."""

    status_code = 400
    retryable = False


class RoutingError(AgentError):
    """No registered agent matches the request."""

    status_code = 404
    retryable = False


class UpstreamError(AgentError):
    """The completion provider failed (bad status or transport error)."""

    status_code = 500


class SchedulerFault(AgentError):
    """A scheduled task could not be durably registered."""

    status_code = 500
