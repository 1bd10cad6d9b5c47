"""Exceptions raised by the Pulse scheduler core."""

from __future__ import annotations


class PulseError(Exception):
    """Base exception for Pulse failures."""

    def __init__(self, code: str, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize the error with a code and structured details."""
        super().__init__(message)
        self.code = code
        self.details = details or {}


class AgentInvocationError(PulseError):
    """Raised when the agent RPC fails at the transport or GraphQL layer."""

    pass


class PulseLogNotFoundError(PulseError):
    """Raised when a pulse log id does not exist."""

    pass


class PulseQueueError(PulseError):
    """Raised when the job queue or beat schedule cannot be updated."""

    pass
