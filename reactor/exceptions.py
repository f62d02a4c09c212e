"""
Exception classes for the reactor.

Connection-time errors are fatal to a run, record-level loading errors are
logged and the record skipped, and effect errors stay inside the action
invocation that produced them.
"""
from __future__ import annotations

from typing import Optional


class ReactorError(RuntimeError):
    """Base exception for all reactor errors."""

    def __init__(self, message: str, *, project: Optional[str] = None):
        super().__init__(message)
        self.project = project

    def __str__(self) -> str:
        base_msg = super().__str__()
        if self.project:
            return f"{base_msg} (project={self.project})"
        return base_msg


class MissingCredentials(ReactorError):
    """Raised before any network I/O when the bus user or host is empty."""
    pass


class ConnectFailure(ReactorError):
    """
    Raised when dialing the bus, opening the channel, declaring the exchange
    or queue, or binding the queue fails.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause

    def __str__(self) -> str:
        base_msg = super().__str__()
        if self.cause is not None:
            return f"{base_msg}: {self.cause}"
        return base_msg


class ConnectionLost(ConnectFailure):
    """Raised from the delivery stream when an established connection drops."""
    pass


class ConfigUnreadable(ReactorError):
    """Raised when an actions document cannot be read or has the wrong shape."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path

    def __str__(self) -> str:
        base_msg = super().__str__()
        if self.path:
            return f"{base_msg} (path={self.path})"
        return base_msg


class InvalidActionRecord(ReactorError):
    """A single configured rule failed validation; the rule is skipped."""

    def __init__(self, message: str, key_path: str = "", *, project: Optional[str] = None):
        super().__init__(message, project=project)
        self.key_path = key_path

    def __str__(self) -> str:
        base_msg = RuntimeError.__str__(self)
        if self.key_path:
            return f"{base_msg} (at {self.key_path})"
        return base_msg


class UnknownActionType(ReactorError):
    """The rule names an action type no handler is registered for."""

    def __init__(self, action_type: str, *, project: Optional[str] = None):
        super().__init__(f"Unknown action type: {action_type}", project=project)
        self.action_type = action_type


class ActionEffectFailure(ReactorError):
    """An outbound call or local command failed. Logged, never propagated."""
    pass
