# reactor/protocols.py
from __future__ import annotations

from typing import Iterator, Protocol, TYPE_CHECKING, runtime_checkable

if TYPE_CHECKING:
    from .models import ActionInfo, Event


@runtime_checkable
class Action(Protocol):
    def load(self, info: "ActionInfo") -> None: ...

    def describe(self) -> "ActionInfo": ...

    async def on_event(self, event: "Event") -> bool: ...


@runtime_checkable
class BusSession(Protocol):
    """Blocking handle on the message bus; driven from a single thread."""

    def connect(self) -> None: ...

    def consume(self) -> Iterator["Event"]: ...

    def keepalive(self) -> None:
        """Service connection housekeeping while consume is not being advanced."""
        ...

    def stop(self) -> None:
        """Thread safe request for ``consume`` to return."""
        ...

    def close(self) -> None: ...
