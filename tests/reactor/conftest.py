# tests/reactor/conftest.py
import asyncio
import json
import sys
from pathlib import Path
from typing import Iterator, List, Optional

import pytest


def setup_path():
    current_file_path = Path(__file__).resolve()
    project_root = current_file_path.parent.parent.parent
    if str(project_root) not in sys.path:
        sys.path.insert(0, str(project_root))

setup_path()

from reactor.actions.base import BaseAction
from reactor.models import ActionInfo, ActionType, Event


class RecordingAction(BaseAction):
    """Shell-typed action whose effect only records the events it saw."""
    action_type = ActionType.SHELL

    def __init__(self) -> None:
        super().__init__()
        self.performed: List[Event] = []
        self.done = asyncio.Event()

    async def perform(self, event: Event) -> None:
        self.performed.append(event)
        self.done.set()


class HangingAction(RecordingAction):
    """Effect never returns unless cancelled."""

    def __init__(self) -> None:
        super().__init__()
        self.started = asyncio.Event()
        self.cancelled = False

    async def perform(self, event: Event) -> None:
        self.started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise


class FakeBusSession:
    def __init__(self, events: Optional[List[Event]] = None, connect_error: Optional[Exception] = None):
        self.events = list(events or [])
        self.connect_error = connect_error
        self.connected = False
        self.stopped = False
        self.closed = False
        self.keepalives = 0

    def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    def consume(self) -> Iterator[Event]:
        return iter(self.events)

    def keepalive(self) -> None:
        self.keepalives += 1

    def stop(self) -> None:
        self.stopped = True

    def close(self) -> None:
        self.closed = True


def _info(project="proj1", package="pkgA", status="success", architecture="x86_64",
          type=ActionType.SHELL, params=None) -> ActionInfo:
    return ActionInfo(project=project, package=package, status=status,
                      architecture=architecture, type=type, params=params or {"cmd": "true"})


def _event(project="proj1", package="pkgA", status="success", arch="x86_64",
           routing_key="opensuse.obs.package.build_success", **extra) -> Event:
    body = {"project": project, "package": package, "arch": arch, **extra}
    if status is not None:
        body["status"] = status
    return Event.from_delivery(routing_key, json.dumps(body).encode())


@pytest.fixture
def make_info():
    return _info


@pytest.fixture
def make_event():
    return _event


@pytest.fixture
def recording_action():
    def factory(**criteria) -> RecordingAction:
        action = RecordingAction()
        action.load(_info(**criteria))
        return action
    return factory


@pytest.fixture
def hanging_action():
    def factory(**criteria) -> HangingAction:
        action = HangingAction()
        action.load(_info(**criteria))
        return action
    return factory


@pytest.fixture
def fake_session():
    return FakeBusSession
