"""Fakes and helpers shared by the test modules."""

import asyncio
import time

from channel.base import AdapterError, Channel
from session.state import Session
from transfer.models import ConnectionStatus, Role


class RecordingChannel(Channel):
    """An always-open channel that records what is sent through it."""

    def __init__(self, fail_on_send: int | None = None) -> None:
        super().__init__()
        self._open = True
        self.sent: list = []
        self._fail_on_send = fail_on_send

    async def start(self) -> None:
        pass

    async def send(self, message) -> None:
        if self._fail_on_send is not None and len(self.sent) == self._fail_on_send:
            raise AdapterError("send buffer full")
        self.sent.append(message)

    async def close(self) -> None:
        await self._mark_closed()


class EventRecorder:
    """Async callback that keeps a snapshot of every call."""

    def __init__(self) -> None:
        self.calls: list = []

    async def __call__(self, *args) -> None:
        args = tuple(a.model_copy() if hasattr(a, "model_copy") else a for a in args)
        self.calls.append(args[0] if len(args) == 1 else args)

    def of(self, event: str) -> list:
        return [data for name, data in self.calls if name == event]


def connected_session(role: Role, channel: Channel | None = None) -> Session:
    session = Session(role, token="abcd1234")
    session.channel = channel or RecordingChannel()
    session.status = ConnectionStatus.CONNECTED
    return session


async def wait_until(predicate, timeout: float = 3.0) -> None:
    """Yield to the loop until ``predicate()`` holds."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)
