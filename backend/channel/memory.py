"""
In-process loopback adapter.

Both ends live on the same event loop and share a MemoryHub that plays
the part of the rendezvous server. Delivery goes through one asyncio
queue per direction, so it is ordered and loss-free like the real thing.
"""

import asyncio
import logging

from channel.base import (
    DATA,
    AdapterError,
    Channel,
    ChannelAdapter,
    PeerUnavailableError,
)

logger = logging.getLogger(__name__)

_EOF = object()


class MemoryHub:
    """Registry of adapters listening under a token."""

    def __init__(self) -> None:
        self._listeners: dict[str, "MemoryAdapter"] = {}

    def register(self, token: str, adapter: "MemoryAdapter") -> None:
        if token in self._listeners:
            raise AdapterError(f"ID {token} is taken")
        self._listeners[token] = adapter

    def unregister(self, token: str) -> None:
        self._listeners.pop(token, None)

    def lookup(self, token: str) -> "MemoryAdapter":
        adapter = self._listeners.get(token)
        if adapter is None:
            raise PeerUnavailableError(f"Could not connect to peer {token}")
        return adapter


default_hub = MemoryHub()


class MemoryChannel(Channel):
    """One end of an in-process pipe."""

    def __init__(self) -> None:
        super().__init__()
        self._peer: "MemoryChannel | None" = None
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._pump_task: asyncio.Task | None = None

    @classmethod
    def pair(cls) -> tuple["MemoryChannel", "MemoryChannel"]:
        a, b = cls(), cls()
        a._peer, b._peer = b, a
        return a, b

    async def start(self) -> None:
        if self._open or self._closed:
            return
        await self._mark_open()
        self._pump_task = asyncio.create_task(self._pump())

    async def _pump(self) -> None:
        """Deliver queued messages one at a time."""
        while not self._closed:
            message = await self._inbox.get()
            if message is _EOF:
                await self._mark_closed()
                return
            await self._emit(DATA, message)

    async def send(self, message) -> None:
        if self._closed or self._peer is None:
            raise AdapterError("Channel is closed")
        if isinstance(message, dict):
            message = dict(message)
        self._peer._inbox.put_nowait(message)

    async def close(self) -> None:
        await self._shutdown(None)

    async def abort(self, error: Exception) -> None:
        """Tear the pipe down with a transport error."""
        await self._shutdown(error)

    async def _shutdown(self, error: Exception | None) -> None:
        if self._closed:
            return
        if self._peer is not None:
            self._peer._inbox.put_nowait(_EOF)
        await self._mark_closed(error)
        task = self._pump_task
        if task and task is not asyncio.current_task():
            task.cancel()


class MemoryAdapter(ChannelAdapter):
    """Adapter whose rendezvous is a MemoryHub."""

    def __init__(self, hub: MemoryHub | None = None) -> None:
        super().__init__()
        self._hub = hub or default_hub
        self._token: str | None = None
        self._channels: list[MemoryChannel] = []
        self._destroyed = False

    async def start(self, token: str | None = None) -> None:
        if self._destroyed:
            raise AdapterError("Adapter is destroyed")
        if token:
            self._hub.register(token, self)
            self._token = token
            logger.debug(f"Memory adapter listening as {token}")

    async def connect(self, token: str) -> Channel:
        if self._destroyed:
            raise AdapterError("Adapter is destroyed")
        listener = self._hub.lookup(token)
        local, remote = MemoryChannel.pair()
        self._channels.append(local)
        await listener._attach(remote)
        return local

    async def _attach(self, channel: MemoryChannel) -> None:
        self._channels.append(channel)
        await self._accept(channel)

    async def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True
        if self._token:
            self._hub.unregister(self._token)
        for channel in self._channels:
            await channel.close()
        self._channels.clear()
