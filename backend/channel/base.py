"""
Channel adapter contract.

A Channel is an ordered, reliable, bidirectional message pipe that is
already negotiated by the time the session sees it. Adapters own
rendezvous and transport selection; the session only sees the events
``open``, ``data``, ``close`` and ``error``.
"""

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)

# Channel event names
OPEN = "open"
DATA = "data"
CLOSE = "close"
ERROR = "error"


class AdapterError(Exception):
    """Adapter initialization or transport failure."""


class PeerUnavailableError(AdapterError):
    """The dial target is not known to the rendezvous."""


class Channel(ABC):
    """One peer-to-peer message pipe."""

    def __init__(self) -> None:
        self._event_callbacks: list = []  # async fn(event, payload)
        self._open = False
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._open and not self._closed

    def on_event(self, callback) -> None:
        """Register callback: async fn(event: str, payload)."""
        self._event_callbacks.append(callback)

    async def _emit(self, event: str, payload=None) -> None:
        """Deliver an event to all callbacks, in registration order."""
        for cb in self._event_callbacks:
            try:
                await cb(event, payload)
            except Exception as e:
                logger.error(f"Channel {event} callback error: {e}", exc_info=True)

    async def _mark_open(self) -> None:
        self._open = True
        await self._emit(OPEN)

    async def _mark_closed(self, error: Exception | None = None) -> None:
        """Emit ``error`` (if any) then ``close``, exactly once."""
        if self._closed:
            return
        self._closed = True
        if error is not None:
            await self._emit(ERROR, error)
        await self._emit(CLOSE)

    @abstractmethod
    async def start(self) -> None:
        """Begin delivering events; fires ``open`` once the pipe is usable."""

    @abstractmethod
    async def send(self, message) -> None:
        """Enqueue a tagged dict or a plain string for delivery."""

    @abstractmethod
    async def close(self) -> None:
        """Close the pipe. Safe to call more than once."""


class ChannelAdapter(ABC):
    """Creates channels between an initiator and a responder."""

    def __init__(self) -> None:
        self._connection_callbacks: list = []  # async fn(channel)

    def on_connection(self, callback) -> None:
        """Register callback: async fn(channel) for peers attaching to us."""
        self._connection_callbacks.append(callback)

    async def _accept(self, channel: Channel) -> None:
        """Hand an attached channel to the listeners, then start it."""
        for cb in self._connection_callbacks:
            await cb(channel)
        await channel.start()

    @abstractmethod
    async def start(self, token: str | None = None) -> None:
        """
        Initialize the adapter.

        With a token the adapter listens under that token so a responder
        can dial it. Raises AdapterError on failure.
        """

    @abstractmethod
    async def connect(self, token: str) -> Channel:
        """
        Dial the initiator listening under ``token``.

        Returns an unstarted channel; the caller registers its callbacks
        and then calls ``start()``. Raises PeerUnavailableError when the
        token is unknown.
        """

    @abstractmethod
    async def destroy(self) -> None:
        """Release every resource. Safe to call more than once."""
