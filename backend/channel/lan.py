"""
LAN adapter: TCP channels, UDP broadcast rendezvous.

The initiator listens on an ephemeral TCP port and announces its room
code; the responder resolves the code and dials. TCP gives the ordered,
loss-free delivery the session relies on.
"""

import asyncio
import logging

from channel.base import DATA, AdapterError, Channel, ChannelAdapter
from channel.rendezvous import RoomRendezvous
from channel.wire import WireError, recv_message, send_message
from config import ROOM_LOOKUP_TIMEOUT

logger = logging.getLogger(__name__)


class TcpChannel(Channel):
    """A Channel over one TCP connection."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        super().__init__()
        self._reader = reader
        self._writer = writer
        self._read_task: asyncio.Task | None = None

    @property
    def peer_address(self) -> str:
        peer = self._writer.get_extra_info("peername")
        return f"{peer[0]}:{peer[1]}" if peer else "unknown"

    async def start(self) -> None:
        if self._open or self._closed:
            return
        await self._mark_open()
        self._read_task = asyncio.create_task(self._read_loop())

    async def _read_loop(self) -> None:
        error: Exception | None = None
        try:
            while not self._closed:
                message = await recv_message(self._reader)
                await self._emit(DATA, message)
        except asyncio.IncompleteReadError:
            logger.info(f"Peer {self.peer_address} closed the connection")
        except asyncio.CancelledError:
            return
        except (WireError, OSError) as e:
            logger.error(f"Channel read error from {self.peer_address}: {e}")
            error = e
        # Close handlers may await Server.wait_closed(), which needs this connection gone.
        self._close_writer()
        await self._mark_closed(error)

    async def send(self, message) -> None:
        if not self.is_open:
            raise AdapterError("Channel is not open")
        try:
            await send_message(self._writer, message)
        except (ConnectionError, OSError) as e:
            raise AdapterError(f"Send failed: {e}") from e

    async def close(self) -> None:
        if self._closed:
            return
        task = self._read_task
        if task and task is not asyncio.current_task():
            task.cancel()
        self._close_writer()
        await self._mark_closed()

    def _close_writer(self) -> None:
        if not self._writer.is_closing():
            self._writer.close()


class LanAdapter(ChannelAdapter):
    """ChannelAdapter for peers on the same broadcast domain."""

    def __init__(
        self,
        lookup_timeout: float = ROOM_LOOKUP_TIMEOUT,
        rendezvous: RoomRendezvous | None = None,
        host: str = "0.0.0.0",
    ) -> None:
        super().__init__()
        self._lookup_timeout = lookup_timeout
        self._rendezvous = rendezvous or RoomRendezvous()
        self._host = host
        self._server: asyncio.Server | None = None
        self._channels: list[TcpChannel] = []
        self._peer_attached = False

    @property
    def listen_port(self) -> int:
        if not self._server or not self._server.sockets:
            return 0
        return self._server.sockets[0].getsockname()[1]

    async def start(self, token: str | None = None) -> None:
        if not token:
            return
        try:
            self._server = await asyncio.start_server(
                self._handle_incoming_connection, self._host, 0
            )
        except OSError as e:
            raise AdapterError(f"Could not bind a transfer port: {e}") from e
        logger.info(f"Room {token} listening on TCP port {self.listen_port}")
        await self._rendezvous.announce(token, self.listen_port)

    async def _handle_incoming_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Attach the first peer; turn away everyone after it."""
        if self._peer_attached:
            logger.warning("Rejecting extra peer; room already has a receiver")
            writer.close()
            return
        self._peer_attached = True
        channel = TcpChannel(reader, writer)
        self._channels.append(channel)
        logger.info(f"Peer attached from {channel.peer_address}")
        await self._accept(channel)

    async def connect(self, token: str) -> Channel:
        """
        Resolve ``token`` and dial it.

        The channel opens as soon as TCP connects. A room that already has
        a receiver hangs up right after, so the caller sees ``open`` then
        ``close``.
        """
        host, port = await self._rendezvous.resolve(token, self._lookup_timeout)
        await self._rendezvous.stop()
        try:
            reader, writer = await asyncio.open_connection(host, port)
        except OSError as e:
            raise AdapterError(f"Could not reach {host}:{port}: {e}") from e
        channel = TcpChannel(reader, writer)
        self._channels.append(channel)
        return channel

    async def destroy(self) -> None:
        for channel in self._channels:
            await channel.close()
        self._channels.clear()
        await self._rendezvous.stop()
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
