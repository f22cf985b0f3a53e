"""
UDP broadcast rendezvous for room codes on the LAN.

An initiator periodically broadcasts a beacon carrying its room code and
TCP port. A responder listens for beacons until it sees the code it was
given, which resolves the code to an address it can dial.
"""

import asyncio
import json
import logging
import socket

from pydantic import BaseModel, ValidationError

from channel.base import AdapterError, PeerUnavailableError
from config import APP_ID, DISCOVERY_INTERVAL, DISCOVERY_PORT

logger = logging.getLogger(__name__)


class RoomBeacon(BaseModel):
    """The JSON payload broadcast over UDP."""
    app_id: str
    token: str
    transfer_port: int


class BeaconProtocol(asyncio.DatagramProtocol):
    """asyncio UDP protocol for receiving room beacons."""

    def __init__(self, rendezvous: "RoomRendezvous"):
        self.rendezvous = rendezvous

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        try:
            beacon = RoomBeacon(**json.loads(data.decode("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError, TypeError, ValidationError) as e:
            logger.debug(f"Ignoring invalid beacon from {addr}: {e}")
            return
        if beacon.app_id != APP_ID:
            return
        self.rendezvous.record(beacon.token, addr[0], beacon.transfer_port)

    def error_received(self, exc: Exception) -> None:
        logger.warning(f"Rendezvous UDP error: {exc}")


def _broadcast_addresses() -> set[str]:
    """Limited broadcast plus a /24 guess for every local address."""
    addresses = {"255.255.255.255", "127.255.255.255"}
    try:
        _, _, ips = socket.gethostbyname_ex(socket.gethostname())
        for ip in ips:
            if not ip.startswith("127."):
                parts = ip.split(".")
                if len(parts) == 4:
                    parts[3] = "255"
                    addresses.add(".".join(parts))
    except OSError as e:
        logger.debug(f"Error resolving local IPs: {e}")
    return addresses


def _udp_socket(bind_port: int) -> socket.socket:
    # SO_REUSEADDR before bind so several instances can share the port
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
    sock.setblocking(False)
    sock.bind(("0.0.0.0", bind_port))
    return sock


class RoomRendezvous:
    """Announces our room or resolves someone else's."""

    def __init__(self, port: int = DISCOVERY_PORT, interval: float = DISCOVERY_INTERVAL) -> None:
        self._port = port
        self._interval = interval
        self._transport: asyncio.DatagramTransport | None = None
        self._broadcast_task: asyncio.Task | None = None
        self._seen: dict[str, tuple[str, int]] = {}
        self._waiters: dict[str, asyncio.Future] = {}

    async def announce(self, token: str, transfer_port: int) -> None:
        """Start broadcasting a beacon for ``token``."""
        loop = asyncio.get_running_loop()
        try:
            sock = _udp_socket(0)
            transport, _ = await loop.create_datagram_endpoint(
                asyncio.DatagramProtocol, sock=sock
            )
        except OSError as e:
            raise AdapterError(f"Could not open rendezvous socket: {e}") from e
        self._transport = transport

        beacon = RoomBeacon(app_id=APP_ID, token=token, transfer_port=transfer_port)
        payload = json.dumps(beacon.model_dump()).encode("utf-8")
        self._broadcast_task = asyncio.create_task(self._broadcast_loop(payload))
        logger.info(f"Announcing room {token} on UDP port {self._port}")

    async def _broadcast_loop(self, payload: bytes) -> None:
        """Periodically send the room beacon."""
        while True:
            for address in _broadcast_addresses():
                try:
                    self._transport.sendto(payload, (address, self._port))
                except OSError:
                    # Some interfaces do not support broadcast
                    pass
            await asyncio.sleep(self._interval)

    async def resolve(self, token: str, timeout: float) -> tuple[str, int]:
        """Wait for a beacon carrying ``token``; return (ip, port)."""
        if self._transport is None:
            loop = asyncio.get_running_loop()
            try:
                sock = _udp_socket(self._port)
                self._transport, _ = await loop.create_datagram_endpoint(
                    lambda: BeaconProtocol(self), sock=sock
                )
            except OSError as e:
                raise AdapterError(f"Could not listen for rooms: {e}") from e

        if token in self._seen:
            return self._seen[token]

        future = asyncio.get_running_loop().create_future()
        self._waiters[token] = future
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            raise PeerUnavailableError(f"Could not connect to peer {token}") from None
        finally:
            self._waiters.pop(token, None)

    def record(self, token: str, ip: str, port: int) -> None:
        self._seen[token] = (ip, port)
        waiter = self._waiters.get(token)
        if waiter and not waiter.done():
            waiter.set_result((ip, port))

    async def stop(self) -> None:
        if self._broadcast_task:
            self._broadcast_task.cancel()
            self._broadcast_task = None
        if self._transport:
            self._transport.close()
            self._transport = None
