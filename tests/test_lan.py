"""Tests for the LAN adapter over localhost TCP."""

import json

import pytest

from channel.base import PeerUnavailableError
from channel.lan import LanAdapter
from channel.rendezvous import BeaconProtocol, RoomRendezvous
from config import APP_ID
from fakes import EventRecorder, wait_until
from transfer.models import FILE_RECEIVED_SUCCESSFULLY, FileChunk


class FakeRendezvous:
    """Resolves room codes from a dict instead of UDP beacons."""

    def __init__(self) -> None:
        self.rooms: dict[str, int] = {}

    async def announce(self, token: str, transfer_port: int) -> None:
        self.rooms[token] = transfer_port

    async def resolve(self, token: str, timeout: float) -> tuple[str, int]:
        if token not in self.rooms:
            raise PeerUnavailableError(f"Could not connect to peer {token}")
        return "127.0.0.1", self.rooms[token]

    async def stop(self) -> None:
        pass


@pytest.fixture
def rendezvous() -> FakeRendezvous:
    return FakeRendezvous()


async def open_room(rendezvous: FakeRendezvous, token: str = "room1"):
    """Start a listening adapter; returns it plus the events of its peer channel."""
    adapter = LanAdapter(rendezvous=rendezvous, host="127.0.0.1")
    events = EventRecorder()

    async def on_connection(channel) -> None:
        channel.on_event(events)
        adapter.accepted = channel

    adapter.on_connection(on_connection)
    await adapter.start(token)
    return adapter, events


async def dial(rendezvous: FakeRendezvous, token: str = "room1"):
    adapter = LanAdapter(rendezvous=rendezvous)
    channel = await adapter.connect(token)
    events = EventRecorder()
    channel.on_event(events)
    await channel.start()
    return adapter, channel, events


class TestLanAdapter:
    """Tests for LanAdapter and TcpChannel."""

    @pytest.mark.asyncio
    async def test_messages_cross_the_wire(self, rendezvous) -> None:
        listener, incoming = await open_room(rendezvous)
        dialer, channel, replies = await dial(rendezvous)
        data = bytes(range(256)) * 64

        await channel.send(FileChunk(data=data, chunk_index=0, total_chunks=1).to_message())
        await wait_until(lambda: incoming.of("data"))
        await listener.accepted.send(FILE_RECEIVED_SUCCESSFULLY)
        await wait_until(lambda: replies.of("data"))

        chunk = incoming.of("data")[0]
        assert chunk["data"] == data
        assert chunk["totalChunks"] == 1
        assert replies.of("data") == [FILE_RECEIVED_SUCCESSFULLY]
        await dialer.destroy()
        await listener.destroy()

    @pytest.mark.asyncio
    async def test_peer_close_is_reported(self, rendezvous) -> None:
        listener, incoming = await open_room(rendezvous)
        dialer, channel, _ = await dial(rendezvous)
        await wait_until(lambda: incoming.of("open"))

        await channel.close()
        await wait_until(lambda: incoming.of("close"))

        assert incoming.of("error") == []
        assert not listener.accepted.is_open
        await dialer.destroy()
        await listener.destroy()

    @pytest.mark.asyncio
    async def test_second_peer_turned_away(self, rendezvous) -> None:
        listener, _ = await open_room(rendezvous)
        first, _, _ = await dial(rendezvous)
        second, channel, events = await dial(rendezvous)

        await wait_until(lambda: events.of("close"))

        # TCP connects before the room hangs up, so open comes first.
        assert [name for name, _ in events.calls] == ["open", "close"]
        assert not channel.is_open
        for adapter in (second, first, listener):
            await adapter.destroy()

    @pytest.mark.asyncio
    async def test_destroy_from_close_handler(self, rendezvous) -> None:
        """A listener can shut itself down while handling its peer's close."""
        listener = LanAdapter(rendezvous=rendezvous, host="127.0.0.1")

        async def on_connection(channel) -> None:
            async def on_event(event, payload) -> None:
                if event == "close":
                    await listener.destroy()

            channel.on_event(on_event)

        listener.on_connection(on_connection)
        await listener.start("room1")
        dialer, channel, _ = await dial(rendezvous)
        await channel.send("hello")

        await dialer.destroy()
        await wait_until(lambda: listener.listen_port == 0)

    @pytest.mark.asyncio
    async def test_unknown_room(self, rendezvous) -> None:
        with pytest.raises(PeerUnavailableError):
            await LanAdapter(rendezvous=rendezvous).connect("nobody")

    @pytest.mark.asyncio
    async def test_listen_port_released_on_destroy(self, rendezvous) -> None:
        listener, _ = await open_room(rendezvous)
        assert listener.listen_port == rendezvous.rooms["room1"]

        await listener.destroy()

        assert listener.listen_port == 0


class TestBeaconProtocol:
    """Tests for parsing room beacons."""

    def test_valid_beacon_recorded(self) -> None:
        rendezvous = RoomRendezvous()
        protocol = BeaconProtocol(rendezvous)
        payload = json.dumps({"app_id": APP_ID, "token": "abcd1234", "transfer_port": 50123})

        protocol.datagram_received(payload.encode(), ("192.168.1.20", 41235))

        assert rendezvous._seen["abcd1234"] == ("192.168.1.20", 50123)

    def test_foreign_app_ignored(self) -> None:
        rendezvous = RoomRendezvous()
        protocol = BeaconProtocol(rendezvous)
        payload = json.dumps({"app_id": "other-app", "token": "abcd1234", "transfer_port": 1})

        protocol.datagram_received(payload.encode(), ("192.168.1.20", 41235))

        assert rendezvous._seen == {}

    @pytest.mark.parametrize("payload", [b"\xff\xfe", b"not json", b"[1, 2]", b'{"token": "x"}'])
    def test_garbage_ignored(self, payload: bytes) -> None:
        rendezvous = RoomRendezvous()

        BeaconProtocol(rendezvous).datagram_received(payload, ("10.0.0.1", 41235))

        assert rendezvous._seen == {}
