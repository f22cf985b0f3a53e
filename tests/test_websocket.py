"""Tests for the WebSocket event broadcaster."""

import json
from unittest.mock import AsyncMock

import pytest

from api.websocket import ConnectionManager


class TestConnectionManager:
    """Tests for ConnectionManager."""

    @pytest.mark.asyncio
    async def test_connect_and_disconnect_counted(self) -> None:
        manager = ConnectionManager()
        ws = AsyncMock()

        await manager.connect(ws)
        assert manager.connection_count == 1
        ws.accept.assert_awaited_once()

        await manager.disconnect(ws)
        await manager.disconnect(ws)
        assert manager.connection_count == 0

    @pytest.mark.asyncio
    async def test_events_broadcast_as_json(self) -> None:
        manager = ConnectionManager()
        ws = AsyncMock()
        await manager.connect(ws)

        await manager.handle_event("notification", {"type": "info", "message": "hi"})

        sent = json.loads(ws.send_text.await_args.args[0])
        assert sent == {"event": "notification", "data": {"type": "info", "message": "hi"}}

    @pytest.mark.asyncio
    async def test_dead_client_dropped(self) -> None:
        manager = ConnectionManager()
        alive, dead = AsyncMock(), AsyncMock()
        dead.send_text.side_effect = RuntimeError("socket closed")
        await manager.connect(alive)
        await manager.connect(dead)

        await manager.broadcast("session_state", {})

        assert manager.connection_count == 1
        alive.send_text.assert_awaited_once()
