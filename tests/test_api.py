"""Tests for the REST API and the WebSocket event stream."""

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from channel.memory import MemoryAdapter, MemoryHub
from main import create_app
from session.controller import SessionController


@pytest.fixture
def client(hub: MemoryHub, tmp_path: Path):
    controller = SessionController(
        lambda: MemoryAdapter(hub),
        save_dir=str(tmp_path / "downloads"),
        auto_send_delay=0,
        complete_delay=0,
    )
    with TestClient(create_app(controller)) as client:
        yield client


class TestSessionRoutes:
    """Tests for /api/session."""

    def test_initial_session(self, client: TestClient) -> None:
        body = client.get("/api/session").json()

        assert body["role"] == "initiator"
        assert body["status"] == "disconnected"
        assert body["transfer"]["phase"] == "idle"

    def test_create_session(self, client: TestClient) -> None:
        response = client.post("/api/session")

        assert response.status_code == 200
        body = response.json()
        assert len(body["token"]) == 8
        assert body["session"]["status"] == "waiting"
        assert client.get("/api/session").json()["token"] == body["token"]

    def test_blank_join_is_bad_request(self, client: TestClient) -> None:
        response = client.post("/api/session/join", json={"token": "   "})

        assert response.status_code == 400

    def test_join_requires_receive_mode(self, client: TestClient) -> None:
        response = client.post("/api/session/join", json={"token": "abcd1234"})

        assert response.status_code == 400
        assert "receive mode" in response.json()["detail"]

    def test_unknown_room_is_not_found(self, client: TestClient) -> None:
        assert client.post("/api/session/switch-role").json() == {"role": "responder"}

        response = client.post("/api/session/join", json={"token": "deadbeef"})

        assert response.status_code == 404
        assert client.get("/api/session").json()["status"] == "error"


class TestSendRoutes:
    """Tests for /api/send."""

    def test_missing_file(self, client: TestClient, tmp_path: Path) -> None:
        response = client.post("/api/send", json={"file_path": str(tmp_path / "nope.txt")})

        assert response.status_code == 400

    def test_empty_file(self, client: TestClient, tmp_path: Path) -> None:
        path = tmp_path / "empty.txt"
        path.write_bytes(b"")

        response = client.post("/api/send", json={"file_path": str(path)})

        assert response.status_code == 400
        assert "empty" in response.json()["detail"]

    def test_queue_and_reset(self, client: TestClient, tmp_path: Path) -> None:
        path = tmp_path / "notes.txt"
        path.write_text("hello")

        response = client.post("/api/send", json={"file_path": str(path)})
        assert response.status_code == 200
        assert client.get("/api/session").json()["queued_file"] == "notes.txt"

        assert client.post("/api/send/reset").json() == {"status": "reset"}
        assert client.get("/api/session").json()["queued_file"] is None


class TestSettingsRoutes:
    """Tests for /api/settings."""

    def test_get_and_update_save_dir(self, client: TestClient, tmp_path: Path) -> None:
        assert client.get("/api/settings").json()["save_dir"] == str(tmp_path / "downloads")
        target = tmp_path / "elsewhere"

        response = client.put("/api/settings", json={"save_dir": str(target)})

        assert response.status_code == 200
        assert target.is_dir()
        assert client.get("/api/settings").json()["save_dir"] == str(target)


class TestWebSocket:
    """Tests for /ws."""

    def test_session_events_are_broadcast(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            client.post("/api/session")

            first = ws.receive_json()
            second = ws.receive_json()

        assert first["event"] == "session_state"
        assert second["event"] == "session_state"
        assert second["data"]["status"] == "waiting"
