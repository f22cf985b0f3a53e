"""Pytest fixtures for PeerDrop tests."""

from pathlib import Path

import pytest

from channel.memory import MemoryAdapter, MemoryHub
from session.controller import SessionController
from transfer.models import Role


@pytest.fixture
def hub() -> MemoryHub:
    """A private rendezvous so tests never see each other's rooms."""
    return MemoryHub()


@pytest.fixture
def make_controller(hub: MemoryHub, tmp_path: Path):
    """Build controllers wired to the same in-memory hub."""

    def factory(role: Role = Role.INITIATOR, **kwargs) -> SessionController:
        options = {
            "save_dir": str(tmp_path / f"downloads-{role.value}"),
            "auto_send_delay": 0,
            "complete_delay": 0,
            "watchdog_delay": 0.05,
        }
        options.update(kwargs)
        return SessionController(lambda: MemoryAdapter(hub), role=role, **options)

    return factory
