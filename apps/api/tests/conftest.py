"""Shared test fixtures."""
from __future__ import annotations

from typing import Any, Awaitable, Callable

import pytest

from teleconsult.core.config import Settings
from teleconsult.schemas.signaling import parse_inbound
from teleconsult.services.coordinator import ClientConnection, Coordinator


class DummyConnection:
    """Collects every message the coordinator sends to one connection."""

    def __init__(self, connection_id: str) -> None:
        self.connection_id = connection_id
        self.messages: list[dict] = []

    async def send(self, message: dict) -> None:
        self.messages.append(message)

    def signals(self, signal_type: str) -> list[dict]:
        return [m for m in self.messages if m.get("event") == "signal" and m.get("type") == signal_type]

    def events(self, name: str) -> list[dict]:
        return [m for m in self.messages if m.get("event") == name]


@pytest.fixture
def coordinator() -> Coordinator:
    return Coordinator(Settings(room_id_prefix="US-"))


@pytest.fixture
def connect(coordinator: Coordinator) -> Callable[[str], Awaitable[DummyConnection]]:
    async def _connect(connection_id: str) -> DummyConnection:
        connection = DummyConnection(connection_id)
        await coordinator.connect(ClientConnection(connection_id, connection.send))
        return connection

    return _connect


@pytest.fixture
def send(coordinator: Coordinator) -> Callable[..., Awaitable[None]]:
    async def _send(connection_id: str, event: str, **fields: Any) -> None:
        await coordinator.dispatch(connection_id, parse_inbound({"event": event, **fields}))

    return _send
