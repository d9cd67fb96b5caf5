"""Shared test fixtures and configuration for signaling relay tests."""
from typing import List, Tuple

import pytest
from fastapi.testclient import TestClient

from relay.config import AppSettings
from relay.main import create_app
from relay.signaling.broker import SignalingTransport
from relay.signaling.listener import SessionEventListener
from relay.signaling.registry import RoomRegistry
from relay.signaling.router import SignalingRouter


class RecordingTransport(SignalingTransport):
    """Transport double that records every delivery in order.

    Each entry is ``(kind, address, wire_payload)`` where kind is "room" or
    "user".
    """

    def __init__(self) -> None:
        self.events: List[Tuple[str, str, dict]] = []
        # (action, room_id, session_id) for follow/unfollow calls
        self.topic_changes: List[Tuple[str, str, str]] = []

    async def broadcast_to_room(self, room_id, message) -> None:
        self.events.append(("room", room_id, message.to_wire()))

    async def send_to_user(self, user_id, message) -> None:
        self.events.append(("user", user_id, message.to_wire()))

    def follow_room(self, session, room_id) -> None:
        self.topic_changes.append(("follow", room_id, session.session_id))

    def unfollow_room(self, session, room_id) -> None:
        self.topic_changes.append(("unfollow", room_id, session.session_id))

    def to_room(self, room_id: str) -> List[dict]:
        return [p for kind, addr, p in self.events if kind == "room" and addr == room_id]

    def to_user(self, user_id: str) -> List[dict]:
        return [p for kind, addr, p in self.events if kind == "user" and addr == user_id]

    def types(self) -> List[str]:
        return [p["type"] for _, _, p in self.events]


@pytest.fixture
def registry():
    """Fresh registry per test."""
    return RoomRegistry()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def signaling_router(registry, transport):
    return SignalingRouter(registry, transport)


@pytest.fixture
def listener(registry, transport):
    return SessionEventListener(registry, transport)


@pytest.fixture
def app():
    """Isolated application with default settings."""
    return create_app(AppSettings())


@pytest.fixture
def api_client(app):
    """Provide a TestClient for an isolated app.

    Not used as a context manager, so the lifespan hook does not run.
    """
    return TestClient(app)
