"""WebSocket connection broker: topics, user addresses and session contexts.

This is the transport collaborator the signaling core talks to. It offers
exactly two delivery primitives to the core:

    - room-wide broadcast to the room topic ``/topic/room/{roomId}``
    - point-to-point delivery to the user address ``/user/{userId}/queue/signal``

plus a per-connection ``SessionContext`` that the router fills in on join and
the disconnect listener reads back.

Performance Notes:
    - Delivery uses asyncio.gather() so one slow socket does not serialize
      the others
    - Failed sends drop the connection from every topic and user address;
      the endpoint's receive loop then sees the disconnect and runs cleanup
    - Senders never wait for client acknowledgement
"""
import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .messages import BaseMessage

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

DEFAULT_ROOM_TOPIC_PREFIX = "/topic/room/"
DEFAULT_USER_QUEUE = "/queue/signal"


# =============================================================================
# Session Context
# =============================================================================


@dataclass(eq=False)
class SessionContext:
    """State attached to one physical connection for its whole lifetime.

    Attributes:
        websocket: The underlying connection (anything with ``send_json``).
        session_id: Broker-assigned connection ID.
        room_id: Room stashed by the router on join, None before join.
        user_id: User stashed by the router on join, None before join.
        principal: User ID the transport addresses this connection as.
        home_room_id: Room named in the connection URL; its topic is kept
            until the connection closes.
    """
    websocket: Any
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    home_room_id: Optional[str] = None
    room_id: Optional[str] = None
    user_id: Optional[str] = None
    principal: Optional[str] = None

    def remember(self, room_id: str, user_id: str) -> None:
        self.room_id = room_id
        self.user_id = user_id

    def forget(self) -> None:
        self.room_id = None
        self.user_id = None

    @property
    def joined(self) -> bool:
        return self.room_id is not None and self.user_id is not None


# =============================================================================
# Transport interface
# =============================================================================


class SignalingTransport(ABC):
    """Delivery primitives the router and listener depend on."""

    @abstractmethod
    async def broadcast_to_room(self, room_id: str, message: BaseMessage) -> None:
        """Deliver a message to every connection subscribed to the room topic."""

    @abstractmethod
    async def send_to_user(self, user_id: str, message: BaseMessage) -> None:
        """Deliver a message to the connections addressed as this user only."""

    def follow_room(self, session: SessionContext, room_id: str) -> None:
        """Make a connection receive a room's broadcasts. No-op by default."""

    def unfollow_room(self, session: SessionContext, room_id: str) -> None:
        """Stop a connection receiving a room's broadcasts. No-op by default."""


# =============================================================================
# Connection Broker
# =============================================================================


class ConnectionBroker(SignalingTransport):
    """In-process broker mapping topics and user addresses to live sockets.

    This implementation is designed for a single asyncio event loop; its
    maps are only touched from coroutines running on that loop.
    """

    def __init__(
        self,
        room_topic_prefix: str = DEFAULT_ROOM_TOPIC_PREFIX,
        user_queue: str = DEFAULT_USER_QUEUE,
    ) -> None:
        self.room_topic_prefix = room_topic_prefix
        self.user_queue = user_queue

        # destination -> subscribed sessions
        self.subscriptions: Dict[str, List[SessionContext]] = {}

        # user_id -> sessions addressed as that user
        self.user_sessions: Dict[str, List[SessionContext]] = {}

        # session_id -> session, for every live connection
        self.sessions: Dict[str, SessionContext] = {}

        # room_id -> connections counted against the room but not yet accepted
        self._pending: Dict[str, int] = {}

    # -------------------------------------------------------------------------
    # Addressing
    # -------------------------------------------------------------------------

    def room_topic(self, room_id: str) -> str:
        return f"{self.room_topic_prefix}{room_id}"

    def user_destination(self, user_id: str) -> str:
        return f"/user/{user_id}{self.user_queue}"

    # -------------------------------------------------------------------------
    # Session lifecycle
    # -------------------------------------------------------------------------

    async def connect(self, websocket: Any, room_id: str) -> SessionContext:
        """Accept a connection and subscribe it to the room topic.

        Args:
            websocket: The WebSocket connection to accept.
            room_id: Room whose topic the connection listens to.

        Returns:
            The new connection's SessionContext.
        """
        # Counted before the accept await so concurrent capacity checks see it
        self._pending[room_id] = self._pending.get(room_id, 0) + 1
        try:
            await websocket.accept()
        finally:
            self._pending[room_id] -= 1
            if not self._pending[room_id]:
                del self._pending[room_id]

        session = SessionContext(websocket=websocket, home_room_id=room_id)
        self.sessions[session.session_id] = session
        self.subscribe(session, self.room_topic(room_id))
        logger.info(
            f"[Broker] Session {session.session_id} connected to "
            f"{self.room_topic(room_id)}"
        )
        return session

    def subscribe(self, session: SessionContext, destination: str) -> None:
        subscribers = self.subscriptions.setdefault(destination, [])
        if session not in subscribers:
            subscribers.append(session)

    def unsubscribe(self, session: SessionContext, destination: str) -> None:
        subscribers = self.subscriptions.get(destination)
        if not subscribers or session not in subscribers:
            return
        subscribers.remove(session)
        if not subscribers:
            del self.subscriptions[destination]

    def bind_user(self, session: SessionContext, user_id: str) -> None:
        """Address this connection as ``user_id`` for point-to-point delivery.

        A connection has one principal; rebinding moves it to the new user
        address.
        """
        if session.principal == user_id:
            return
        if session.principal is not None:
            self._unbind_user(session)
        session.principal = user_id
        self.user_sessions.setdefault(user_id, []).append(session)

    def _unbind_user(self, session: SessionContext) -> None:
        user_id = session.principal
        if user_id is None:
            return
        sessions = self.user_sessions.get(user_id)
        if sessions and session in sessions:
            sessions.remove(session)
            if not sessions:
                del self.user_sessions[user_id]
        session.principal = None

    def disconnect(self, session: SessionContext) -> None:
        """Drop a connection from every topic and user address.

        The session's room/user stash is left intact so the disconnect
        listener can still read it.
        """
        for destination in list(self.subscriptions):
            self.unsubscribe(session, destination)
        self._unbind_user(session)
        self.sessions.pop(session.session_id, None)

    def follow_room(self, session: SessionContext, room_id: str) -> None:
        if session.session_id not in self.sessions:
            return
        self.subscribe(session, self.room_topic(room_id))

    def unfollow_room(self, session: SessionContext, room_id: str) -> None:
        """Unsubscribe from a joined room, keeping the connection's URL room."""
        if room_id == session.home_room_id:
            return
        self.unsubscribe(session, self.room_topic(room_id))

    def connection_count(self, room_id: str) -> int:
        """Get the number of connections on a room topic, including ones being accepted."""
        subscribed = len(self.subscriptions.get(self.room_topic(room_id), []))
        return subscribed + self._pending.get(room_id, 0)

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------

    async def broadcast_to_room(self, room_id: str, message: BaseMessage) -> None:
        destination = self.room_topic(room_id)
        await self._deliver(destination, self.subscriptions.get(destination, []), message)

    async def send_to_user(self, user_id: str, message: BaseMessage) -> None:
        await self._deliver(
            self.user_destination(user_id),
            self.user_sessions.get(user_id, []),
            message,
        )

    async def send_to_session(self, session: SessionContext, message: BaseMessage) -> None:
        """Deliver a message to a single connection regardless of its address."""
        await self._deliver(f"session:{session.session_id}", [session], message)

    async def _deliver(
        self, destination: str, sessions: List[SessionContext], message: BaseMessage
    ) -> None:
        recipients = list(sessions)
        if not recipients:
            logger.debug(f"[Broker] No recipients at {destination} for {message.type.value}")
            return

        payload = message.to_wire()
        results = await asyncio.gather(
            *[self._safe_send(session, payload) for session in recipients],
            return_exceptions=True
        )

        failed = [
            session for session, success in zip(recipients, results)
            if success is not True
        ]
        for session in failed:
            self.disconnect(session)
            logger.debug(f"[Broker] Removed dead session {session.session_id}")

    async def _safe_send(self, session: SessionContext, payload: dict) -> bool:
        """Send a payload to one connection.

        Returns:
            True if successful, False if the connection failed.
        """
        try:
            await session.websocket.send_json(payload)
            return True
        except Exception as e:
            logger.debug(f"[Broker] Failed to send to session {session.session_id}: {e}")
            return False
