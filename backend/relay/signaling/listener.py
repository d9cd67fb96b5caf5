"""Session event listener: room cleanup when a connection drops.

A client that closes its socket (tab closed, network lost) without sending
LEAVE_ROOM is removed here, using the room/user pair the router stashed in
the connection's SessionContext on join. Connections that never joined are
ignored silently.
"""
import logging

from .broker import SessionContext, SignalingTransport
from .registry import RoomRegistry
from .router import remove_member

logger = logging.getLogger(__name__)


class SessionEventListener:
    """Bridges transport disconnects to room membership cleanup."""

    def __init__(self, registry: RoomRegistry, transport: SignalingTransport) -> None:
        self.registry = registry
        self.transport = transport

    async def on_disconnect(self, session: SessionContext) -> None:
        """Handle a disconnect notification for one connection.

        Performs the same cleanup as an explicit leave: registry removal,
        then USER_LEFT and the updated ROOM_USERS to the rest of the room.
        Failures are logged and never propagated.

        Args:
            session: Context of the connection that went away.
        """
        try:
            room_id = session.room_id
            user_id = session.user_id

            if room_id is None or user_id is None:
                logger.debug(
                    f"[Listener] Session {session.session_id} disconnected "
                    "without roomId or userId"
                )
                return

            logger.info(f"[Listener] User {user_id} disconnected from room {room_id}")
            await remove_member(self.registry, self.transport, room_id, user_id)
            session.forget()
            logger.info(f"[Listener] User {user_id} cleanup completed for room {room_id}")
        except Exception:
            logger.exception(
                f"[Listener] Error during disconnect cleanup for session {session.session_id}"
            )
