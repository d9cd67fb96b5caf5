"""WebSocket endpoint for signaling clients.

    - WebSocket /ws/rooms/{room_id}: signaling for one room

Protocol Flow:
    1. Client connects → connection is subscribed to the room topic
    2. Client sends: {type: "JOIN_ROOM", roomId, userId, userName}
       → Room receives: {type: "ROOM_USERS", userIds: [...]}
       → Room receives: {type: "USER_JOINED", userId, userName}
    3. Client sends: {type: "OFFER" | "ANSWER" | "ICE_CANDIDATE", targetUserId, ...}
       → Target user alone receives the frame unchanged
    4. Client sends: {type: "LEAVE_ROOM", roomId, userId}
       → Room receives: {type: "USER_LEFT"} then {type: "ROOM_USERS"}
    5. On disconnect without leave → same as 4 for the remaining members

Every frame's ``userId`` becomes the connection's user address, so errors
and targeted frames reach a client even before it has joined.
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from .broker import ConnectionBroker, SessionContext
from .messages import ErrorCode, ErrorMessage, MessageParseError

logger = logging.getLogger(__name__)

router = APIRouter()

# Close code sent when a room is at capacity (1008 = Policy Violation)
ROOM_FULL_CLOSE_CODE = 1008


@router.websocket("/ws/rooms/{room_id}")
async def signaling_endpoint(websocket: WebSocket, room_id: str) -> None:
    """WebSocket endpoint for signaling within a room.

    Args:
        websocket: The WebSocket connection.
        room_id: Room whose topic this connection listens to.
    """
    state = websocket.app.state
    broker: ConnectionBroker = state.broker

    # Enforce max_participants from config (0 = no limit)
    max_participants = state.settings.signaling.max_participants
    if max_participants > 0 and broker.connection_count(room_id) >= max_participants:
        logger.warning(
            f"[WS] Room {room_id} is full ({max_participants} participants). "
            "Rejecting new connection."
        )
        await websocket.close(code=ROOM_FULL_CLOSE_CODE)
        return

    session = await broker.connect(websocket, room_id)
    logger.info(
        f"[WS] Session {session.session_id} accepted. "
        f"Room {room_id} now has {broker.connection_count(room_id)} connections"
    )

    try:
        while True:
            text = await websocket.receive_text()
            try:
                data = json.loads(text)
            except json.JSONDecodeError:
                logger.warning(f"[WS] Session {session.session_id} sent non-JSON frame")
                await _reject_frame(broker, session, room_id, None)
                continue

            logger.debug("[WS] Room %s received: type=%s", room_id,
                         data.get("type", "?") if isinstance(data, dict) else "?")

            if isinstance(data, dict) and isinstance(data.get("userId"), str):
                broker.bind_user(session, data["userId"])

            try:
                await state.signaling_router.receive(data, session)
            except MessageParseError as exc:
                logger.warning(f"[WS] Undecodable frame from session {session.session_id}: {exc}")
                await _reject_frame(broker, session, room_id, exc)

    except WebSocketDisconnect:
        logger.info(f"[WS] Session {session.session_id} disconnected from room {room_id}")
    finally:
        broker.disconnect(session)
        await state.session_listener.on_disconnect(session)


async def _reject_frame(
    broker: ConnectionBroker,
    session: SessionContext,
    room_id: str,
    exc: Optional[MessageParseError],
) -> None:
    """Tell one connection its frame could not be decoded."""
    error = ErrorMessage(
        roomId=(exc.room_id if exc and exc.room_id else room_id),
        userId=(exc.user_id if exc and exc.user_id else session.principal or ""),
        errorMessage="Invalid message format",
        errorCode=ErrorCode.INVALID_MESSAGE,
    )
    await broker.send_to_session(session, error)
