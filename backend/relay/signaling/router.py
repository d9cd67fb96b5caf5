"""Signaling router: validates and dispatches client messages.

Handled kinds and their effects:
    - JOIN_ROOM: register membership, subscribe the connection to the joined
      room, broadcast ROOM_USERS then USER_JOINED
    - LEAVE_ROOM: remove membership, broadcast USER_LEFT then ROOM_USERS,
      unsubscribe the connection from the room unless it is its URL room
    - OFFER / ANSWER / ICE_CANDIDATE: forward verbatim to the target user only

Error isolation:
    Every handler converts failures into a single ERROR message addressed to
    the originating user. Errors are never broadcast to the room and a handler
    never closes the connection.

    - sender or target not in the room -> USER_NOT_IN_ROOM
    - anything unexpected -> JOIN_ERROR / LEAVE_ERROR / OFFER_ERROR /
      ANSWER_ERROR / ICE_CANDIDATE_ERROR
"""
import functools
import logging
from typing import Any, Optional

from .broker import SessionContext, SignalingTransport
from .messages import (
    AnswerMessage,
    BaseMessage,
    ErrorCode,
    ErrorMessage,
    IceCandidateMessage,
    JoinRoomMessage,
    LeaveRoomMessage,
    MessageParseError,
    MessageType,
    OfferMessage,
    RoomUsersMessage,
    UserJoinedMessage,
    UserLeftMessage,
    parse_message,
)
from .registry import RoomRegistry

logger = logging.getLogger(__name__)

# message type -> (error code, human-readable text) for unexpected failures
FAILURES = {
    MessageType.JOIN_ROOM: (ErrorCode.JOIN_ERROR, "Failed to join room"),
    MessageType.LEAVE_ROOM: (ErrorCode.LEAVE_ERROR, "Failed to leave room"),
    MessageType.OFFER: (ErrorCode.OFFER_ERROR, "Failed to handle offer"),
    MessageType.ANSWER: (ErrorCode.ANSWER_ERROR, "Failed to handle answer"),
    MessageType.ICE_CANDIDATE: (
        ErrorCode.ICE_CANDIDATE_ERROR, "Failed to handle ICE candidate"
    ),
}


def error_boundary(message_type: MessageType):
    """Catch any failure in a handler and report it to the sender."""
    error_code, error_text = FAILURES[message_type]

    def decorator(handler):
        @functools.wraps(handler)
        async def wrapper(self, message, session=None):
            try:
                await handler(self, message, session)
            except Exception:
                logger.exception(
                    f"[Router] Error handling {message_type.value} "
                    f"from {message.userId} in room {message.roomId}"
                )
                await self.send_error(
                    message.roomId, message.userId, error_text, error_code
                )
        return wrapper

    return decorator


async def remove_member(
    registry: RoomRegistry, transport: SignalingTransport, room_id: str, user_id: str
) -> None:
    """Remove a member, then announce the departure and the new roster.

    Shared by explicit leave and disconnect cleanup.
    """
    registry.leave(room_id, user_id)
    await transport.broadcast_to_room(
        room_id, UserLeftMessage(roomId=room_id, userId=user_id)
    )
    await transport.broadcast_to_room(
        room_id, RoomUsersMessage.snapshot(room_id, registry.members(room_id))
    )


class SignalingRouter:
    """Routes inbound signaling messages against a room registry.

    Args:
        registry: Membership store shared with the disconnect listener.
        transport: Delivery primitives (room broadcast, user address).
    """

    def __init__(self, registry: RoomRegistry, transport: SignalingTransport) -> None:
        self.registry = registry
        self.transport = transport
        self._handlers = {
            MessageType.JOIN_ROOM: self.handle_join,
            MessageType.LEAVE_ROOM: self.handle_leave,
            MessageType.OFFER: self.handle_offer,
            MessageType.ANSWER: self.handle_answer,
            MessageType.ICE_CANDIDATE: self.handle_ice_candidate,
        }

    async def receive(self, data: Any, session: Optional[SessionContext] = None) -> None:
        """Decode a raw frame and dispatch it.

        A frame that names a known kind and a sender but fails validation is
        treated as a failure of that kind's handler and reported to the
        sender with the matching error code.

        Raises:
            MessageParseError: The frame cannot be attributed to a sender and
                kind; the caller decides how to report it.
        """
        try:
            message = parse_message(data)
        except MessageParseError as exc:
            if exc.message_type is None or exc.user_id is None:
                raise
            logger.warning(
                f"[Router] Malformed {exc.message_type.value} from {exc.user_id}: {exc}"
            )
            error_code, error_text = FAILURES[exc.message_type]
            await self.send_error(exc.room_id or "", exc.user_id, error_text, error_code)
            return

        await self.dispatch(message, session)

    async def dispatch(
        self, message: BaseMessage, session: Optional[SessionContext] = None
    ) -> None:
        handler = self._handlers.get(message.type)
        if handler is None:
            logger.warning(f"[Router] No handler for message type {message.type.value}")
            return
        await handler(message, session)

    # -------------------------------------------------------------------------
    # Membership
    # -------------------------------------------------------------------------

    @error_boundary(MessageType.JOIN_ROOM)
    async def handle_join(
        self, message: JoinRoomMessage, session: Optional[SessionContext] = None
    ) -> None:
        room_id = message.roomId
        user_id = message.userId
        logger.info(f"[Router] User {user_id} joining room {room_id}")

        if session is not None:
            session.remember(room_id, user_id)

        self.registry.join(room_id, user_id, message.userName)
        if session is not None:
            self.transport.follow_room(session, room_id)

        # Roster first, so the joining client is primed before peer events
        await self.transport.broadcast_to_room(
            room_id, RoomUsersMessage.snapshot(room_id, self.registry.members(room_id))
        )
        await self.transport.broadcast_to_room(
            room_id,
            UserJoinedMessage(roomId=room_id, userId=user_id, userName=message.userName),
        )

        logger.info(
            f"[Router] User {user_id} joined room {room_id}. "
            f"Room size: {self.registry.size(room_id)}"
        )

    @error_boundary(MessageType.LEAVE_ROOM)
    async def handle_leave(
        self, message: LeaveRoomMessage, session: Optional[SessionContext] = None
    ) -> None:
        room_id = message.roomId
        user_id = message.userId
        logger.info(f"[Router] User {user_id} leaving room {room_id}")

        await remove_member(self.registry, self.transport, room_id, user_id)

        if session is not None:
            self.transport.unfollow_room(session, room_id)
            if session.room_id == room_id and session.user_id == user_id:
                session.forget()

        logger.info(f"[Router] User {user_id} left room {room_id}")

    # -------------------------------------------------------------------------
    # Targeted signaling
    # -------------------------------------------------------------------------

    @error_boundary(MessageType.OFFER)
    async def handle_offer(
        self, message: OfferMessage, session: Optional[SessionContext] = None
    ) -> None:
        await self._forward(message, "offer")

    @error_boundary(MessageType.ANSWER)
    async def handle_answer(
        self, message: AnswerMessage, session: Optional[SessionContext] = None
    ) -> None:
        await self._forward(message, "answer")

    @error_boundary(MessageType.ICE_CANDIDATE)
    async def handle_ice_candidate(
        self, message: IceCandidateMessage, session: Optional[SessionContext] = None
    ) -> None:
        await self._forward(message, "ICE candidate")

    async def _forward(self, message: BaseMessage, label: str) -> None:
        room_id = message.roomId
        user_id = message.userId
        target_user_id = message.targetUserId
        logger.info(
            f"[Router] Handling {label} from {user_id} to {target_user_id} in room {room_id}"
        )

        if (not self.registry.is_member(room_id, user_id)
                or not self.registry.is_member(room_id, target_user_id)):
            logger.warning(
                f"[Router] Dropping {label}: {user_id} or {target_user_id} "
                f"not in room {room_id}"
            )
            await self.send_error(
                room_id, user_id, "User not in room", ErrorCode.USER_NOT_IN_ROOM
            )
            return

        await self.transport.send_to_user(target_user_id, message)
        logger.info(
            f"[Router] Forwarded {label} from {user_id} to {target_user_id} "
            f"in room {room_id}"
        )

    # -------------------------------------------------------------------------
    # Errors
    # -------------------------------------------------------------------------

    async def send_error(
        self, room_id: str, user_id: str, error_message: str, error_code: ErrorCode
    ) -> None:
        """Send an ERROR to the originating user's private address only."""
        error = ErrorMessage(
            roomId=room_id,
            userId=user_id,
            errorMessage=error_message,
            errorCode=error_code,
        )
        try:
            await self.transport.send_to_user(user_id, error)
        except Exception:
            logger.exception(
                f"[Router] Could not deliver {error_code.value} to {user_id}"
            )
