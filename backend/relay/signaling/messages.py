"""Signaling message envelope and the tagged union of message kinds.

Every frame exchanged with a browser shares one envelope:

    {"type": ..., "roomId": ..., "userId": ..., "targetUserId": ..., "timestamp": ...}

The ``type`` field is the discriminator. Inbound kinds are JOIN_ROOM,
LEAVE_ROOM, OFFER, ANSWER and ICE_CANDIDATE; the server emits USER_JOINED,
USER_LEFT, ROOM_USERS and ERROR, and forwards OFFER/ANSWER/ICE_CANDIDATE
unchanged to their target.

Session descriptions and ICE candidates are opaque: they are held as raw JSON
values and never inspected.
"""
import time
from enum import Enum
from typing import Annotated, Any, Iterable, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


def _now_ms() -> int:
    return int(time.time() * 1000)


class MessageType(str, Enum):
    """Discriminator values, wire-compatible with the browser client."""
    JOIN_ROOM = "JOIN_ROOM"
    LEAVE_ROOM = "LEAVE_ROOM"
    OFFER = "OFFER"
    ANSWER = "ANSWER"
    ICE_CANDIDATE = "ICE_CANDIDATE"
    USER_JOINED = "USER_JOINED"
    USER_LEFT = "USER_LEFT"
    ERROR = "ERROR"
    ROOM_USERS = "ROOM_USERS"


INBOUND_TYPES = frozenset({
    MessageType.JOIN_ROOM,
    MessageType.LEAVE_ROOM,
    MessageType.OFFER,
    MessageType.ANSWER,
    MessageType.ICE_CANDIDATE,
})


class ErrorCode(str, Enum):
    """Machine-readable codes carried by ERROR messages.

    Attributes:
        USER_NOT_IN_ROOM: Sender or target is not a member of the named room.
        JOIN_ERROR: Unexpected failure while handling JOIN_ROOM.
        LEAVE_ERROR: Unexpected failure while handling LEAVE_ROOM.
        OFFER_ERROR: Unexpected failure while handling OFFER.
        ANSWER_ERROR: Unexpected failure while handling ANSWER.
        ICE_CANDIDATE_ERROR: Unexpected failure while handling ICE_CANDIDATE.
        INVALID_MESSAGE: Frame could not be decoded into any known kind.
    """
    USER_NOT_IN_ROOM = "USER_NOT_IN_ROOM"
    JOIN_ERROR = "JOIN_ERROR"
    LEAVE_ERROR = "LEAVE_ERROR"
    OFFER_ERROR = "OFFER_ERROR"
    ANSWER_ERROR = "ANSWER_ERROR"
    ICE_CANDIDATE_ERROR = "ICE_CANDIDATE_ERROR"
    INVALID_MESSAGE = "INVALID_MESSAGE"


# =============================================================================
# Envelope
# =============================================================================


class BaseMessage(BaseModel):
    """Common envelope shared by every message kind.

    Attributes:
        type: Discriminator.
        roomId: Room the message concerns.
        userId: Sender's user ID (for server events, the subject user).
        targetUserId: Recipient for targeted kinds, otherwise None.
        timestamp: Send time in milliseconds since epoch.
    """
    model_config = ConfigDict(extra="ignore")

    type: MessageType
    roomId: str = Field(..., description="Room ID")
    userId: str = Field(..., description="Sender user ID")
    targetUserId: Optional[str] = Field(default=None, description="Target user ID")
    timestamp: int = Field(
        default_factory=_now_ms,
        description="Send time in milliseconds since epoch"
    )

    def to_wire(self) -> dict:
        """Serialize to the JSON-compatible dict sent over the socket."""
        return self.model_dump(mode="json")


# =============================================================================
# Inbound kinds
# =============================================================================


class JoinRoomMessage(BaseMessage):
    type: Literal[MessageType.JOIN_ROOM] = MessageType.JOIN_ROOM
    userName: str = Field(..., description="Display name")


class LeaveRoomMessage(BaseMessage):
    type: Literal[MessageType.LEAVE_ROOM] = MessageType.LEAVE_ROOM


class OfferMessage(BaseMessage):
    type: Literal[MessageType.OFFER] = MessageType.OFFER
    targetUserId: str
    offer: Any = Field(..., description="Opaque session description")


class AnswerMessage(BaseMessage):
    type: Literal[MessageType.ANSWER] = MessageType.ANSWER
    targetUserId: str
    answer: Any = Field(..., description="Opaque session description")


class IceCandidateMessage(BaseMessage):
    type: Literal[MessageType.ICE_CANDIDATE] = MessageType.ICE_CANDIDATE
    targetUserId: str
    candidate: Any = Field(..., description="Opaque ICE candidate")


# =============================================================================
# Outbound kinds
# =============================================================================


class UserJoinedMessage(BaseMessage):
    type: Literal[MessageType.USER_JOINED] = MessageType.USER_JOINED
    userName: Optional[str] = None


class UserLeftMessage(BaseMessage):
    type: Literal[MessageType.USER_LEFT] = MessageType.USER_LEFT


class RoomUsersMessage(BaseMessage):
    """Snapshot of a room's members.

    Server-originated, so ``userId`` is null. ``userIds`` is sorted to keep
    the snapshot stable for clients and tests.
    """
    type: Literal[MessageType.ROOM_USERS] = MessageType.ROOM_USERS
    userId: Optional[str] = None
    userIds: List[str] = Field(default_factory=list)

    @classmethod
    def snapshot(cls, room_id: str, members: Iterable[str]) -> "RoomUsersMessage":
        return cls(roomId=room_id, userIds=sorted(members))


class ErrorMessage(BaseMessage):
    type: Literal[MessageType.ERROR] = MessageType.ERROR
    errorMessage: str
    errorCode: ErrorCode


InboundMessage = Annotated[
    Union[
        JoinRoomMessage,
        LeaveRoomMessage,
        OfferMessage,
        AnswerMessage,
        IceCandidateMessage,
    ],
    Field(discriminator="type"),
]

SignalMessage = Annotated[
    Union[
        JoinRoomMessage,
        LeaveRoomMessage,
        OfferMessage,
        AnswerMessage,
        IceCandidateMessage,
        UserJoinedMessage,
        UserLeftMessage,
        RoomUsersMessage,
        ErrorMessage,
    ],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter = TypeAdapter(InboundMessage)
_signal_adapter: TypeAdapter = TypeAdapter(SignalMessage)


# =============================================================================
# Decoding
# =============================================================================


class MessageParseError(ValueError):
    """Raised when a frame cannot be decoded into an inbound message.

    Carries whatever could be salvaged from the raw frame so the caller can
    still address an error back to the sender.

    Attributes:
        message_type: The inbound kind named by the frame, if it named one.
        room_id: ``roomId`` from the frame if it was a string.
        user_id: ``userId`` from the frame if it was a string.
    """

    def __init__(
        self,
        detail: str,
        message_type: Optional[MessageType] = None,
        room_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> None:
        super().__init__(detail)
        self.message_type = message_type
        self.room_id = room_id
        self.user_id = user_id

    @classmethod
    def from_frame(cls, data: Any, detail: str) -> "MessageParseError":
        if not isinstance(data, dict):
            return cls(detail)

        message_type = None
        try:
            candidate = MessageType(data.get("type"))
        except ValueError:
            candidate = None
        if candidate in INBOUND_TYPES:
            message_type = candidate

        room_id = data.get("roomId")
        user_id = data.get("userId")
        return cls(
            detail,
            message_type=message_type,
            room_id=room_id if isinstance(room_id, str) else None,
            user_id=user_id if isinstance(user_id, str) else None,
        )


def parse_message(data: Any) -> BaseMessage:
    """Decode a raw frame into one of the five inbound kinds.

    Args:
        data: Decoded JSON frame.

    Returns:
        The typed inbound message.

    Raises:
        MessageParseError: Unknown or missing discriminator, or a known kind
            with missing/invalid fields.
    """
    try:
        return _inbound_adapter.validate_python(data)
    except ValidationError as exc:
        raise MessageParseError.from_frame(data, str(exc)) from exc


def decode_message(data: Any) -> BaseMessage:
    """Decode a frame of any kind, inbound or outbound."""
    try:
        return _signal_adapter.validate_python(data)
    except ValidationError as exc:
        raise MessageParseError.from_frame(data, str(exc)) from exc
