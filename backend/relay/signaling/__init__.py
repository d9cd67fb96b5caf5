"""Signaling module: room registry, message routing and session cleanup."""

from .broker import ConnectionBroker, SessionContext, SignalingTransport
from .listener import SessionEventListener
from .messages import ErrorCode, MessageParseError, MessageType, decode_message, parse_message
from .registry import RoomRegistry
from .router import SignalingRouter

__all__ = [
    "ConnectionBroker",
    "ErrorCode",
    "MessageParseError",
    "MessageType",
    "RoomRegistry",
    "SessionContext",
    "SessionEventListener",
    "SignalingRouter",
    "SignalingTransport",
    "decode_message",
    "parse_message",
]
