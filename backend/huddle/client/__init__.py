"""Client half of the chat room: reconnecting connection and room view."""

from .connection import (
    ChatConnection,
    ConnectionObserver,
    ConnectionStatus,
    Notice,
    ReconnectPolicy,
)
from .errors import ClientError, NotConnectedError, ReconnectExhausted
from .room import LocalMessage, MessageStatus, RoomView
from .typing_indicator import TypingTracker

__all__ = [
    "ChatConnection",
    "ClientError",
    "ConnectionObserver",
    "ConnectionStatus",
    "LocalMessage",
    "MessageStatus",
    "NotConnectedError",
    "Notice",
    "ReconnectExhausted",
    "ReconnectPolicy",
    "RoomView",
    "TypingTracker",
]
