"""Server half of the chat room: registry, history, broadcaster and engine."""

from .broadcaster import Broadcaster
from .engine import ChatEngine, ChatRoom
from .errors import ChatError, MalformedFrame, TransportFailure
from .history import HistoryBuffer
from .models import ChatMessage, OnlineUser, Participant, Session
from .registry import SessionRegistry

__all__ = [
    "Broadcaster",
    "ChatEngine",
    "ChatError",
    "ChatMessage",
    "ChatRoom",
    "HistoryBuffer",
    "MalformedFrame",
    "OnlineUser",
    "Participant",
    "Session",
    "SessionRegistry",
    "TransportFailure",
]
