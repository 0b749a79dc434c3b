"""Data models shared by the chat room components.

These are the structures stored in the registry and history buffer and
serialised onto the wire. Field names follow the wire protocol (camelCase)
so ``model_dump(mode="json")`` can be sent as-is.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Participant(BaseModel):
    """Identity claimed by a client in its join frame.

    The room trusts this claim verbatim; verifying it is the job of
    whatever identity provider sits in front of the room.

    Attributes:
        id: Participant identifier, unique per active session.
        username: Display name shown to other participants.
        avatar: Optional avatar reference (usually a URL).
    """
    id: str = Field(..., min_length=1, description="Participant ID")
    username: str = Field(..., description="Display name")
    avatar: Optional[str] = Field(default=None, description="Avatar reference")


class OnlineUser(BaseModel):
    """One entry of the presence set as sent in ``online_users``."""
    id: str
    username: str
    avatar: Optional[str] = None
    lastSeen: datetime


class ChatMessage(BaseModel):
    """A chat message as stored in history and broadcast to the room.

    The server never tracks delivery status; that is client-local metadata.

    Attributes:
        id: Ordering token assigned by the history buffer on append.
        userId: Sender's participant ID.
        username: Sender's display name.
        content: Message text.
        timestamp: When the message was appended (UTC).
        avatar: Sender's avatar reference, if any.
    """
    id: str = Field(..., description="Server-assigned message ID")
    userId: str = Field(..., description="Sender participant ID")
    username: str = Field(..., description="Sender display name")
    content: str = Field(..., description="Message content")
    timestamp: datetime = Field(default_factory=utcnow, description="Append time (UTC)")
    avatar: Optional[str] = Field(default=None, description="Sender avatar reference")


@dataclass(frozen=True, eq=False)
class Session:
    """One live, transport-bound registration of a participant.

    ``transport`` is whatever the server uses to talk to the client (a
    Starlette ``WebSocket`` in production); it is only ever compared by
    identity.
    """
    participant: Participant
    transport: Any
    joinedAt: datetime = field(default_factory=utcnow)

    @property
    def participant_id(self) -> str:
        return self.participant.id

    def to_online_user(self) -> OnlineUser:
        # lastSeen is the join time; there are no liveness pings
        return OnlineUser(
            id=self.participant.id,
            username=self.participant.username,
            avatar=self.participant.avatar,
            lastSeen=self.joinedAt,
        )
