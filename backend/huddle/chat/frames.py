"""Wire frames exchanged over the chat WebSocket.

Every frame is a JSON object with a ``type`` discriminator.

Client -> server:
    - join:    {type, user: {id, username, avatar?}}
    - message: {type, userId, username, content, avatar?}
    - typing:  {type, userId, username, isTyping}

Server -> client:
    - message_history: {type, messages: [...]}
    - online_users:    {type, users: [...]}
    - user_joined:     {type, user}
    - user_left:       {type, user}
    - new_message:     {type, message}
    - user_typing:     {type, userId, username, isTyping}
"""
import json
from typing import Any, Dict, Iterable, Literal, Optional, Type, Union

from pydantic import BaseModel, ValidationError

from .errors import MalformedFrame
from .models import ChatMessage, Participant, Session


# =============================================================================
# Inbound frames
# =============================================================================


class JoinFrame(BaseModel):
    type: Literal["join"] = "join"
    user: Participant


class MessageFrame(BaseModel):
    type: Literal["message"] = "message"
    userId: str
    username: str
    content: str = ""
    avatar: Optional[str] = None


class TypingFrame(BaseModel):
    type: Literal["typing"] = "typing"
    userId: str
    username: str
    isTyping: bool = True


InboundFrame = Union[JoinFrame, MessageFrame, TypingFrame]

_INBOUND_TYPES: Dict[str, Type[BaseModel]] = {
    "join": JoinFrame,
    "message": MessageFrame,
    "typing": TypingFrame,
}


def parse_frame(raw: Union[str, bytes]) -> InboundFrame:
    """Decode one inbound frame.

    Raises:
        MalformedFrame: If the payload is not valid UTF-8 JSON, has no or an
            unknown ``type``, or is missing required fields.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedFrame(f"invalid encoding: {exc}") from exc

    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise MalformedFrame(f"invalid JSON: {exc}", raw=raw[:200]) from exc

    if not isinstance(data, dict):
        raise MalformedFrame("frame is not an object", raw=raw[:200])

    frame_type = data.get("type")
    model = _INBOUND_TYPES.get(frame_type) if isinstance(frame_type, str) else None
    if model is None:
        raise MalformedFrame(f"unknown frame type: {frame_type!r}", raw=raw[:200])

    try:
        return model.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        reason = first.get("msg", "invalid frame")
        raise MalformedFrame(reason, raw=raw[:200]) from exc


# =============================================================================
# Outbound frames
# =============================================================================


def message_history(messages: Iterable[ChatMessage]) -> Dict[str, Any]:
    return {
        "type": "message_history",
        "messages": [msg.model_dump(mode="json") for msg in messages],
    }


def online_users(sessions: Iterable[Session]) -> Dict[str, Any]:
    return {
        "type": "online_users",
        "users": [s.to_online_user().model_dump(mode="json") for s in sessions],
    }


def user_joined(participant: Participant) -> Dict[str, Any]:
    return {"type": "user_joined", "user": participant.model_dump(mode="json")}


def user_left(participant: Participant) -> Dict[str, Any]:
    return {"type": "user_left", "user": participant.model_dump(mode="json")}


def new_message(message: ChatMessage) -> Dict[str, Any]:
    return {"type": "new_message", "message": message.model_dump(mode="json")}


def user_typing(user_id: str, username: str, is_typing: bool) -> Dict[str, Any]:
    return {
        "type": "user_typing",
        "userId": user_id,
        "username": username,
        "isTyping": is_typing,
    }
