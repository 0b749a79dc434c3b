"""Client-side view of the chat room.

The view is what a UI renders: the message list (with client-local delivery
status), who is online, who is typing and how many messages arrived while
the UI was in the background. It is fed by server frames through
``apply()`` and by the connection when the user sends a message.

Message status lifecycle (own messages only):
    sending → sent       the frame was written to the transport
    sending/sent → delivered  the server's new_message echo arrived; the
                         local copy is re-keyed to the server-assigned ID
    sending → failed     the frame could not be written

Messages from other participants are always ``delivered`` on arrival, and
status is never changed after ``delivered``.
"""
import logging
import uuid
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

from pydantic import ValidationError

from huddle.chat.models import ChatMessage, OnlineUser, Participant, utcnow

from .typing_indicator import DEFAULT_TYPING_EXPIRY, TypingTracker

logger = logging.getLogger(__name__)


class MessageStatus(str, Enum):
    """Client-local delivery status of a message.

    Attributes:
        SENDING: Optimistically rendered, not yet written to the transport.
        SENT: Written to the transport, waiting for the server echo.
        DELIVERED: Confirmed by the server broadcast.
        FAILED: Could not be written to the transport.
    """
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"


PENDING_STATUSES = (MessageStatus.SENDING, MessageStatus.SENT)


class LocalMessage(ChatMessage):
    """A chat message plus its client-local status. Never sent to the server."""
    status: MessageStatus = MessageStatus.DELIVERED

    @classmethod
    def delivered(cls, message: ChatMessage) -> "LocalMessage":
        return cls(**message.model_dump(), status=MessageStatus.DELIVERED)


class RoomView:
    """Client-local state of the room, updated from server frames.

    Args:
        self_id: Participant ID of the local user, used to recognise the
            echo of our own messages.
        typing_expiry: Seconds a typing indicator lasts without a refresh.
    """

    def __init__(
        self,
        self_id: Optional[str] = None,
        typing_expiry: float = DEFAULT_TYPING_EXPIRY,
    ) -> None:
        self.self_id = self_id
        self.messages: List[LocalMessage] = []
        self.online_users: Dict[str, OnlineUser] = {}
        self.typing = TypingTracker(expiry=typing_expiry)
        self.unread_count = 0
        self.focused = True
        # IDs of server messages received since the current join
        self._live_ids: Set[str] = set()

        self._handlers = {
            "message_history": self._on_message_history,
            "online_users": self._on_online_users,
            "user_joined": self._on_user_joined,
            "user_left": self._on_user_left,
            "new_message": self._on_new_message,
            "user_typing": self._on_user_typing,
        }

    # =========================================================================
    # Server frames
    # =========================================================================

    def apply(self, frame: Dict[str, Any]) -> Optional[LocalMessage]:
        """Apply one server frame.

        Returns:
            The delivered message for ``new_message`` frames that added or
            confirmed a message, otherwise None.
        """
        frame_type = frame.get("type")
        try:
            handler = self._handlers.get(frame_type)
            if handler is None:
                logger.debug("Ignoring unknown server frame type=%s", frame_type)
                return None
            return handler(frame)
        except (KeyError, TypeError, ValidationError) as exc:
            logger.warning("Dropping malformed %s frame: %s", frame.get("type"), exc)
            return None

    def begin_session(self) -> None:
        """Start tracking live messages for a fresh join."""
        self._live_ids.clear()

    def _on_message_history(self, frame: Dict[str, Any]) -> None:
        history = [LocalMessage.delivered(ChatMessage.model_validate(m)) for m in frame["messages"]]
        replayed = {m.id for m in history}
        # broadcasts can overtake the history replay on a busy room
        live = [
            m for m in self.messages
            if m.status is MessageStatus.DELIVERED
            and m.id in self._live_ids
            and m.id not in replayed
        ]
        known = {m.id for m in self.messages if m.status is MessageStatus.DELIVERED}
        # own messages whose echo was lost with the old transport
        unclaimed = [m for m in history if m.id not in known and m.userId == self.self_id]
        local_only = []
        for local in self.messages:
            if local.status is MessageStatus.DELIVERED:
                continue
            if local.status in PENDING_STATUSES:
                match = next(
                    (m for m in unclaimed if m.content == local.content), None
                )
                if match is not None:
                    unclaimed.remove(match)
                    continue
            local_only.append(local)
        self.messages = history + live + local_only

    def _on_online_users(self, frame: Dict[str, Any]) -> None:
        users = [OnlineUser.model_validate(u) for u in frame["users"]]
        self.online_users = {u.id: u for u in users}

    def _on_user_joined(self, frame: Dict[str, Any]) -> None:
        user = Participant.model_validate(frame["user"])
        self.online_users[user.id] = OnlineUser(
            id=user.id, username=user.username, avatar=user.avatar, lastSeen=utcnow()
        )

    def _on_user_left(self, frame: Dict[str, Any]) -> None:
        user = Participant.model_validate(frame["user"])
        self.online_users.pop(user.id, None)
        self.typing.clear(user.username)

    def _on_new_message(self, frame: Dict[str, Any]) -> Optional[LocalMessage]:
        message = ChatMessage.model_validate(frame["message"])
        if any(m.id == message.id for m in self.messages):
            return None
        self._live_ids.add(message.id)
        delivered = LocalMessage.delivered(message)

        if message.userId == self.self_id:
            for index, local in enumerate(self.messages):
                if (
                    local.status in PENDING_STATUSES
                    and local.userId == message.userId
                    and local.content == message.content
                ):
                    self.messages[index] = delivered
                    return delivered

        self.messages.append(delivered)
        self.typing.clear(message.username)
        if message.userId != self.self_id and not self.focused:
            self.unread_count += 1
        return delivered

    def _on_user_typing(self, frame: Dict[str, Any]) -> None:
        if frame["userId"] == self.self_id:
            return
        if frame.get("isTyping", True):
            self.typing.refresh(frame["username"])
        else:
            self.typing.clear(frame["username"])

    # =========================================================================
    # Own messages
    # =========================================================================

    def add_pending(self, participant: Participant, content: str) -> LocalMessage:
        """Optimistically add an outgoing message in ``sending`` state."""
        local = LocalMessage(
            id=f"temp-{uuid.uuid4()}",
            userId=participant.id,
            username=participant.username,
            content=content,
            avatar=participant.avatar,
            status=MessageStatus.SENDING,
        )
        self.messages.append(local)
        return local

    def mark_sent(self, local: LocalMessage) -> None:
        self._set_status(local, MessageStatus.SENT, allowed=(MessageStatus.SENDING,))

    def mark_failed(self, local: LocalMessage) -> None:
        self._set_status(local, MessageStatus.FAILED, allowed=PENDING_STATUSES)

    def _set_status(
        self,
        local: LocalMessage,
        status: MessageStatus,
        allowed: Iterable[MessageStatus],
    ) -> None:
        for message in self.messages:
            if message.id == local.id and message.status in allowed:
                message.status = status
                local.status = status
                return

    # =========================================================================
    # Unread tracking
    # =========================================================================

    def set_focused(self, focused: bool) -> None:
        self.focused = focused
        if focused:
            self.mark_read()

    def mark_read(self) -> None:
        self.unread_count = 0

    @property
    def typing_users(self) -> List[str]:
        return self.typing.names()

    def close(self) -> None:
        self.typing.close()
