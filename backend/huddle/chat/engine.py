"""Per-connection frame dispatch for the chat room.

The engine ties the room together: inbound frames are parsed, routed to the
registry / history buffer, and the resulting events are handed to the
broadcaster.

Protocol Flow:
    1. Client sends: {type: "join", user}
       → Joiner receives: {type: "message_history", messages: [...]}
       → Others receive: {type: "user_joined", user}
       → Joiner receives: {type: "online_users", users: [...]}
    2. Client sends: {type: "message", userId, username, content}
       → Everyone (sender included) receives: {type: "new_message", message}
    3. Client sends: {type: "typing", userId, username, isTyping}
       → Others receive: {type: "user_typing", ...}
    4. Transport closes
       → Remaining sessions receive: {type: "user_left", user}

Ordering:
    Frames from one connection are handled one at a time, so one sender's
    messages are broadcast in the order received. A join and a message
    append are serialised against each other, so every message is either in
    the joiner's replayed history or broadcast to the joiner, never both.
"""
import logging
import threading
from typing import Any, Optional

from . import frames
from .broadcaster import DEFAULT_SEND_TIMEOUT, Broadcaster
from .errors import MalformedFrame, TransportFailure
from .history import DEFAULT_HISTORY_LIMIT, HistoryBuffer
from .models import ChatMessage, Participant, Session
from .registry import SessionRegistry

logger = logging.getLogger(__name__)


class ChatEngine:
    """Handles join, message, typing and disconnect for every connection."""

    def __init__(
        self,
        registry: SessionRegistry,
        history: HistoryBuffer,
        broadcaster: Broadcaster,
    ) -> None:
        self.registry = registry
        self.history = history
        self.broadcaster = broadcaster
        # Serialises (register + history snapshot) against (append + recipients)
        self._lock = threading.Lock()

    async def handle_frame(self, transport: Any, raw: Any) -> None:
        """Parse and dispatch one inbound frame.

        Malformed frames are logged and dropped; they never close the
        connection.
        """
        try:
            frame = frames.parse_frame(raw)
        except MalformedFrame as exc:
            logger.warning("[Engine] Dropping malformed frame: %s", exc.reason)
            return

        logger.debug("[Engine] Received frame type=%s", frame.type)

        if isinstance(frame, frames.JoinFrame):
            await self.join(transport, frame.user)
        elif isinstance(frame, frames.MessageFrame):
            await self.post_message(
                frame.userId, frame.username, frame.content, frame.avatar
            )
        elif isinstance(frame, frames.TypingFrame):
            await self.broadcaster.relay_typing(
                frame.userId, frame.username, frame.isTyping, origin=transport
            )

    async def join(self, transport: Any, participant: Participant) -> Session:
        """Register ``participant`` on ``transport`` and bring it up to date.

        A second join for the same participant ID replaces the earlier
        session; the earlier transport is left open.
        """
        with self._lock:
            session, _previous = self.registry.register(participant, transport)
            history = self.history.snapshot()

        logger.info(
            "[Engine] %s (%s) joined; replaying %d messages",
            participant.username,
            participant.id,
            len(history),
        )

        try:
            await self.broadcaster.send(session, frames.message_history(history))
        except TransportFailure as exc:
            # the room never saw this join, so the eviction is not announced
            logger.warning("[Engine] History replay failed: %s", exc)
            await self.broadcaster.evict(session)
            return session

        if self.registry.get_by_transport(transport) is not session:
            # evicted while the history was in flight
            return session

        await self.broadcaster.announce_join(session)
        await self.broadcaster.broadcast(
            frames.online_users(self.registry.snapshot()), recipients=[session]
        )
        return session

    async def post_message(
        self,
        user_id: str,
        username: str,
        content: str,
        avatar: Optional[str] = None,
    ) -> Optional[ChatMessage]:
        """Append a message to history and broadcast it to the whole room.

        Empty or whitespace-only content is dropped without a broadcast.

        Returns:
            The stored message, or None if it was dropped.
        """
        if not content or not content.strip():
            logger.debug("[Engine] Ignoring empty message from %s", user_id)
            return None

        with self._lock:
            message = self.history.append(user_id, username, content, avatar)
            recipients = self.registry.snapshot()

        logger.info(
            "[Engine] Broadcasting message %s from %s to %d sessions",
            message.id,
            username,
            len(recipients),
        )
        await self.broadcaster.broadcast(
            frames.new_message(message), recipients=recipients
        )
        return message

    async def disconnect(self, transport: Any) -> Optional[Session]:
        """Drop the session bound to a closed transport and announce it.

        Returns:
            The removed session, or None if the transport held none.
        """
        session = self.registry.remove_by_transport(transport)
        if session is None:
            return None

        logger.info(
            "[Engine] %s (%s) disconnected; %d sessions remain",
            session.participant.username,
            session.participant_id,
            len(self.registry),
        )
        await self.broadcaster.announce_leave(session)
        return session

    async def logout(self, participant_id: str) -> Optional[Session]:
        """Explicitly remove a participant and announce the departure."""
        session = self.registry.remove_by_participant(participant_id)
        if session is None:
            return None

        logger.info("[Engine] %s logged out", participant_id)
        await self.broadcaster.announce_leave(session)
        return session


class ChatRoom:
    """One independent room: registry, history, broadcaster and engine."""

    def __init__(
        self,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        send_timeout: float = DEFAULT_SEND_TIMEOUT,
    ) -> None:
        self.registry = SessionRegistry()
        self.history = HistoryBuffer(history_limit)
        self.broadcaster = Broadcaster(self.registry, send_timeout=send_timeout)
        self.engine = ChatEngine(self.registry, self.history, self.broadcaster)
