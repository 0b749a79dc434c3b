"""Bounded in-memory message history for the room.

The buffer is the ordering authority: IDs are assigned here, at the moment a
message is appended, never by the sender. When the bound is exceeded the
oldest message is dropped (FIFO). History is not persisted across restarts.
"""
import itertools
import logging
import threading
from collections import deque
from typing import Deque, List, Optional

from .models import ChatMessage, utcnow

logger = logging.getLogger(__name__)

# Number of messages replayed to newly joined participants
DEFAULT_HISTORY_LIMIT = 100


class HistoryBuffer:
    """Insertion-ordered log of the last ``limit`` chat messages.

    Thread-safe: every operation runs under a single lock.
    """

    def __init__(self, limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        if limit < 1:
            raise ValueError("history limit must be at least 1")
        self.limit = limit
        self._messages: Deque[ChatMessage] = deque(maxlen=limit)
        self._sequence = itertools.count(1)
        self._lock = threading.Lock()

    def append(
        self,
        user_id: str,
        username: str,
        content: str,
        avatar: Optional[str] = None,
    ) -> ChatMessage:
        """Stamp a new message with the next ID and the current time, and store it.

        Returns:
            The stored ChatMessage, carrying its assigned ID.
        """
        with self._lock:
            message = ChatMessage(
                id=str(next(self._sequence)),
                userId=user_id,
                username=username,
                content=content,
                timestamp=utcnow(),
                avatar=avatar,
            )
            # deque(maxlen=...) evicts from the left in O(1)
            self._messages.append(message)
        logger.debug("[History] Appended message %s (%d stored)", message.id, len(self))
        return message

    def snapshot(self) -> List[ChatMessage]:
        """Return a copy of the stored messages, oldest first."""
        with self._lock:
            return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)
