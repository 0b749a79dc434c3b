"""Registry of the sessions currently joined to the room.

The registry is the authoritative mapping ``participantId -> Session``. A
second index ``transport -> participantId`` is kept alongside it so that a
closed transport (which carries no participant ID) can be resolved without
scanning every session.

Thread Safety:
    All mutations and snapshots run under one lock. Broadcasts iterate over
    a snapshot, so an eviction in the middle of a broadcast never disturbs
    the iteration in progress.
"""
import logging
import threading
from typing import Any, Dict, Optional, Tuple

from .models import Participant, Session

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Concurrency-safe store of active sessions, one per participant."""

    def __init__(self) -> None:
        # participantId -> Session
        self._sessions: Dict[str, Session] = {}

        # id(transport) -> participantId, for disconnect handling
        self._by_transport: Dict[int, str] = {}

        self._lock = threading.Lock()

    def upsert(self, session: Session) -> Optional[Session]:
        """Register ``session``, replacing any session of the same participant.

        The superseded session's transport is dropped from the index but not
        closed; it simply stops receiving room traffic.

        Returns:
            The replaced Session, or None if the participant was not present.
        """
        with self._lock:
            previous = self._sessions.get(session.participant_id)
            if previous is not None:
                self._by_transport.pop(id(previous.transport), None)
            # a transport re-joining under a new identity drops its old entry
            stale_id = self._by_transport.get(id(session.transport))
            if stale_id is not None and stale_id != session.participant_id:
                self._sessions.pop(stale_id, None)
            self._sessions[session.participant_id] = session
            self._by_transport[id(session.transport)] = session.participant_id

        if previous is not None:
            logger.info(
                "[Registry] Participant %s joined again; replacing previous session",
                session.participant_id,
            )
        return previous

    def register(self, participant: Participant, transport: Any) -> Tuple[Session, Optional[Session]]:
        """Create a session for ``participant`` on ``transport`` and upsert it."""
        session = Session(participant=participant, transport=transport)
        return session, self.upsert(session)

    def remove_by_transport(self, transport: Any) -> Optional[Session]:
        """Remove the session bound to ``transport``.

        Returns:
            The removed Session, or None if the transport holds no session
            (never joined, already evicted, or superseded by a later join).
        """
        with self._lock:
            participant_id = self._by_transport.pop(id(transport), None)
            if participant_id is None:
                return None
            session = self._sessions.get(participant_id)
            if session is None or session.transport is not transport:
                return None
            del self._sessions[participant_id]
            return session

    def remove_by_participant(self, participant_id: str) -> Optional[Session]:
        """Remove a participant's session (explicit logout)."""
        with self._lock:
            session = self._sessions.pop(participant_id, None)
            if session is not None:
                self._by_transport.pop(id(session.transport), None)
            return session

    def get_by_transport(self, transport: Any) -> Optional[Session]:
        with self._lock:
            participant_id = self._by_transport.get(id(transport))
            if participant_id is None:
                return None
            return self._sessions.get(participant_id)

    def snapshot(self) -> Tuple[Session, ...]:
        """Return an immutable copy of the current sessions in join order."""
        with self._lock:
            return tuple(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, participant_id: object) -> bool:
        return participant_id in self._sessions
