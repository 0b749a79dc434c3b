"""Fan-out of room events to joined sessions.

The broadcaster derives presence events (``user_joined`` / ``user_left``)
and relays typing activity. Every delivery goes through the same path:

    - Recipients are taken from a registry snapshot, never the live map.
    - Sends run concurrently with asyncio.gather(), each bounded by a timeout
      so one stalled client cannot hold up the room.
    - A recipient whose send fails is evicted from the registry, its
      transport is closed and its departure is announced to the remaining
      sessions, exactly as if the transport had closed on its own.
"""
import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

from . import frames
from .errors import TransportFailure
from .models import Session
from .registry import SessionRegistry

logger = logging.getLogger(__name__)

# Upper bound for a single outbound send
DEFAULT_SEND_TIMEOUT = 5.0

# Close code sent to a recipient evicted after a failed send
EVICTED_CLOSE_CODE = 1011

# Upper bound for closing an evicted transport
CLOSE_TIMEOUT = 1.0


class Broadcaster:
    """Sends frames to sessions held in a SessionRegistry."""

    def __init__(
        self, registry: SessionRegistry, send_timeout: float = DEFAULT_SEND_TIMEOUT
    ) -> None:
        self.registry = registry
        self.send_timeout = send_timeout

    async def send(self, session: Session, frame: Dict[str, Any]) -> None:
        """Send one frame to one session.

        Raises:
            TransportFailure: If the send errors or exceeds the timeout.
        """
        try:
            await asyncio.wait_for(
                session.transport.send_json(frame), timeout=self.send_timeout
            )
        except Exception as exc:
            raise TransportFailure(session.participant_id, exc) from exc

    async def broadcast(
        self,
        frame: Dict[str, Any],
        *,
        exclude: Optional[Any] = None,
        recipients: Optional[Iterable[Session]] = None,
    ) -> None:
        """Send ``frame`` to every session except the one on ``exclude``.

        Args:
            frame: JSON-serialisable frame.
            exclude: Transport that must not receive the frame.
            recipients: Sessions to deliver to. Defaults to a fresh registry
                snapshot.
        """
        if recipients is None:
            recipients = self.registry.snapshot()
        targets = [s for s in recipients if s.transport is not exclude]

        departed = await self._deliver(frame, targets)
        while departed:
            session = departed.pop(0)
            logger.info(
                "[Broadcast] Evicted %s after failed send; announcing departure",
                session.participant_id,
            )
            leave_frame = frames.user_left(session.participant)
            departed.extend(await self._deliver(leave_frame, self.registry.snapshot()))

    async def announce_join(self, session: Session) -> None:
        """Tell every other session that ``session`` joined."""
        await self.broadcast(
            frames.user_joined(session.participant), exclude=session.transport
        )

    async def announce_leave(self, session: Session) -> None:
        """Tell the remaining sessions that ``session`` left."""
        await self.broadcast(
            frames.user_left(session.participant), exclude=session.transport
        )

    async def relay_typing(
        self, user_id: str, username: str, is_typing: bool, origin: Any
    ) -> None:
        """Forward a typing signal to everyone but the originating transport.

        Nothing is retained; clients expire typing entries themselves.
        """
        await self.broadcast(
            frames.user_typing(user_id, username, is_typing), exclude=origin
        )

    async def _deliver(
        self, frame: Dict[str, Any], targets: List[Session]
    ) -> List[Session]:
        """Send to ``targets`` concurrently and evict the ones that failed.

        Returns:
            Sessions evicted by this delivery (already removed from the registry).
        """
        if not targets:
            return []

        results = await asyncio.gather(
            *[self._safe_send(session, frame) for session in targets]
        )

        failed = [s for s, success in zip(targets, results) if not success]
        removed = await asyncio.gather(*[self.evict(s) for s in failed])
        return [s for s in removed if s is not None]

    async def evict(self, session: Session) -> Optional[Session]:
        """Remove ``session`` from the registry and close its transport.

        The departure is not announced here. Closing the transport makes the
        client notice the eviction and reconnect.

        Returns:
            The removed session, or None if the transport no longer held it.
        """
        removed = self.registry.remove_by_transport(session.transport)
        if removed is None:
            return None
        try:
            await asyncio.wait_for(
                session.transport.close(code=EVICTED_CLOSE_CODE),
                timeout=CLOSE_TIMEOUT,
            )
        except Exception as exc:
            logger.debug(
                "[Broadcast] Closing evicted transport of %s failed: %s",
                session.participant_id,
                exc,
            )
        return removed

    async def _safe_send(self, session: Session, frame: Dict[str, Any]) -> bool:
        try:
            await self.send(session, frame)
            return True
        except TransportFailure as exc:
            logger.warning("[Broadcast] %s", exc)
            return False
