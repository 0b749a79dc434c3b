"""Self-expiring set of participants currently typing."""
import asyncio
import logging
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

# Seconds a typing entry lives without being refreshed
DEFAULT_TYPING_EXPIRY = 3.0


class TypingTracker:
    """Tracks typing display names, each with its own expiry timer.

    Refreshing a name cancels and replaces its timer rather than stacking a
    second one. Must be used from inside a running event loop.

    Args:
        expiry: Seconds before an unrefreshed entry disappears.
        on_change: Called with the current names whenever the set changes.
    """

    def __init__(
        self,
        expiry: float = DEFAULT_TYPING_EXPIRY,
        on_change: Optional[Callable[[List[str]], None]] = None,
    ) -> None:
        self.expiry = expiry
        self.on_change = on_change
        self._timers: Dict[str, asyncio.TimerHandle] = {}

    def refresh(self, name: str) -> None:
        """Mark ``name`` as typing for another ``expiry`` seconds."""
        loop = asyncio.get_running_loop()
        existing = self._timers.get(name)
        if existing is not None:
            existing.cancel()
        self._timers[name] = loop.call_later(self.expiry, self._expire, name)
        if existing is None:
            self._changed()

    def clear(self, name: str) -> None:
        """Remove ``name`` immediately (explicit stop or participant left)."""
        handle = self._timers.pop(name, None)
        if handle is not None:
            handle.cancel()
            self._changed()

    def names(self) -> List[str]:
        return list(self._timers)

    def close(self) -> None:
        """Cancel every pending expiry timer."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    def _expire(self, name: str) -> None:
        if self._timers.pop(name, None) is not None:
            logger.debug("Typing indicator for %s expired", name)
            self._changed()

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change(self.names())

    def __contains__(self, name: object) -> bool:
        return name in self._timers

    def __len__(self) -> int:
        return len(self._timers)
