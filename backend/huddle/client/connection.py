"""Reconnecting WebSocket client for the chat room.

Manages one logical connection to the server:

    disconnected ──connect()──▶ connecting ──open + join──▶ connected
         ▲                          │                           │
         │                    open failed                close / error
         │                          ▼                           ▼
    gave up  ◀──budget spent── (backoff) ◀─────────────── reconnecting
                                    │
                              after delay ──▶ connecting

Backoff:
    delay = min(base * 2 ** attempt, cap) with the attempt counter
    incremented first, so the defaults (base=1000ms, cap=30000ms) give
    2000, 4000, 8000, 16000, 30000 for attempts 1-5. After ``max_attempts``
    failed reconnects the client stays ``disconnected`` and reports a
    terminal failure until ``reset()`` is called.

Concurrency:
    Single event loop, cooperative. There is at most one transport and at
    most one pending reconnect timer; starting an attempt cancels any
    pending timer first.
"""
import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Set

import websockets
from pydantic import BaseModel
from websockets.exceptions import WebSocketException

from huddle.chat.models import Participant
from huddle.config import ClientSettings

from .errors import NotConnectedError, ReconnectExhausted
from .room import LocalMessage, RoomView

logger = logging.getLogger(__name__)

# Errors that mean "this transport is gone"
TRANSPORT_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)

Connector = Callable[[str], Awaitable[Any]]
Sleep = Callable[[float], Awaitable[Any]]


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class Notice(BaseModel):
    """User-visible notification about the connection."""
    level: Literal["info", "error"] = "info"
    title: str
    description: str


@dataclass
class ReconnectPolicy:
    """Exponential backoff settings.

    Attributes:
        base_delay_ms: Base delay in milliseconds (default: 1000)
        max_delay_ms: Delay cap in milliseconds (default: 30000)
        max_attempts: Reconnect attempts before giving up (default: 5)
    """

    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    max_attempts: int = 5

    @classmethod
    def from_settings(cls, settings: ClientSettings) -> "ReconnectPolicy":
        return cls(
            base_delay_ms=settings.base_delay_ms,
            max_delay_ms=settings.max_delay_ms,
            max_attempts=settings.max_attempts,
        )

    def delay_ms(self, attempt: int) -> int:
        return min(self.base_delay_ms * 2 ** attempt, self.max_delay_ms)


class ConnectionObserver:
    """Receives connection events. Override the hooks you need."""

    def on_status_change(self, status: ConnectionStatus, attempt: int) -> None:
        pass

    def on_notice(self, notice: Notice) -> None:
        pass

    def on_reconnect_scheduled(self, attempt: int, delay_ms: int) -> None:
        pass

    def on_new_message(self, message: LocalMessage, focused: bool) -> None:
        """Called for messages from other participants (notification surface)."""


async def default_connector(url: str) -> Any:
    return await websockets.connect(url)


class ChatConnection:
    """One logical connection to the chat room, with automatic reconnects.

    Args:
        participant: Identity sent in the join frame.
        url: WebSocket URL of the room, e.g. ``"ws://localhost:8000/ws"``.
        policy: Backoff settings. Defaults to 1s base, 30s cap, 5 attempts.
        connector: Coroutine function opening a transport for a URL. The
            transport needs ``send(str)``, ``recv()`` and ``close()``.
        observer: Receives status changes, notices and new messages.
        view: Client-side room state. One is created if omitted.
        typing_debounce: Seconds after which an unrefreshed "typing" signal
            is withdrawn.
        sleep: Awaitable used to wait out the backoff delay.

    Example::

        async with ChatConnection(me, "ws://localhost:8000/ws") as conn:
            await conn.wait_until_connected()
            await conn.send_message("hello")
    """

    def __init__(
        self,
        participant: Participant,
        url: str,
        *,
        policy: Optional[ReconnectPolicy] = None,
        connector: Optional[Connector] = None,
        observer: Optional[ConnectionObserver] = None,
        view: Optional[RoomView] = None,
        typing_debounce: float = 3.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.participant = participant
        self.url = url
        self.policy = policy or ReconnectPolicy()
        self.observer = observer or ConnectionObserver()
        self.view = view or RoomView(self_id=participant.id)
        self.typing_debounce = typing_debounce
        self._connector = connector or default_connector
        self._sleep = sleep

        self.status = ConnectionStatus.DISCONNECTED
        self.attempts = 0
        self.gave_up = False
        self._closed = False

        self._transport: Any = None
        self._reader: Optional[asyncio.Task] = None
        self._reconnect_timer: Optional[asyncio.Task] = None
        self._typing_timer: Optional[asyncio.TimerHandle] = None
        self._background: Set[asyncio.Task] = set()
        self._waiters: List[asyncio.Future] = []

    @classmethod
    def from_settings(
        cls, participant: Participant, settings: ClientSettings, **kwargs: Any
    ) -> "ChatConnection":
        kwargs.setdefault("view", RoomView(participant.id, settings.typing_expiry_seconds))
        return cls(
            participant,
            settings.url,
            policy=ReconnectPolicy.from_settings(settings),
            typing_debounce=settings.typing_debounce_seconds,
            **kwargs,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self) -> None:
        """Open a transport and join the room.

        Failures are not raised; they move the client into ``reconnecting``
        (or the terminal state once the budget is spent).
        """
        if self.status in (ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED):
            return
        self._cancel_reconnect_timer()
        self._closed = False
        self._set_status(ConnectionStatus.CONNECTING)
        logger.info("Connecting to %s (attempt %d)", self.url, self.attempts)

        try:
            transport = await self._connector(self.url)
        except TRANSPORT_ERRORS as exc:
            logger.warning("Connection to %s failed: %s", self.url, exc)
            self._handle_disconnection()
            return

        if self._closed:
            await self._close_transport(transport)
            return

        self._transport = transport
        self.view.begin_session()
        if not await self._send_frame({"type": "join", "user": self.participant.model_dump()}):
            self._transport = None
            await self._close_transport(transport)
            self._handle_disconnection()
            return

        self.attempts = 0
        self.gave_up = False
        self._set_status(ConnectionStatus.CONNECTED)
        logger.info("Connected to %s as %s", self.url, self.participant.username)
        self.observer.on_notice(Notice(
            title="Connected",
            description="You're now connected to the chat",
        ))
        self._resolve_waiters()
        self._reader = asyncio.create_task(self._read_loop(transport))

    async def reset(self, participant: Optional[Participant] = None) -> None:
        """Start over with a fresh retry budget (e.g. after a new login)."""
        await self.close()
        if participant is not None:
            self.participant = participant
            self.view.self_id = participant.id
        self.attempts = 0
        self.gave_up = False
        await self.connect()

    async def close(self) -> None:
        """Tear down: cancel timers and the reader, and close the transport.

        No reconnect fires after this returns.
        """
        self._closed = True
        self._cancel_reconnect_timer()
        self._cancel_typing_timer()
        self.view.close()

        reader, self._reader = self._reader, None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader

        transport, self._transport = self._transport, None
        if transport is not None:
            await self._close_transport(transport)

        for task in list(self._background):
            task.cancel()

        self._set_status(ConnectionStatus.DISCONNECTED)
        self._fail_waiters(NotConnectedError("connection closed"))

    async def wait_until_connected(self) -> None:
        """Wait for the ``connected`` state.

        Raises:
            ReconnectExhausted: If the client gives up first.
        """
        if self.status is ConnectionStatus.CONNECTED:
            return
        if self.gave_up:
            raise ReconnectExhausted(self.attempts)
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        await waiter

    async def __aenter__(self) -> "ChatConnection":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # =========================================================================
    # Outbound
    # =========================================================================

    async def send_message(self, content: str) -> Optional[LocalMessage]:
        """Send a chat message, rendering it optimistically first.

        Empty or whitespace-only content is ignored.

        Returns:
            The local copy of the message, or None if nothing was sent.

        Raises:
            NotConnectedError: If the client is not connected. Nothing is
                queued for later.
        """
        text = content.strip()
        if not text:
            return None
        if self.status is not ConnectionStatus.CONNECTED or self._transport is None:
            raise NotConnectedError(f"cannot send while {self.status.value}")

        local = self.view.add_pending(self.participant, text)
        frame = {
            "type": "message",
            "userId": self.participant.id,
            "username": self.participant.username,
            "content": text,
            "avatar": self.participant.avatar,
        }
        if await self._send_frame(frame):
            self.view.mark_sent(local)
        else:
            self.view.mark_failed(local)
        return local

    async def set_typing(self, is_typing: bool) -> None:
        """Signal that the local user started or stopped typing.

        A ``True`` signal is withdrawn automatically after ``typing_debounce``
        seconds unless refreshed. Ignored while not connected.
        """
        if self.status is not ConnectionStatus.CONNECTED:
            return
        self._cancel_typing_timer()
        if is_typing:
            loop = asyncio.get_running_loop()
            self._typing_timer = loop.call_later(self.typing_debounce, self._typing_expired)
        await self._send_frame({
            "type": "typing",
            "userId": self.participant.id,
            "username": self.participant.username,
            "isTyping": is_typing,
        })

    # =========================================================================
    # Display
    # =========================================================================

    @property
    def is_connected(self) -> bool:
        return self.status is ConnectionStatus.CONNECTED

    @property
    def status_text(self) -> str:
        """Short status line for the UI."""
        if self.status is ConnectionStatus.CONNECTED:
            return "Connected"
        if self.status is ConnectionStatus.RECONNECTING:
            return f"Reconnecting, attempt {self.attempts}/{self.policy.max_attempts}"
        if self.status is ConnectionStatus.CONNECTING:
            return "Connecting..."
        if self.gave_up:
            return "Connection failed. Refresh to retry"
        return "Disconnected"

    # =========================================================================
    # Internals
    # =========================================================================

    async def _read_loop(self, transport: Any) -> None:
        try:
            while True:
                raw = await transport.recv()
                try:
                    self._dispatch(raw)
                except Exception:
                    # a bad frame or observer hook must not stop the reader
                    logger.exception("Error while handling server frame")
        except TRANSPORT_ERRORS as exc:
            logger.info("Connection lost: %s", exc)

        if transport is self._transport and not self._closed:
            self._transport = None
            self._reader = None
            self._cancel_typing_timer()
            self._handle_disconnection()

    def _dispatch(self, raw: Any) -> None:
        try:
            frame = json.loads(raw)
        except ValueError as exc:
            logger.warning("Dropping undecodable server frame: %s", exc)
            return
        if not isinstance(frame, dict):
            logger.warning("Dropping non-object server frame")
            return

        message = self.view.apply(frame)
        if message is not None and message.userId != self.participant.id:
            self.observer.on_new_message(message, self.view.focused)

    def _handle_disconnection(self) -> None:
        self._set_status(ConnectionStatus.DISCONNECTED)
        if self._closed:
            return

        if self.attempts >= self.policy.max_attempts:
            self.gave_up = True
            logger.error(
                "Giving up on %s after %d reconnect attempts", self.url, self.attempts
            )
            self.observer.on_notice(Notice(
                level="error",
                title="Connection failed",
                description="Unable to connect to chat server. Please refresh the page.",
            ))
            self._fail_waiters(ReconnectExhausted(self.attempts))
            return

        self.attempts += 1
        delay = self.policy.delay_ms(self.attempts)
        self._set_status(ConnectionStatus.RECONNECTING)
        logger.info("Reconnecting in %dms (attempt %d)", delay, self.attempts)
        self.observer.on_reconnect_scheduled(self.attempts, delay)
        self.observer.on_notice(Notice(
            level="error",
            title="Connection lost",
            description=f"Reconnecting... (attempt {self.attempts}/{self.policy.max_attempts})",
        ))
        self._reconnect_timer = asyncio.get_running_loop().create_task(
            self._reconnect_after(delay / 1000)
        )

    async def _reconnect_after(self, delay: float) -> None:
        await self._sleep(delay)
        self._reconnect_timer = None
        await self.connect()

    async def _send_frame(self, frame: Dict[str, Any]) -> bool:
        transport = self._transport
        if transport is None:
            return False
        try:
            await transport.send(json.dumps(frame))
            return True
        except TRANSPORT_ERRORS as exc:
            logger.warning("Failed to send %s frame: %s", frame.get("type"), exc)
            return False

    def _typing_expired(self) -> None:
        self._typing_timer = None
        task = asyncio.get_running_loop().create_task(self.set_typing(False))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _close_transport(self, transport: Any) -> None:
        try:
            await transport.close()
        except TRANSPORT_ERRORS as exc:
            logger.debug("Error while closing transport: %s", exc)

    def _cancel_reconnect_timer(self) -> None:
        timer, self._reconnect_timer = self._reconnect_timer, None
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

    def _cancel_typing_timer(self) -> None:
        timer, self._typing_timer = self._typing_timer, None
        if timer is not None:
            timer.cancel()

    def _set_status(self, status: ConnectionStatus) -> None:
        if status is self.status:
            return
        self.status = status
        self.observer.on_status_change(status, self.attempts)

    def _resolve_waiters(self) -> None:
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)

    def _fail_waiters(self, exc: Exception) -> None:
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_exception(exc)
