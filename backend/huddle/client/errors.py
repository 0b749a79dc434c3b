"""Exceptions surfaced by the chat client."""


class ClientError(Exception):
    """Base class for chat client errors."""


class NotConnectedError(ClientError):
    """A send was attempted while the connection is not open.

    Messages are never queued across a disconnect.
    """


class ReconnectExhausted(ClientError):
    """The reconnect budget is spent; only an explicit reset starts over."""

    def __init__(self, attempts: int) -> None:
        super().__init__(f"gave up after {attempts} reconnect attempts")
        self.attempts = attempts
