"""Exceptions raised inside the chat room.

None of these are fatal to the server: each one is scoped to a single
connection and handled by the engine or the broadcaster.
"""


class ChatError(Exception):
    """Base class for chat room errors."""


class MalformedFrame(ChatError):
    """An inbound frame could not be decoded or has an unknown type.

    The frame is logged and dropped; the connection stays open.
    """

    def __init__(self, reason: str, raw: str = "") -> None:
        super().__init__(reason)
        self.reason = reason
        self.raw = raw


class TransportFailure(ChatError):
    """Sending to one session's transport failed or timed out.

    The affected session is evicted; the rest of the room carries on.
    """

    def __init__(self, participant_id: str, cause: BaseException) -> None:
        super().__init__(f"send to {participant_id} failed: {cause!r}")
        self.participant_id = participant_id
        self.cause = cause
