"""Tests for the reconnecting chat client."""
import asyncio

import pytest

from huddle.chat.models import Participant
from huddle.client.connection import (
    ChatConnection,
    ConnectionObserver,
    ConnectionStatus,
    ReconnectPolicy,
)
from huddle.client.errors import NotConnectedError, ReconnectExhausted
from huddle.client.room import MessageStatus
from huddle.config import ClientSettings

from fakes import FakeClientTransport, FakeConnector, eventually

ME = Participant(id="me", username="Me", avatar="me.png")


class RecordingObserver(ConnectionObserver):
    def __init__(self):
        self.statuses = []
        self.notices = []
        self.delays = []
        self.new_messages = []

    def on_status_change(self, status, attempt):
        self.statuses.append(status)

    def on_notice(self, notice):
        self.notices.append(notice)

    def on_reconnect_scheduled(self, attempt, delay_ms):
        self.delays.append(delay_ms)

    def on_new_message(self, message, focused):
        self.new_messages.append((message, focused))


async def instant_sleep(delay):
    await asyncio.sleep(0)


def make_connection(connector, observer=None, **kwargs):
    kwargs.setdefault("sleep", instant_sleep)
    return ChatConnection(
        ME, "ws://test/ws", connector=connector, observer=observer or RecordingObserver(), **kwargs
    )


class TestReconnectPolicy:
    def test_default_delay_sequence_is_capped(self):
        policy = ReconnectPolicy()
        assert [policy.delay_ms(n) for n in range(1, 6)] == [2000, 4000, 8000, 16000, 30000]

    def test_from_settings(self):
        policy = ReconnectPolicy.from_settings(
            ClientSettings(base_delay_ms=10, max_delay_ms=50, max_attempts=2)
        )
        assert policy.max_attempts == 2
        assert [policy.delay_ms(n) for n in range(1, 4)] == [20, 40, 50]


@pytest.mark.asyncio
async def test_connect_sends_join_and_reports_connected():
    transport = FakeClientTransport()
    observer = RecordingObserver()
    conn = make_connection(FakeConnector(transport), observer)

    await conn.connect()

    assert conn.status is ConnectionStatus.CONNECTED
    assert conn.is_connected
    assert transport.sent == [
        {"type": "join", "user": {"id": "me", "username": "Me", "avatar": "me.png"}}
    ]
    assert observer.statuses == [ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED]
    assert observer.notices[-1].title == "Connected"
    assert conn.status_text == "Connected"
    await conn.close()


@pytest.mark.asyncio
async def test_backoff_sequence_and_give_up():
    connector = FakeConnector()
    observer = RecordingObserver()
    conn = make_connection(connector, observer)

    await conn.connect()
    with pytest.raises(ReconnectExhausted):
        await asyncio.wait_for(conn.wait_until_connected(), timeout=1)

    assert observer.delays == [2000, 4000, 8000, 16000, 30000]
    assert connector.calls == 6
    assert conn.status is ConnectionStatus.DISCONNECTED
    assert conn.gave_up
    assert conn._reconnect_timer is None
    assert observer.notices[-1].level == "error"
    assert "refresh" in observer.notices[-1].description
    assert conn.status_text.startswith("Connection failed")

    # nothing else is scheduled after giving up
    await asyncio.sleep(0.01)
    assert connector.calls == 6
    with pytest.raises(ReconnectExhausted):
        await conn.wait_until_connected()


@pytest.mark.asyncio
async def test_reconnect_notices_show_attempt_counter():
    observer = RecordingObserver()
    conn = make_connection(FakeConnector(), observer)

    await conn.connect()
    with pytest.raises(ReconnectExhausted):
        await asyncio.wait_for(conn.wait_until_connected(), timeout=1)

    lost = [n.description for n in observer.notices if n.title == "Connection lost"]
    assert lost == [f"Reconnecting... (attempt {k}/5)" for k in range(1, 6)]


@pytest.mark.asyncio
async def test_drop_triggers_reconnect_and_resets_counter():
    first, second = FakeClientTransport(), FakeClientTransport()
    observer = RecordingObserver()
    conn = make_connection(FakeConnector(first, OSError("refused"), second), observer)

    await conn.connect()
    first.drop()

    await eventually(lambda: conn.status is ConnectionStatus.CONNECTED and second.sent)
    assert observer.delays == [2000, 4000]
    assert conn.attempts == 0
    assert second.sent[0]["type"] == "join"
    assert ConnectionStatus.RECONNECTING in observer.statuses
    await conn.close()


@pytest.mark.asyncio
async def test_close_cancels_pending_reconnect():
    connector = FakeConnector()
    conn = make_connection(connector, sleep=asyncio.sleep)

    await conn.connect()
    assert conn.status is ConnectionStatus.RECONNECTING
    assert conn._reconnect_timer is not None

    await conn.close()
    await asyncio.sleep(0.05)

    assert connector.calls == 1
    assert conn.status is ConnectionStatus.DISCONNECTED
    assert conn._reconnect_timer is None


@pytest.mark.asyncio
async def test_new_attempt_cancels_pending_timer():
    transport = FakeClientTransport()
    connector = FakeConnector(OSError("refused"), transport)
    conn = make_connection(connector, sleep=asyncio.sleep)

    await conn.connect()
    pending = conn._reconnect_timer
    await conn.connect()

    await asyncio.sleep(0.01)
    assert pending.cancelled()
    assert connector.calls == 2
    assert conn.is_connected
    await conn.close()


@pytest.mark.asyncio
async def test_send_rejected_while_disconnected():
    conn = make_connection(FakeConnector())
    with pytest.raises(NotConnectedError):
        await conn.send_message("hello")
    assert conn.view.messages == []


@pytest.mark.asyncio
async def test_send_message_optimistic_then_delivered():
    transport = FakeClientTransport()
    conn = make_connection(FakeConnector(transport))
    await conn.connect()

    local = await conn.send_message("  hello room  ")

    assert local.status is MessageStatus.SENT
    assert transport.sent[-1] == {
        "type": "message",
        "userId": "me",
        "username": "Me",
        "content": "hello room",
        "avatar": "me.png",
    }

    transport.push({"type": "new_message", "message": {
        "id": "42", "userId": "me", "username": "Me", "content": "hello room",
        "timestamp": "2026-01-01T12:00:00Z", "avatar": "me.png",
    }})
    await eventually(lambda: conn.view.messages[0].status is MessageStatus.DELIVERED)
    assert conn.view.messages[0].id == "42"
    assert len(conn.view.messages) == 1
    await conn.close()


@pytest.mark.asyncio
async def test_blank_message_not_sent():
    transport = FakeClientTransport()
    conn = make_connection(FakeConnector(transport))
    await conn.connect()

    assert await conn.send_message("   ") is None
    assert len(transport.sent) == 1
    await conn.close()


@pytest.mark.asyncio
async def test_failed_write_marks_message_failed():
    transport = FakeClientTransport()
    conn = make_connection(FakeConnector(transport))
    await conn.connect()
    transport.closed = True

    local = await conn.send_message("lost")

    assert local.status is MessageStatus.FAILED
    await conn.close()


@pytest.mark.asyncio
async def test_messages_from_others_reach_observer():
    transport = FakeClientTransport()
    observer = RecordingObserver()
    conn = make_connection(FakeConnector(transport), observer)
    await conn.connect()
    conn.view.set_focused(False)

    transport.push_raw("garbage")
    transport.push({"type": "new_message", "message": {
        "id": "1", "userId": "bob", "username": "Bob", "content": "ping",
        "timestamp": "2026-01-01T12:00:00Z",
    }})

    await eventually(lambda: observer.new_messages)
    message, focused = observer.new_messages[0]
    assert message.content == "ping"
    assert focused is False
    assert conn.view.unread_count == 1
    assert conn.is_connected
    await conn.close()


@pytest.mark.asyncio
async def test_typing_signal_is_withdrawn_after_debounce():
    transport = FakeClientTransport()
    conn = make_connection(FakeConnector(transport), typing_debounce=0.02)
    await conn.connect()

    await conn.set_typing(True)
    assert transport.sent[-1]["isTyping"] is True

    await eventually(lambda: transport.sent[-1]["isTyping"] is False)
    typing_frames = [f for f in transport.sent if f["type"] == "typing"]
    assert [f["isTyping"] for f in typing_frames] == [True, False]
    await conn.close()


@pytest.mark.asyncio
async def test_typing_refresh_does_not_stack_timers():
    transport = FakeClientTransport()
    conn = make_connection(FakeConnector(transport), typing_debounce=0.1)
    await conn.connect()

    await conn.set_typing(True)
    await asyncio.sleep(0.06)
    await conn.set_typing(True)
    await asyncio.sleep(0.06)

    assert [f["isTyping"] for f in transport.sent if f["type"] == "typing"] == [True, True]
    await eventually(lambda: transport.sent[-1]["isTyping"] is False)
    await conn.close()


@pytest.mark.asyncio
async def test_reset_after_give_up_starts_over():
    transport = FakeClientTransport()
    connector = FakeConnector(*[OSError("refused")] * 6, transport)
    conn = make_connection(connector)

    await conn.connect()
    with pytest.raises(ReconnectExhausted):
        await asyncio.wait_for(conn.wait_until_connected(), timeout=1)

    await conn.reset()

    assert conn.is_connected
    assert not conn.gave_up
    assert connector.calls == 7
    await conn.close()


@pytest.mark.asyncio
async def test_connect_after_give_up_restores_retry_budget():
    first, second = FakeClientTransport(), FakeClientTransport()
    connector = FakeConnector(*[OSError("refused")] * 6, first, second)

    async def short_sleep(delay):
        await asyncio.sleep(0.02)

    conn = make_connection(connector, sleep=short_sleep)

    await conn.connect()
    with pytest.raises(ReconnectExhausted):
        await asyncio.wait_for(conn.wait_until_connected(), timeout=2)

    await conn.connect()
    assert conn.is_connected
    assert not conn.gave_up

    first.drop()
    await eventually(lambda: conn.status is ConnectionStatus.RECONNECTING)
    await asyncio.wait_for(conn.wait_until_connected(), timeout=1)

    assert conn.is_connected
    assert second.sent[0]["type"] == "join"
    await conn.close()


class RaisingObserver(RecordingObserver):
    def on_new_message(self, message, focused):
        raise RuntimeError("notification surface unavailable")


@pytest.mark.asyncio
async def test_reader_survives_bad_frames_and_failing_observer():
    first, second = FakeClientTransport(), FakeClientTransport()
    conn = make_connection(FakeConnector(first, second), RaisingObserver())
    await conn.connect()

    first.push({"type": "new_message", "message": {
        "id": "1", "userId": "other", "username": "Other", "content": "hi",
        "timestamp": "2026-01-01T12:00:00Z",
    }})
    first.push({"type": ["new_message"]})
    await eventually(lambda: len(conn.view.messages) == 1)

    first.drop()
    await eventually(lambda: bool(second.sent))

    assert conn.is_connected
    assert second.sent[0]["type"] == "join"
    await conn.close()


@pytest.mark.asyncio
async def test_context_manager_closes_transport():
    transport = FakeClientTransport()
    async with make_connection(FakeConnector(transport)) as conn:
        await conn.wait_until_connected()
        assert conn.is_connected

    assert transport.closed
    assert conn.status is ConnectionStatus.DISCONNECTED


@pytest.mark.asyncio
async def test_from_settings_uses_client_section():
    transport = FakeClientTransport()
    settings = ClientSettings(url="ws://example/ws", max_attempts=1, typing_expiry_seconds=1.5)
    conn = ChatConnection.from_settings(ME, settings, connector=FakeConnector(transport))

    assert conn.url == "ws://example/ws"
    assert conn.policy.max_attempts == 1
    assert conn.view.typing.expiry == 1.5
    await conn.connect()
    assert conn.is_connected
    await conn.close()
