"""Tests for the self-expiring typing indicator set."""
import asyncio

import pytest

from huddle.client.typing_indicator import TypingTracker


@pytest.mark.asyncio
async def test_entry_expires_after_window():
    tracker = TypingTracker(expiry=0.05)
    tracker.refresh("Alice")
    assert tracker.names() == ["Alice"]

    await asyncio.sleep(0.1)
    assert tracker.names() == []


@pytest.mark.asyncio
async def test_refresh_replaces_timer_instead_of_stacking():
    tracker = TypingTracker(expiry=0.1)
    tracker.refresh("Alice")
    await asyncio.sleep(0.06)
    tracker.refresh("Alice")
    await asyncio.sleep(0.06)

    # first timer would have fired by now; the refreshed one has not
    assert "Alice" in tracker
    assert len(tracker) == 1

    await asyncio.sleep(0.08)
    assert "Alice" not in tracker


@pytest.mark.asyncio
async def test_entries_expire_independently():
    tracker = TypingTracker(expiry=0.05)
    tracker.refresh("Alice")
    await asyncio.sleep(0.03)
    tracker.refresh("Bob")
    await asyncio.sleep(0.03)

    assert tracker.names() == ["Bob"]


@pytest.mark.asyncio
async def test_clear_and_on_change():
    changes = []
    tracker = TypingTracker(expiry=10, on_change=changes.append)
    tracker.refresh("Alice")
    tracker.refresh("Bob")
    tracker.refresh("Alice")
    tracker.clear("Alice")
    tracker.clear("nobody")

    assert changes == [["Alice"], ["Alice", "Bob"], ["Bob"]]
    tracker.close()
    assert tracker.names() == []
