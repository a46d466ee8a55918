"""
Tests for the conversation log.
"""
from datetime import datetime, timedelta, timezone

import pytest

from rehearsal.conversation import (
    ConversationEntry,
    InMemoryConversationStore,
    Sender,
    format_transcript,
)


@pytest.mark.asyncio
async def test_append_returns_entry_with_id():
    store = InMemoryConversationStore()

    entry = await store.append("s1", Sender.USER, "Hello")

    assert entry.entry_id
    assert entry.session_id == "s1"
    assert entry.sender == Sender.USER
    assert await store.list("s1") == [entry]


@pytest.mark.asyncio
async def test_list_is_ascending_by_timestamp():
    store = InMemoryConversationStore()
    now = datetime.now(timezone.utc)

    await store.append("s1", Sender.AI, "later", timestamp=now + timedelta(seconds=5))
    await store.append("s1", Sender.USER, "earlier", timestamp=now)

    assert [e.message for e in await store.list("s1")] == ["earlier", "later"]


@pytest.mark.asyncio
async def test_equal_timestamps_keep_insertion_order():
    store = InMemoryConversationStore()
    ts = datetime(2026, 1, 1, tzinfo=timezone.utc)

    for message in ("one", "two", "three"):
        await store.append("s1", Sender.USER, message, timestamp=ts)

    assert [e.message for e in await store.list("s1")] == ["one", "two", "three"]


@pytest.mark.asyncio
async def test_sessions_are_isolated():
    store = InMemoryConversationStore()
    await store.append("s1", Sender.USER, "mine")

    assert await store.list("s2") == []


def test_format_transcript():
    entries = [
        ConversationEntry(session_id="s1", sender=Sender.USER, message="Hi"),
        ConversationEntry(session_id="s1", sender=Sender.AI, message="I need a filter."),
    ]
    assert format_transcript(entries) == "user: Hi\nai: I need a filter."
    assert format_transcript([]) == ""


def test_entry_to_dict():
    entry = ConversationEntry(session_id="s1", sender=Sender.AI, message="Hello")
    data = entry.to_dict()
    assert data["sender"] == "ai"
    assert data["message"] == "Hello"
    assert datetime.fromisoformat(data["created_at"]) == entry.created_at
