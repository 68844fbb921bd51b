"""Conversation store behaviour, run against both the in-memory and SQLAlchemy stores."""

import asyncio

import pytest

from research_toolkit.conversation_database.data_models.message import (
    Message,
    StepStartPart,
    TextPart,
    ToolCallPart,
)
from research_toolkit.errors import OwnershipConflict
from research_toolkit.llms.base import Roles


def exchange(question: str = "Who won the 2024 Super Bowl?") -> list[Message]:
    call = ToolCallPart(tool_call_id="c1", tool_name="searchWeb", args={"query": question})
    call.mark_in_flight()
    call.resolve([{"title": "Wikipedia", "link": "https://en.wikipedia.org/wiki/Super_Bowl_LVIII", "snippet": ""}])
    return [
        Message(role=Roles.USER, content=question),
        Message(
            role=Roles.ASSISTANT,
            parts=[StepStartPart(), call, StepStartPart(), TextPart(text="The Chiefs won.")],
        ),
    ]


async def tick() -> None:
    # Timestamps have millisecond resolution.
    await asyncio.sleep(0.005)


class TestUpsertAndGet:
    async def test_round_trip(self, conversation_db):
        messages = exchange()

        stored = await conversation_db.upsert("alice", "chat-1", "Who won", messages)
        loaded = await conversation_db.get("alice", "chat-1")

        assert loaded == stored
        assert loaded.user_id == "alice"
        assert loaded.title == "Who won"
        assert [m.position for m in loaded.messages] == [0, 1]
        assert [m.id for m in loaded.messages] == [m.id for m in messages]
        assert loaded.messages[1].parts == messages[1].parts
        assert loaded.messages[1].parts[1].result[0]["link"].startswith("https://")

    async def test_caller_copy_is_not_mutated(self, conversation_db):
        messages = exchange()
        await conversation_db.upsert("alice", "chat-1", "t", messages)
        assert all(m.position is None for m in messages)

    async def test_full_replacement(self, conversation_db):
        first = exchange("first question")
        await conversation_db.upsert("alice", "chat-1", "first", first)
        second = [*exchange("second question")[:1]]

        await conversation_db.upsert("alice", "chat-1", "second", second)
        loaded = await conversation_db.get("alice", "chat-1")

        assert [m.id for m in loaded.messages] == [second[0].id]
        assert loaded.messages[0].position == 0
        assert loaded.title == "second"

    async def test_upsert_is_idempotent(self, conversation_db):
        messages = exchange()
        await conversation_db.upsert("alice", "chat-1", "t", messages)
        await conversation_db.upsert("alice", "chat-1", "t", messages)

        loaded = await conversation_db.get("alice", "chat-1")

        assert [m.id for m in loaded.messages] == [m.id for m in messages]

    async def test_create_timestamp_survives_updates(self, conversation_db):
        created = await conversation_db.upsert("alice", "chat-1", "t", exchange())
        await tick()
        updated = await conversation_db.upsert("alice", "chat-1", "t", exchange())

        assert updated.create_timestamp == created.create_timestamp
        assert updated.update_timestamp > created.update_timestamp

    async def test_empty_message_list(self, conversation_db):
        await conversation_db.upsert("alice", "chat-1", "t", [])
        assert (await conversation_db.get("alice", "chat-1")).messages == []


class TestOwnership:
    async def test_foreign_write_is_rejected_and_leaves_data_untouched(self, conversation_db):
        messages = exchange()
        await conversation_db.upsert("alice", "chat-1", "mine", messages)

        with pytest.raises(OwnershipConflict):
            await conversation_db.upsert("mallory", "chat-1", "stolen", exchange("other"))

        loaded = await conversation_db.get("alice", "chat-1")
        assert loaded.title == "mine"
        assert [m.id for m in loaded.messages] == [m.id for m in messages]

    async def test_foreign_and_unknown_are_indistinguishable(self, conversation_db):
        await conversation_db.upsert("alice", "chat-1", "t", exchange())

        assert await conversation_db.get("mallory", "chat-1") is None
        assert await conversation_db.get("mallory", "does-not-exist") is None
        assert await conversation_db.delete("mallory", "chat-1") is False
        assert await conversation_db.get("alice", "chat-1") is not None


class TestListAndDelete:
    async def test_most_recent_first_with_limit(self, conversation_db):
        for conversation_id in ["a", "b", "c"]:
            await conversation_db.upsert("alice", conversation_id, f"title {conversation_id}", exchange())
            await tick()
        await conversation_db.upsert("bob", "d", "bob's", exchange())
        await tick()
        await conversation_db.upsert("alice", "a", "title a", exchange())

        listed = await conversation_db.list_conversations("alice")
        limited = await conversation_db.list_conversations("alice", limit=2)

        assert [c.id for c in listed] == ["a", "c", "b"]
        assert all(c.messages == [] for c in listed)
        assert [c.id for c in limited] == ["a", "c"]

    async def test_delete(self, conversation_db):
        await conversation_db.upsert("alice", "chat-1", "t", exchange())

        assert await conversation_db.delete("alice", "chat-1") is True
        assert await conversation_db.get("alice", "chat-1") is None
        assert await conversation_db.delete("alice", "chat-1") is False
        assert await conversation_db.list_conversations("alice") == []


class TestConcurrency:
    async def test_concurrent_upserts_do_not_interleave(self, conversation_db):
        histories = [exchange(f"question {i}") for i in range(5)]

        await asyncio.gather(*(conversation_db.upsert("alice", "chat-1", f"t{i}", h) for i, h in enumerate(histories)))

        loaded = await conversation_db.get("alice", "chat-1")
        stored_ids = [m.id for m in loaded.messages]
        assert stored_ids in [[m.id for m in h] for h in histories]
        assert [m.position for m in loaded.messages] == [0, 1]


class TestMessageIds:
    async def test_same_message_id_in_two_conversations(self, conversation_db):
        shared = Message(id="m1", role=Roles.USER, content="Who won the 2024 Super Bowl?")

        await conversation_db.upsert("alice", "chat-a", "a", [shared])
        await conversation_db.upsert("bob", "chat-b", "b", [shared])

        alice = await conversation_db.get("alice", "chat-a")
        bob = await conversation_db.get("bob", "chat-b")
        assert [m.id for m in alice.messages] == ["m1"]
        assert [m.id for m in bob.messages] == ["m1"]
        assert bob.messages[0].text == "Who won the 2024 Super Bowl?"

    async def test_duplicate_ids_within_one_conversation(self, conversation_db):
        messages = [
            Message(id="dup", role=Roles.USER, content="first"),
            Message(id="dup", role=Roles.ASSISTANT, content="second"),
        ]

        await conversation_db.upsert("alice", "chat-1", "t", messages)
        loaded = await conversation_db.get("alice", "chat-1")

        assert [(m.id, m.position, m.text) for m in loaded.messages] == [("dup", 0, "first"), ("dup", 1, "second")]

    async def test_rewrite_keeps_ids_stable(self, conversation_db):
        messages = exchange()
        await conversation_db.upsert("alice", "chat-1", "t", messages)
        await conversation_db.upsert("alice", "chat-1", "t", [*messages, Message(role=Roles.USER, content="more")])

        loaded = await conversation_db.get("alice", "chat-1")

        assert [m.id for m in loaded.messages[:2]] == [m.id for m in messages]
        assert loaded.messages[1].parts == messages[1].parts


class TestWriteLocks:
    async def test_locks_are_released_after_writes(self, conversation_db):
        for i in range(100):
            await conversation_db.upsert("alice", f"chat-{i}", "t", exchange())
            await conversation_db.delete("alice", f"chat-{i}")

        assert len(conversation_db._write_locks) == 0

    async def test_lock_is_shared_while_held(self, conversation_db):
        lock = conversation_db.write_lock("chat-1")
        async with lock:
            assert conversation_db.write_lock("chat-1") is lock
