"""
Conversation data model and storage interface.

The 'ConversationDatabase' ABC is the pluggable storage backend for
conversations. Concrete implementations ('InMemoryConversationDatabase',
'SQLAlchemyConversationDatabase') are interchangeable at construction time,
keeping the controller and API layer free of storage-specific code.

Writes are whole-conversation replacements: 'upsert' receives the complete
message list of a conversation and overwrites whatever was stored before. The
turn that produces a list does not know which of its messages are already
durable (a retried or partially failed turn may have written some of them), so
replacing everything from the authoritative in-memory history is what keeps the
store and the live conversation from diverging. Do not turn this into an
incremental diff.
"""

import asyncio
import weakref
from abc import ABC, abstractmethod

from pydantic import BaseModel, Field

from research_toolkit.conversation_database.data_models.message import Message

DEFAULT_LIST_LIMIT = 50


class Conversation(BaseModel):
    """A conversation owned by a single user. The owner never changes."""

    id: str
    user_id: str
    title: str
    create_timestamp: int
    update_timestamp: int
    messages: list[Message] = Field(default_factory=list)


class ConversationDatabase(ABC):
    """
    Abstract repository for 'Conversation' records.

    Every operation is scoped by the caller's user id. Reads never reveal
    whether a conversation owned by someone else exists: a foreign id and an
    unknown id both come back as 'None'.

    Writes to one conversation are serialized through a per-conversation lock
    so two concurrent turns cannot interleave their full replacements. Locks are
    held weakly: an entry lives only while a writer holds or waits on it.
    """

    def __init__(self) -> None:
        self._write_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def write_lock(self, conversation_id: str) -> asyncio.Lock:
        lock = self._write_locks.get(conversation_id)
        if lock is None:
            lock = self._write_locks[conversation_id] = asyncio.Lock()
        return lock

    async def upsert(self, user_id: str, conversation_id: str, title: str, messages: list[Message]) -> Conversation:
        """Create the conversation or replace all of its messages.

        Raises 'OwnershipConflict' and leaves the stored conversation untouched
        when it belongs to a different user. Message positions are assigned
        from list order, starting at zero.
        """
        async with self.write_lock(conversation_id):
            return await self._replace(user_id, conversation_id, title, messages)

    @abstractmethod
    async def _replace(self, user_id: str, conversation_id: str, title: str, messages: list[Message]) -> Conversation:
        """Atomic create-or-replace; called with the conversation's write lock held."""
        pass

    @abstractmethod
    async def get(self, user_id: str, conversation_id: str) -> Conversation | None:
        pass

    @abstractmethod
    async def list_conversations(self, user_id: str, limit: int = DEFAULT_LIST_LIMIT) -> list[Conversation]:
        """Return the user's conversations, most recently updated first, without messages."""
        pass

    @abstractmethod
    async def delete(self, user_id: str, conversation_id: str) -> bool:
        pass


def with_positions(messages: list[Message]) -> list[Message]:
    """Deep copies of 'messages' with 'position' set from list order."""
    return [message.model_copy(update={"position": index}, deep=True) for index, message in enumerate(messages)]
