"""
In-memory conversation store.

Used by tests and single-process development setups. Records are deep-copied on
the way in and on the way out, so callers can keep mutating their working
history without touching what the store holds.
"""

import itertools

from loguru import logger

from research_toolkit.conversation_database.data_models.conversation import (
    DEFAULT_LIST_LIMIT,
    Conversation,
    ConversationDatabase,
    with_positions,
)
from research_toolkit.conversation_database.data_models.message import Message
from research_toolkit.errors import OwnershipConflict
from research_toolkit.utils.time import get_current_timestamp


class InMemoryConversationDatabase(ConversationDatabase):
    def __init__(self) -> None:
        super().__init__()
        self._conversations: dict[str, Conversation] = {}
        # Breaks update_timestamp ties so recency ordering stays strict.
        self._write_sequence: dict[str, int] = {}
        self._counter = itertools.count()

    async def _replace(self, user_id: str, conversation_id: str, title: str, messages: list[Message]) -> Conversation:
        existing = self._conversations.get(conversation_id)
        if existing is not None and existing.user_id != user_id:
            raise OwnershipConflict(f"Conversation {conversation_id} belongs to another user")

        now = get_current_timestamp()
        conversation = Conversation(
            id=conversation_id,
            user_id=user_id,
            title=title,
            create_timestamp=existing.create_timestamp if existing else now,
            update_timestamp=now,
            messages=with_positions(messages),
        )
        self._conversations[conversation_id] = conversation
        self._write_sequence[conversation_id] = next(self._counter)
        logger.debug(f"Stored conversation {conversation_id} with {len(messages)} messages")
        return conversation.model_copy(deep=True)

    async def get(self, user_id: str, conversation_id: str) -> Conversation | None:
        conversation = self._conversations.get(conversation_id)
        if conversation is None or conversation.user_id != user_id:
            return None
        return conversation.model_copy(deep=True)

    async def list_conversations(self, user_id: str, limit: int = DEFAULT_LIST_LIMIT) -> list[Conversation]:
        owned = [c for c in self._conversations.values() if c.user_id == user_id]
        owned.sort(key=lambda c: (c.update_timestamp, self._write_sequence[c.id]), reverse=True)
        return [c.model_copy(update={"messages": []}, deep=True) for c in owned[:limit]]

    async def delete(self, user_id: str, conversation_id: str) -> bool:
        async with self.write_lock(conversation_id):
            conversation = self._conversations.get(conversation_id)
            if conversation is None or conversation.user_id != user_id:
                return False
            del self._conversations[conversation_id]
            del self._write_sequence[conversation_id]
            return True
