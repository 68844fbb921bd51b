"""
Research toolkit controller (Facade).

'ResearchToolkitController' is the single entry point for application logic. It
validates a chat request, resolves or allocates the conversation, runs the
agent for one turn while streaming its events, and persists the resulting
history.

A turn is split in two so that request errors never reach a half-open stream:

    'prepare_turn' - validation, ownership check and, for a new chat, the
                     pre-emptive creation of the conversation. Raises
                     'EmptyMessagesError' or 'NotFoundOrUnauthorized' before
                     anything is streamed.
    'run_turn'     - the streamed part. Sends 'NEW_CHAT_CREATED' first when a
                     conversation was allocated, runs the agent, persists the
                     full history, and only then closes the channel, so a
                     client that sees 'finish' can rely on the turn being
                     stored. Cancelled or failed turns persist nothing.

'stream_turn' and 'process_turn' wrap 'run_turn' for streaming and
non-streaming callers.
"""

import asyncio
from collections.abc import AsyncGenerator

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, field_validator

from research_toolkit.agents.base import Agent
from research_toolkit.conversation_database.data_models.conversation import (
    DEFAULT_LIST_LIMIT,
    Conversation,
    ConversationDatabase,
)
from research_toolkit.conversation_database.data_models.message import Message
from research_toolkit.errors import Cancelled, EmptyMessagesError, NotFoundOrUnauthorized, OwnershipConflict
from research_toolkit.llms.base import Roles
from research_toolkit.settings import AgentSettings
from research_toolkit.streaming.channel import EventChannel
from research_toolkit.streaming.events import StreamEvent, new_chat_created
from research_toolkit.utils.cancellation import CancellationSignal
from research_toolkit.utils.database import generate_uid

GENERIC_ERROR_MESSAGE = "Oops, an error occurred!"
CANCELLED_MESSAGE = "The request was cancelled."
DEFAULT_CONVERSATION_TITLE = "New Conversation"

# System and tool messages are produced by the agent, never by the client.
CLIENT_ROLES = frozenset({Roles.USER, Roles.ASSISTANT})


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages: list[Message]
    chat_id: str | None = Field(default=None, alias="chatId")
    is_new_chat: bool = Field(default=False, alias="isNewChat")

    @field_validator("messages")
    @classmethod
    def _client_roles_only(cls, messages: list[Message]) -> list[Message]:
        for message in messages:
            if message.role not in CLIENT_ROLES:
                raise ValueError(f"role {str(message.role)!r} is not allowed in a chat request")
        return messages


class PreparedTurn(BaseModel):
    user_id: str
    conversation_id: str
    title: str
    history: list[Message]
    created: bool


def derive_title(messages: list[Message], length: int) -> str:
    """Title from the text of the last user message, truncated to 'length' characters."""
    source = next((m for m in reversed(messages) if m.role == Roles.USER), messages[-1])
    text = " ".join(source.text.split())
    if not text:
        return DEFAULT_CONVERSATION_TITLE
    return text if len(text) <= length else text[:length] + "..."


class ResearchToolkitController:
    def __init__(
        self,
        conversation_db: ConversationDatabase,
        agent: Agent,
        settings: AgentSettings | None = None,
    ) -> None:
        self.conversation_db = conversation_db
        self.agent = agent
        self.settings = settings or AgentSettings()

    async def prepare_turn(self, request: ChatRequest, user_id: str) -> PreparedTurn:
        if not request.messages:
            raise EmptyMessagesError("No messages provided")

        title = derive_title(request.messages, self.settings.title_length)

        if request.chat_id and not request.is_new_chat:
            if await self.conversation_db.get(user_id, request.chat_id) is None:
                raise NotFoundOrUnauthorized(f"Chat {request.chat_id} not found")
            return PreparedTurn(
                user_id=user_id, conversation_id=request.chat_id, title=title, history=request.messages, created=False
            )

        conversation_id = request.chat_id or generate_uid()
        if await self.conversation_db.get(user_id, conversation_id) is not None:
            logger.debug(f"Chat {conversation_id} already exists for user {user_id}, continuing it")
            return PreparedTurn(
                user_id=user_id, conversation_id=conversation_id, title=title, history=request.messages, created=False
            )

        try:
            await self.conversation_db.upsert(user_id, conversation_id, title, request.messages)
        except OwnershipConflict as e:
            raise NotFoundOrUnauthorized(f"Chat {conversation_id} not found") from e
        logger.info(f"Created chat {conversation_id} for user {user_id}")
        return PreparedTurn(
            user_id=user_id, conversation_id=conversation_id, title=title, history=request.messages, created=True
        )

    async def run_turn(self, turn: PreparedTurn, channel: EventChannel, cancellation: CancellationSignal) -> None:
        """Stream one turn into 'channel' and close it exactly once."""
        timer = asyncio.get_running_loop().call_later(
            self.settings.max_duration_seconds, cancellation.cancel, "maximum turn duration exceeded"
        )
        logger.info(f"Turn started for chat {turn.conversation_id} ({len(turn.history)} messages)")
        try:
            if turn.created:
                channel.send(new_chat_created(turn.conversation_id))
            messages = await self.agent.run(turn.history, channel, cancellation)
            cancellation.raise_if_cancelled()
            await self.conversation_db.upsert(turn.user_id, turn.conversation_id, turn.title, messages)
        except Cancelled as e:
            logger.info(f"Turn for chat {turn.conversation_id} cancelled: {e}")
            channel.close_with_error(CANCELLED_MESSAGE)
        except asyncio.CancelledError:
            channel.close_with_error(CANCELLED_MESSAGE)
            raise
        except Exception:
            logger.exception(f"Turn for chat {turn.conversation_id} failed")
            channel.close_with_error(GENERIC_ERROR_MESSAGE)
        else:
            logger.info(f"Turn for chat {turn.conversation_id} persisted with {len(messages)} messages")
            channel.close()
        finally:
            timer.cancel()

    async def stream_turn(
        self, turn: PreparedTurn, cancellation: CancellationSignal | None = None
    ) -> AsyncGenerator[StreamEvent, None]:
        """Run 'turn' in a background task and yield its events.

        Closing the generator early (client disconnect) fires the cancellation
        signal and waits for the turn to wind down.
        """
        cancellation = cancellation or CancellationSignal()
        channel = EventChannel()
        task = asyncio.create_task(self.run_turn(turn, channel, cancellation))
        try:
            async for event in channel:
                yield event
        finally:
            if not task.done():
                cancellation.cancel("stream consumer went away")
            await task

    async def process_turn(self, request: ChatRequest, user_id: str) -> list[StreamEvent]:
        """Non-streaming variant: run a whole turn and return every event."""
        turn = await self.prepare_turn(request, user_id)
        return [event async for event in self.stream_turn(turn)]

    async def get_conversation(self, user_id: str, conversation_id: str) -> Conversation:
        conversation = await self.conversation_db.get(user_id, conversation_id)
        if conversation is None:
            raise NotFoundOrUnauthorized(f"Chat {conversation_id} not found")
        return conversation

    async def list_conversations(self, user_id: str, limit: int = DEFAULT_LIST_LIMIT) -> list[Conversation]:
        return await self.conversation_db.list_conversations(user_id, limit)

    async def delete_conversation(self, user_id: str, conversation_id: str) -> None:
        if not await self.conversation_db.delete(user_id, conversation_id):
            raise NotFoundOrUnauthorized(f"Chat {conversation_id} not found")
