"""
SQLAlchemy-backed conversation store.

Works with any async SQLAlchemy driver; the backend uses 'aiosqlite' by default
and 'asyncpg' URLs work unchanged. Each 'upsert' runs in one transaction: the
ownership check, the deletion of the previous messages and parts, and the
insertion of the new ones either all commit or all roll back, so a failed or
cancelled write never leaves a partial message list behind.
"""

from collections import defaultdict
from typing import Any

from loguru import logger
from sqlalchemy import delete, event, insert, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from research_toolkit.conversation_database.data_models.conversation import (
    DEFAULT_LIST_LIMIT,
    Conversation,
    ConversationDatabase,
    with_positions,
)
from research_toolkit.conversation_database.data_models.message import Message
from research_toolkit.conversation_database.sql_schema import Base, ConversationRow, MessageRow, PartRow
from research_toolkit.errors import OwnershipConflict
from research_toolkit.utils.database import generate_uid
from research_toolkit.utils.time import get_current_timestamp


def create_conversation_engine(url: str) -> AsyncEngine:
    """Create an async engine, with foreign keys enforced on SQLite.

    In-memory SQLite URLs share one connection so every session sees the same
    database.
    """
    kwargs: dict[str, Any] = {}
    if url.startswith("sqlite") and (":memory:" in url or url.endswith("://")):
        kwargs = {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
    engine = create_async_engine(url, echo=False, **kwargs)

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):  # type: ignore[no-untyped-def]
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


async def init_db(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


class SQLAlchemyConversationDatabase(ConversationDatabase):
    def __init__(self, engine: AsyncEngine) -> None:
        super().__init__()
        self.engine = engine
        self._session_factory = async_sessionmaker(engine, expire_on_commit=False)

    async def _replace(self, user_id: str, conversation_id: str, title: str, messages: list[Message]) -> Conversation:
        now = get_current_timestamp()
        positioned = with_positions(messages)
        async with self._session_factory() as session, session.begin():
            row = await session.get(ConversationRow, conversation_id)
            if row is not None and row.user_id != user_id:
                raise OwnershipConflict(f"Conversation {conversation_id} belongs to another user")

            if row is None:
                row = ConversationRow(
                    id=conversation_id, user_id=user_id, title=title, create_timestamp=now, update_timestamp=now
                )
                session.add(row)
                await session.flush()
            else:
                row.title = title
                row.update_timestamp = now
                await self._delete_messages(session, conversation_id)

            row_ids = [generate_uid() for _ in positioned]
            if positioned:
                await session.execute(
                    insert(MessageRow),
                    [
                        {
                            "row_id": row_id,
                            "id": message.id,
                            "conversation_id": conversation_id,
                            "role": str(message.role),
                            "position": message.position,
                        }
                        for row_id, message in zip(row_ids, positioned)
                    ],
                )
            part_rows = [
                {
                    "message_row_id": row_id,
                    "ordinal": ordinal,
                    "kind": part.type,
                    "payload": part.model_dump(mode="json"),
                }
                for row_id, message in zip(row_ids, positioned)
                for ordinal, part in enumerate(message.parts)
            ]
            if part_rows:
                await session.execute(insert(PartRow), part_rows)

            conversation = Conversation(
                id=row.id,
                user_id=row.user_id,
                title=row.title,
                create_timestamp=row.create_timestamp,
                update_timestamp=row.update_timestamp,
                messages=positioned,
            )
        logger.debug(f"Stored conversation {conversation_id} with {len(positioned)} messages")
        return conversation

    @staticmethod
    async def _delete_messages(session: AsyncSession, conversation_id: str) -> None:
        row_ids = select(MessageRow.row_id).where(MessageRow.conversation_id == conversation_id)
        await session.execute(delete(PartRow).where(PartRow.message_row_id.in_(row_ids)))
        await session.execute(delete(MessageRow).where(MessageRow.conversation_id == conversation_id))

    async def get(self, user_id: str, conversation_id: str) -> Conversation | None:
        async with self._session_factory() as session:
            row = await session.get(ConversationRow, conversation_id)
            if row is None or row.user_id != user_id:
                return None

            message_rows = (
                await session.execute(
                    select(MessageRow)
                    .where(MessageRow.conversation_id == conversation_id)
                    .order_by(MessageRow.position)
                )
            ).scalars().all()
            part_rows = (
                await session.execute(
                    select(PartRow)
                    .join(MessageRow, PartRow.message_row_id == MessageRow.row_id)
                    .where(MessageRow.conversation_id == conversation_id)
                    .order_by(PartRow.message_row_id, PartRow.ordinal)
                )
            ).scalars().all()

        parts_by_message: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for part_row in part_rows:
            parts_by_message[part_row.message_row_id].append(part_row.payload)

        return Conversation(
            id=row.id,
            user_id=row.user_id,
            title=row.title,
            create_timestamp=row.create_timestamp,
            update_timestamp=row.update_timestamp,
            messages=[
                Message.model_validate(
                    {
                        "id": message_row.id,
                        "role": message_row.role,
                        "position": message_row.position,
                        "parts": parts_by_message[message_row.row_id],
                    }
                )
                for message_row in message_rows
            ],
        )

    async def list_conversations(self, user_id: str, limit: int = DEFAULT_LIST_LIMIT) -> list[Conversation]:
        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(ConversationRow)
                    .where(ConversationRow.user_id == user_id)
                    .order_by(ConversationRow.update_timestamp.desc())
                    .limit(limit)
                )
            ).scalars().all()
        return [
            Conversation(
                id=row.id,
                user_id=row.user_id,
                title=row.title,
                create_timestamp=row.create_timestamp,
                update_timestamp=row.update_timestamp,
            )
            for row in rows
        ]

    async def delete(self, user_id: str, conversation_id: str) -> bool:
        async with self.write_lock(conversation_id):
            async with self._session_factory() as session, session.begin():
                row = await session.get(ConversationRow, conversation_id)
                if row is None or row.user_id != user_id:
                    return False
                await self._delete_messages(session, conversation_id)
                await session.delete(row)
        logger.info(f"Deleted conversation {conversation_id}")
        return True
