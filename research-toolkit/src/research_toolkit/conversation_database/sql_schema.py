"""SQLAlchemy ORM schema for the conversation store.

Three tables: conversations, messages and parts. Message rows get their own
generated 'row_id' on every write; the client-facing message 'id' is a plain
column, so the same message id may appear in several conversations or twice in
one. A message's position is unique within its conversation and is reassigned
on every write; parts are keyed by (message_row_id, ordinal) and store the part
itself as JSON.
"""

from sqlalchemy import JSON, BigInteger, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class ConversationRow(Base):
    __tablename__ = "conversations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    create_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    update_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)


class MessageRow(Base):
    __tablename__ = "messages"
    __table_args__ = (UniqueConstraint("conversation_id", "position", name="uq_messages_conversation_position"),)

    row_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    id: Mapped[str] = mapped_column(String(255), nullable=False)
    conversation_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)


class PartRow(Base):
    __tablename__ = "parts"

    message_row_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("messages.row_id", ondelete="CASCADE"), primary_key=True
    )
    ordinal: Mapped[int] = mapped_column(Integer, primary_key=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
