"""Chat storage models read by the recall service.

The chat service owns these tables; only the embedding bookkeeping columns on
`ChatMessage` are written from here.

Classes:
    ChatMessage: A stored chat message plus its embedding status and searchable metadata.
    ChatMember: Membership row linking a user to a chat.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, BigInteger, Column, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

from chat_recall.models.types import UTCDateTime


class ChatMessage(SQLModel, table=True):
    __tablename__ = "chat_messages"

    id: str = Field(primary_key=True)
    chat_id: str = Field(index=True)
    sender_id: str = Field(index=True)
    text: str = Field(default="", sa_column=Column(Text, nullable=False))
    timestamp_ms: int = Field(sa_column=Column(BigInteger, nullable=False))
    embedding_generated: bool = Field(default=False)
    embedding_error: Optional[str] = Field(default=None, sa_column=Column(Text))
    embedded_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime))
    searchable_metadata: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON))


class ChatMember(SQLModel, table=True):
    __tablename__ = "chat_members"
    __table_args__ = (UniqueConstraint("chat_id", "user_id", name="uq_chat_members_chat_user"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    chat_id: str = Field(index=True)
    user_id: str = Field(index=True)
