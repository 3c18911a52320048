"""Message embedding persistence model.

Classes:
    EmbeddingRecord: One L2-normalised vector per embedded message, keyed by the message id.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Column, LargeBinary, Text
from sqlmodel import Field, SQLModel

from chat_recall.models.types import UTCDateTime
from chat_recall.utils.datetime_utils import now_utc


class EmbeddingRecord(SQLModel, table=True):
    __tablename__ = "embedding_records"

    id: str = Field(primary_key=True)
    chat_id: str = Field(index=True)
    sender_id: str = Field(default="")
    timestamp_ms: int = Field(sa_column=Column(BigInteger, nullable=False))
    text_snippet: Optional[str] = Field(default=None, sa_column=Column(Text))
    dim: int
    vector: bytes = Field(sa_column=Column(LargeBinary, nullable=False))
    vector_norm: float | None = Field(default=None)
    created_at: datetime = Field(default_factory=now_utc, sa_column=Column(UTCDateTime, nullable=False))
    updated_at: datetime = Field(default_factory=now_utc, sa_column=Column(UTCDateTime, nullable=False))
