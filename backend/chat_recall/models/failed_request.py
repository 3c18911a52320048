"""Failed AI request ORM model.

Classes:
    RetryResolution: Terminal outcomes recorded when a failed request is resolved.
    FailedAIRequest: Retry bookkeeping for an AI operation that failed with a retryable error.

Functions:
    set_updated_at(_, __, target): SQLAlchemy event hook that maintains the `updated_at` timestamp.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import Column, Index, Text, event
from sqlmodel import Field, SQLModel

from chat_recall.models.types import UTCDateTime
from chat_recall.utils.datetime_utils import now_utc


class RetryResolution(str):
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    NON_RETRYABLE = "non_retryable"
    UNSUPPORTED_FEATURE = "unsupported_feature"


class FailedAIRequest(SQLModel, table=True):
    __tablename__ = "failed_ai_requests"
    __table_args__ = (
        Index("ix_failed_ai_requests_due", "resolved", "next_retry_at"),
    )

    id: str = Field(default_factory=lambda: uuid4().hex, primary_key=True)
    feature: str = Field(index=True)
    error_type: str
    error_message: Optional[str] = Field(default=None, sa_column=Column(Text))
    error_status_code: Optional[int] = None
    retry_count: int = Field(default=0)
    next_retry_at: datetime = Field(sa_column=Column(UTCDateTime, nullable=False))
    resolved: bool = Field(default=False)
    resolved_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime))
    resolution: Optional[str] = None
    user_hash: Optional[str] = None
    message_id: Optional[str] = Field(default=None, index=True)
    chat_id: Optional[str] = None
    query_hash: Optional[str] = None
    created_at: datetime = Field(default_factory=now_utc, sa_column=Column(UTCDateTime, nullable=False))
    updated_at: datetime = Field(default_factory=now_utc, sa_column=Column(UTCDateTime, nullable=False))


@event.listens_for(FailedAIRequest, "before_update", propagate=True)
def set_updated_at(_, __, target):
    target.updated_at = now_utc()
