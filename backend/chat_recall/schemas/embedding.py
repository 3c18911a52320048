"""Schemas for the embedding pipeline.

Classes:
    LengthCategory: Bucketed message length used by searchable metadata.
    SearchableMetadata: Lightweight metadata derived from a message and written back onto it.
    ChatContext: Chat-level facts handed to metadata derivation.
    MessageCreatedEvent: Inbound "message created" event payload.
    GenerateEmbeddingRequest: Payload for the explicit embedding RPC.
    GenerateEmbeddingResponse: Result of the explicit embedding RPC.
    MessageCreatedAccepted: Acknowledgement returned when an event is queued for processing.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from chat_recall.utils.datetime_utils import now_utc


class LengthCategory(str, Enum):
    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"


class SearchableMetadata(BaseModel):
    keywords: list[str] = Field(default_factory=list)
    participants: list[str] = Field(default_factory=list)
    decision_made: bool | None = None
    has_action_item: bool | None = None
    urgency_indicators: list[str] = Field(default_factory=list)
    contains_questions: bool = False
    length_category: LengthCategory = LengthCategory.MEDIUM
    extracted_at: datetime = Field(default_factory=now_utc)
    extraction_version: str = "1.0"


class ChatContext(BaseModel):
    chat_id: str
    sender_id: str | None = None
    member_ids: list[str] = Field(default_factory=list)


class MessageCreatedEvent(BaseModel):
    message_id: str = Field(min_length=1)
    text: str
    chat_id: str = Field(min_length=1)
    sender_id: str
    timestamp_ms: int = Field(ge=0)


class GenerateEmbeddingRequest(BaseModel):
    message_id: str = Field(min_length=1)


class GenerateEmbeddingResponse(BaseModel):
    success: bool
    embedding_id: str
    metadata: SearchableMetadata


class MessageCreatedAccepted(BaseModel):
    message_id: str
    accepted: bool = True
