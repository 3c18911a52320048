"""Schemas for semantic search endpoints.

Range checks for `query`, `limit` and `min_score` live in the search service so that every
rejection carries the same machine-readable reason strings.

Classes:
    SemanticSearchRequest: Inbound search payload.
    SearchResult: A single ranked message match.
    SemanticSearchResponse: Ranked results plus timing.
    SearchErrorDetail: Error body returned when search fails.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class SemanticSearchRequest(BaseModel):
    query: str
    requester_id: str
    limit: Optional[int] = None
    chat_id: Optional[str] = None
    min_score: Optional[float] = None


class SearchResult(BaseModel):
    message_id: str
    score: float
    raw_score: float
    text: str
    message_preview: str
    chat_id: str
    sender_id: Optional[str] = None
    timestamp_ms: int


class SemanticSearchResponse(BaseModel):
    results: list[SearchResult] = Field(default_factory=list)
    total_results: int
    query_time_ms: float


class SearchErrorDetail(BaseModel):
    reason: str
    message: str
    error_type: Optional[str] = None
    retryable: bool = False
    retry_after_seconds: Optional[float] = None
