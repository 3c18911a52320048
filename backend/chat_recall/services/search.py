"""Semantic search over a user's own message history.

Classes:
    SemanticSearchService: Validates a query, embeds it, retrieves candidates from the
        vector store, applies recency boosting and the score threshold, and ranks results.

Functions:
    recency_boost(raw_score, timestamp_ms, now_ms, max_boost, half_life_hours): Blend similarity with message age.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from chat_recall.core.config import Settings, get_settings
from chat_recall.models import ChatMessage
from chat_recall.schemas import SearchResult, SemanticSearchRequest, SemanticSearchResponse
from chat_recall.services.embeddings import EmbeddingGenerator
from chat_recall.services.errors import (
    AIServiceError,
    EmbeddingProviderError,
    VectorStoreError,
    classify_error,
    classify_exception,
)
from chat_recall.services.membership import is_chat_member, member_chat_ids
from chat_recall.services.vector_store import MAX_TOP_K, SqlVectorStore, VectorMatch, VectorStore
from chat_recall.utils.text import hash_for_privacy, normalise_query, preview

_LOGGER = logging.getLogger(__name__)

CANDIDATE_MULTIPLIER = 3


def recency_boost(
    raw_score: float,
    timestamp_ms: int,
    now_ms: float,
    *,
    max_boost: float,
    half_life_hours: float,
) -> float:
    """Add at most ``max_boost`` to ``raw_score``, halving the bonus every ``half_life_hours``.

    The result is clamped to [0, 1]. Two candidates whose raw scores differ by more
    than ``max_boost`` keep their relative order.
    """

    base = min(max(raw_score, 0.0), 1.0)
    half_life_ms = half_life_hours * 3_600_000
    if max_boost <= 0 or half_life_ms <= 0:
        return base
    age_ms = max(0.0, now_ms - timestamp_ms)
    return min(1.0, base + max_boost * 0.5 ** (age_ms / half_life_ms))


class SemanticSearchService:
    def __init__(
        self,
        session: AsyncSession,
        generator: EmbeddingGenerator,
        *,
        vector_store: Optional[VectorStore] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._session = session
        self._generator = generator
        self._settings = settings or get_settings()
        self._vector_store = vector_store or SqlVectorStore(session, settings=self._settings)
        self._clock = clock

    async def search(
        self,
        request: SemanticSearchRequest,
        authenticated_user_id: Optional[str],
    ) -> SemanticSearchResponse:
        started = time.perf_counter()
        query, limit, min_score = self._validate(request, authenticated_user_id)

        # Membership is checked before any provider or vector store call.
        chat_filter = await self._authorised_chats(request.requester_id, request.chat_id)
        if not chat_filter:
            return SemanticSearchResponse(results=[], total_results=0, query_time_ms=_elapsed_ms(started))

        query_hash = hash_for_privacy(query)
        try:
            vector = await self._generator.embed(query)
        except EmbeddingProviderError as exc:
            raise self._unavailable(exc, "embed", query_hash) from exc

        candidate_pool = min(limit * CANDIDATE_MULTIPLIER, MAX_TOP_K)
        try:
            matches = await self._vector_store.query(vector, chat_filter=chat_filter, top_k=candidate_pool)
        except VectorStoreError as exc:
            raise self._unavailable(exc, "query", query_hash) from exc

        ranked = self._rank(matches, min_score)[:limit]
        results = await self._materialise(ranked)

        elapsed = _elapsed_ms(started)
        _LOGGER.info(
            "Search completed",
            extra={
                "query_hash": query_hash,
                "candidates": len(matches),
                "result_count": len(results),
                "duration_ms": elapsed,
            },
        )
        return SemanticSearchResponse(results=results, total_results=len(results), query_time_ms=elapsed)

    def _validate(
        self,
        request: SemanticSearchRequest,
        authenticated_user_id: Optional[str],
    ) -> tuple[str, int, Optional[float]]:
        if not authenticated_user_id:
            raise AIServiceError.unauthenticated()

        trimmed = request.query.strip() if isinstance(request.query, str) else ""
        if not trimmed:
            raise AIServiceError.invalid_argument("query is required")
        # Bounds apply to the caller's trimmed text, not the normalised form sent to the provider.
        if len(trimmed) < self._settings.search_min_query_chars:
            raise AIServiceError.invalid_argument(
                f"query must be at least {self._settings.search_min_query_chars} characters"
            )
        if len(trimmed) > self._settings.search_max_query_chars:
            raise AIServiceError.invalid_argument(
                f"query must be at most {self._settings.search_max_query_chars} characters"
            )
        query = normalise_query(trimmed)

        limit = self._settings.search_default_limit if request.limit is None else request.limit
        max_limit = min(self._settings.search_max_limit, MAX_TOP_K)
        if limit < 1 or limit > max_limit:
            raise AIServiceError.invalid_argument(f"limit must be between 1 and {max_limit}")

        min_score = request.min_score if request.min_score is not None else self._settings.search_default_min_score
        if min_score is not None and not 0.0 <= min_score <= 1.0:
            raise AIServiceError.invalid_argument("min_score must be between 0 and 1")

        if request.requester_id != authenticated_user_id:
            raise AIServiceError.permission_denied("Cannot search other users' messages")

        return query, limit, min_score

    async def _authorised_chats(self, requester_id: str, chat_id: Optional[str]) -> list[str]:
        try:
            if chat_id is not None:
                if not await is_chat_member(self._session, chat_id, requester_id):
                    raise AIServiceError.permission_denied("Requester is not a member of this chat")
                return [chat_id]
            return await member_chat_ids(self._session, requester_id)
        except SQLAlchemyError as exc:
            classification = classify_error(f"Membership lookup failed: {exc}", 503)
            raise AIServiceError.unavailable(classification) from exc

    def _rank(self, matches: list[VectorMatch], min_score: Optional[float]) -> list[tuple[float, VectorMatch]]:
        now_ms = self._clock() * 1000
        scored = [
            (
                recency_boost(
                    match.raw_score,
                    match.metadata.timestamp_ms,
                    now_ms,
                    max_boost=self._settings.recency_max_boost,
                    half_life_hours=self._settings.recency_half_life_hours,
                ),
                match,
            )
            for match in matches
        ]
        if min_score is not None:
            scored = [item for item in scored if item[0] >= min_score]
        scored.sort(key=lambda item: (-item[0], -item[1].metadata.timestamp_ms))
        return scored

    async def _materialise(self, ranked: list[tuple[float, VectorMatch]]) -> list[SearchResult]:
        if not ranked:
            return []
        ids = [match.id for _, match in ranked]
        try:
            result = await self._session.exec(select(ChatMessage).where(ChatMessage.id.in_(ids)))
            messages = {message.id: message for message in result.scalars().all()}
        except SQLAlchemyError:
            _LOGGER.warning("Falling back to stored snippets for search results", exc_info=True)
            messages = {}

        results: list[SearchResult] = []
        for score, match in ranked:
            message = messages.get(match.id)
            text = message.text if message is not None else match.metadata.text_snippet
            results.append(
                SearchResult(
                    message_id=match.id,
                    score=score,
                    raw_score=match.raw_score,
                    text=text,
                    message_preview=preview(text),
                    chat_id=match.metadata.chat_id,
                    sender_id=match.metadata.sender_id or None,
                    timestamp_ms=match.metadata.timestamp_ms,
                )
            )
        return results

    def _unavailable(self, exc: Exception, stage: str, query_hash: str) -> AIServiceError:
        classification = classify_exception(exc)
        _LOGGER.error(
            "Semantic search failed",
            extra={
                "stage": stage,
                "query_hash": query_hash,
                "error_type": classification.type.value,
                "status_code": classification.status_code,
            },
        )
        return AIServiceError.unavailable(classification)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)
