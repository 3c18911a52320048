"""Shared FastAPI dependencies and error translation for the route modules.

Functions:
    get_current_user_id(x_user_id): Caller identity forwarded by the auth gateway.
    get_embedding_generator(): Cached EmbeddingGenerator backed by the OpenAI client.
    get_retry_processor(session_factory, generator): RetryQueueProcessor with the dispatch table wired.
    to_http_exception(error): Map an AIServiceError to an HTTPException with a machine-readable body.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import async_sessionmaker

from chat_recall.core.config import get_settings
from chat_recall.db.session import get_session_factory
from chat_recall.schemas import SearchErrorDetail
from chat_recall.services.embeddings import EmbeddingGenerator
from chat_recall.services.errors import AIErrorType, AIFeature, AIServiceError
from chat_recall.services.openai_client import OpenAIService
from chat_recall.services.pipeline import make_embedding_retry_handler
from chat_recall.services.retry_queue import RetryQueueProcessor

_REASON_STATUS = {
    "invalid-argument": status.HTTP_400_BAD_REQUEST,
    "unauthenticated": status.HTTP_401_UNAUTHORIZED,
    "permission-denied": status.HTTP_403_FORBIDDEN,
    "not-found": status.HTTP_404_NOT_FOUND,
}


async def get_current_user_id(x_user_id: Optional[str] = Header(default=None, alias="X-User-Id")) -> Optional[str]:
    return x_user_id.strip() if x_user_id and x_user_id.strip() else None


@lru_cache()
def get_embedding_generator() -> EmbeddingGenerator:
    return EmbeddingGenerator(OpenAIService())


def get_retry_processor(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    generator: EmbeddingGenerator = Depends(get_embedding_generator),
) -> RetryQueueProcessor:
    settings = get_settings()
    handlers = {
        AIFeature.EMBEDDING_GENERATION: make_embedding_retry_handler(session_factory, generator, settings=settings),
    }
    return RetryQueueProcessor(session_factory, handlers, settings=settings)


def to_http_exception(error: AIServiceError) -> HTTPException:
    classification = error.classification
    detail = SearchErrorDetail(
        reason=error.reason,
        message=error.message,
        error_type=classification.type.value if classification else None,
        retryable=classification.retryable if classification else False,
        retry_after_seconds=classification.retry_delay_seconds if classification else None,
    )
    headers = None
    if error.reason in _REASON_STATUS:
        status_code = _REASON_STATUS[error.reason]
    elif classification is not None and classification.type == AIErrorType.RATE_LIMIT:
        status_code = status.HTTP_429_TOO_MANY_REQUESTS
        headers = {"Retry-After": str(int(classification.retry_delay_seconds))}
    elif classification is not None and classification.retryable:
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        status_code = status.HTTP_502_BAD_GATEWAY
    return HTTPException(status_code=status_code, detail=detail.model_dump(), headers=headers)
