"""Embedding pipeline endpoints.

Endpoints:
    message_created(event, background_tasks): Accept a "message created" event and embed it in the background.
    generate_embedding(payload, user_id, session): Embed a stored message for a member of its chat.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from chat_recall.api.deps import get_current_user_id, get_embedding_generator, to_http_exception
from chat_recall.db.session import get_session, get_session_factory
from chat_recall.schemas import (
    GenerateEmbeddingRequest,
    GenerateEmbeddingResponse,
    MessageCreatedAccepted,
    MessageCreatedEvent,
)
from chat_recall.services.embeddings import EmbeddingGenerator
from chat_recall.services.errors import AIServiceError, MessageNotFoundError
from chat_recall.services.pipeline import EmbeddingPipeline

router = APIRouter(tags=["embeddings"])

_LOGGER = logging.getLogger(__name__)


async def _process_message_created(
    event: MessageCreatedEvent,
    session_factory: async_sessionmaker,
    generator: EmbeddingGenerator,
) -> None:
    async with session_factory() as session:
        outcome = await EmbeddingPipeline(session, generator).handle_message_created(event)
    _LOGGER.info("Message event processed", extra={"message_id": outcome.message_id, "status": outcome.status})


@router.post(
    "/events/message-created",
    response_model=MessageCreatedAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def message_created(
    event: MessageCreatedEvent,
    background_tasks: BackgroundTasks,
    session_factory: async_sessionmaker = Depends(get_session_factory),
    generator: EmbeddingGenerator = Depends(get_embedding_generator),
) -> MessageCreatedAccepted:
    background_tasks.add_task(_process_message_created, event, session_factory, generator)
    return MessageCreatedAccepted(message_id=event.message_id)


@router.post("/embeddings/generate", response_model=GenerateEmbeddingResponse)
async def generate_embedding(
    payload: GenerateEmbeddingRequest,
    user_id: Optional[str] = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
    generator: EmbeddingGenerator = Depends(get_embedding_generator),
) -> GenerateEmbeddingResponse:
    if user_id is None:
        raise to_http_exception(AIServiceError.unauthenticated())
    pipeline = EmbeddingPipeline(session, generator)
    try:
        return await pipeline.generate_for_message(payload.message_id, user_id)
    except MessageNotFoundError as exc:
        raise to_http_exception(AIServiceError.not_found(str(exc))) from exc
    except AIServiceError as exc:
        raise to_http_exception(exc) from exc
