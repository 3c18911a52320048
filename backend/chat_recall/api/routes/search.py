"""Semantic search endpoint."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel.ext.asyncio.session import AsyncSession

from chat_recall.api.deps import get_current_user_id, get_embedding_generator, to_http_exception
from chat_recall.db.session import get_session
from chat_recall.schemas import SemanticSearchRequest, SemanticSearchResponse
from chat_recall.services.embeddings import EmbeddingGenerator
from chat_recall.services.errors import AIServiceError
from chat_recall.services.search import SemanticSearchService

router = APIRouter(prefix="/search", tags=["search"])


@router.post("", response_model=SemanticSearchResponse)
async def semantic_search(
    payload: SemanticSearchRequest,
    user_id: Optional[str] = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
    generator: EmbeddingGenerator = Depends(get_embedding_generator),
) -> SemanticSearchResponse:
    service = SemanticSearchService(session, generator)
    try:
        return await service.search(payload, user_id)
    except AIServiceError as exc:
        raise to_http_exception(exc) from exc
