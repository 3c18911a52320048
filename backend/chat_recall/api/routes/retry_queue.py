"""Scheduled trigger for the AI retry queue."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from chat_recall.api.deps import get_retry_processor
from chat_recall.schemas import RetrySweepResponse
from chat_recall.services.retry_queue import RetryQueueProcessor

router = APIRouter(prefix="/retry-queue", tags=["retry-queue"])


@router.post("/sweep", response_model=RetrySweepResponse)
async def sweep_retry_queue(
    processor: RetryQueueProcessor = Depends(get_retry_processor),
) -> RetrySweepResponse:
    try:
        result = await processor.sweep()
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Retry queue store unavailable") from exc
    return RetrySweepResponse(
        processed=result.processed,
        succeeded=result.succeeded,
        failed=result.failed,
        skipped=result.skipped,
    )
