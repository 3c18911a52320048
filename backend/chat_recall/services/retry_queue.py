"""Durable retry queue for AI operations that failed with a retryable error.

Classes:
    RetryTask: Immutable snapshot of a due request handed to a retry handler.
    SweepResult: Aggregate counts reported by a sweep.
    FailedRequestStore: Creates and queries ``FailedAIRequest`` rows.
    RetryQueueProcessor: Periodic sweep that re-drives due requests through per-feature handlers.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Mapping, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from chat_recall.core.config import Settings, get_settings
from chat_recall.models import FailedAIRequest, RetryResolution
from chat_recall.services.errors import (
    AIFeature,
    ErrorClassification,
    calculate_retry_delay,
    classification_for_type,
    classify_exception,
)
from chat_recall.utils.datetime_utils import as_utc, now_utc
from chat_recall.utils.text import hash_for_privacy

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RetryTask:
    id: str
    feature: str
    error_type: str
    retry_count: int
    message_id: Optional[str]
    chat_id: Optional[str]


@dataclass(frozen=True, slots=True)
class SweepResult:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0


RetryHandler = Callable[[RetryTask], Awaitable[None]]


class FailedRequestStore:
    def __init__(self, session: AsyncSession, *, settings: Optional[Settings] = None) -> None:
        self._session = session
        self._settings = settings or get_settings()

    async def record_failure(
        self,
        feature: AIFeature | str,
        classification: ErrorClassification,
        *,
        user_id: Optional[str] = None,
        message_id: Optional[str] = None,
        chat_id: Optional[str] = None,
        query: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[FailedAIRequest]:
        """Persist a retryable failure; returns ``None`` for non-retryable classifications.

        A pending request for the same feature and message is updated in place so
        that one attempt chain maps to one row.
        """

        if not classification.retryable:
            return None

        feature_value = AIFeature(feature).value
        now = as_utc(now) if now is not None else now_utc()

        record: Optional[FailedAIRequest] = None
        if message_id is not None:
            result = await self._session.exec(
                select(FailedAIRequest).where(
                    FailedAIRequest.feature == feature_value,
                    FailedAIRequest.message_id == message_id,
                    FailedAIRequest.resolved == False,  # noqa: E712
                )
            )
            record = result.scalars().first()

        if record is None:
            delay = calculate_retry_delay(
                classification.retry_delay_seconds, 0, self._settings.retry_max_delay_seconds
            )
            record = FailedAIRequest(
                feature=feature_value,
                error_type=classification.type.value,
                error_message=classification.message,
                error_status_code=classification.status_code,
                retry_count=0,
                next_retry_at=now + timedelta(seconds=delay),
                user_hash=hash_for_privacy(user_id) if user_id else None,
                message_id=message_id,
                chat_id=chat_id,
                query_hash=hash_for_privacy(query) if query else None,
                created_at=now,
                updated_at=now,
            )
        else:
            record.error_type = classification.type.value
            record.error_message = classification.message
            record.error_status_code = classification.status_code

        self._session.add(record)
        await self._session.commit()
        _LOGGER.info(
            "Queued failed AI request",
            extra={
                "request_id": record.id,
                "feature": feature_value,
                "error_type": record.error_type,
                "next_retry_at": record.next_retry_at.isoformat(),
            },
        )
        return record

    async def due(self, now: datetime, limit: int) -> list[FailedAIRequest]:
        result = await self._session.exec(
            select(FailedAIRequest)
            .where(
                FailedAIRequest.resolved == False,  # noqa: E712
                FailedAIRequest.next_retry_at <= now,
            )
            .order_by(FailedAIRequest.next_retry_at, FailedAIRequest.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get(self, request_id: str) -> Optional[FailedAIRequest]:
        return await self._session.get(FailedAIRequest, request_id)

    async def pending_count(self) -> int:
        result = await self._session.exec(
            select(func.count()).select_from(FailedAIRequest).where(FailedAIRequest.resolved == False)  # noqa: E712
        )
        return int(result.scalar_one())


def _resolve(record: FailedAIRequest, resolution: str, now: datetime) -> None:
    record.resolved = True
    record.resolved_at = now
    record.resolution = resolution


class RetryQueueProcessor:
    """Selects due requests, re-attempts them by feature, and commits every transition at once.

    Only one sweep may run at a time per deployment; the scheduling trigger guarantees it.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        handlers: Mapping[AIFeature | str, RetryHandler],
        *,
        settings: Optional[Settings] = None,
    ) -> None:
        self._session_factory = session_factory
        self._handlers = {AIFeature(feature).value: handler for feature, handler in handlers.items()}
        self._settings = settings or get_settings()

    async def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        now = as_utc(now) if now is not None else now_utc()
        max_attempts = self._settings.retry_max_attempts

        async with self._session_factory() as session:
            store = FailedRequestStore(session, settings=self._settings)
            due = await store.due(now, self._settings.retry_batch_size)
            # Release the read transaction so handlers can write through their own sessions.
            await session.commit()

            if not due:
                return SweepResult()

            skipped = 0
            to_dispatch: list[FailedAIRequest] = []
            for record in due:
                if record.retry_count >= max_attempts:
                    _resolve(record, RetryResolution.EXHAUSTED, now)
                    skipped += 1
                elif not classification_for_type(record.error_type).retryable:
                    _resolve(record, RetryResolution.NON_RETRYABLE, now)
                    skipped += 1
                elif record.feature not in self._handlers:
                    _LOGGER.warning(
                        "No retry handler registered for feature",
                        extra={"request_id": record.id, "feature": record.feature},
                    )
                    _resolve(record, RetryResolution.UNSUPPORTED_FEATURE, now)
                    skipped += 1
                else:
                    to_dispatch.append(record)

            errors = await self._dispatch_all(to_dispatch)

            succeeded = 0
            failed = 0
            for record, error in zip(to_dispatch, errors):
                if error is None:
                    _resolve(record, RetryResolution.SUCCEEDED, now)
                    succeeded += 1
                    continue

                failed += 1
                classification = classify_exception(error)
                record.error_type = classification.type.value
                record.error_message = classification.message
                record.error_status_code = classification.status_code
                record.retry_count += 1
                if record.retry_count >= max_attempts:
                    _resolve(record, RetryResolution.EXHAUSTED, now)
                else:
                    delay = calculate_retry_delay(1, record.retry_count, self._settings.retry_max_delay_seconds)
                    record.next_retry_at = now + timedelta(seconds=delay)

            for record in due:
                session.add(record)
            try:
                await session.commit()
            except SQLAlchemyError:
                await session.rollback()
                _LOGGER.exception("Retry sweep commit failed; no transitions were persisted")
                raise

        result = SweepResult(processed=len(due), succeeded=succeeded, failed=failed, skipped=skipped)
        _LOGGER.info(
            "Retry sweep complete",
            extra={
                "processed": result.processed,
                "succeeded": result.succeeded,
                "failed": result.failed,
                "skipped": result.skipped,
            },
        )
        return result

    async def _dispatch_all(self, records: list[FailedAIRequest]) -> list[Optional[BaseException]]:
        semaphore = asyncio.Semaphore(max(1, self._settings.retry_dispatch_concurrency))
        tasks = [
            RetryTask(
                id=record.id,
                feature=record.feature,
                error_type=record.error_type,
                retry_count=record.retry_count,
                message_id=record.message_id,
                chat_id=record.chat_id,
            )
            for record in records
        ]
        return list(await asyncio.gather(*(self._dispatch_one(task, semaphore) for task in tasks)))

    async def _dispatch_one(self, task: RetryTask, semaphore: asyncio.Semaphore) -> Optional[BaseException]:
        handler = self._handlers[task.feature]
        async with semaphore:
            try:
                await asyncio.wait_for(handler(task), self._settings.retry_dispatch_timeout_seconds)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                _LOGGER.warning(
                    "Retry dispatch failed",
                    extra={"request_id": task.id, "feature": task.feature, "error": str(exc) or type(exc).__name__},
                )
                return exc
        return None
