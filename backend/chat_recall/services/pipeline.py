"""Embedding pipeline for chat messages.

Classes:
    PipelineStatus: Outcome labels for a processed message event.
    PipelineOutcome: Immutable result of handling one message.
    EmbeddingPipeline: Embeds a message, upserts its vector, and writes metadata back onto the message.

Functions:
    make_embedding_retry_handler(session_factory, generator): Retry queue handler for embedding failures.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from chat_recall.core.config import Settings, get_settings
from chat_recall.models import ChatMessage
from chat_recall.schemas import (
    ChatContext,
    GenerateEmbeddingResponse,
    MessageCreatedEvent,
    SearchableMetadata,
)
from chat_recall.services.embeddings import EmbeddingGenerator
from chat_recall.services.errors import (
    AIFeature,
    AIServiceError,
    EmbeddingProviderError,
    ErrorClassification,
    MessageNotFoundError,
    VectorStoreError,
    classify_error,
    classify_exception,
)
from chat_recall.services.membership import chat_member_ids, is_chat_member
from chat_recall.services.retry_queue import FailedRequestStore, RetryHandler, RetryTask
from chat_recall.services.vector_store import SqlVectorStore, VectorMetadata, VectorStore
from chat_recall.utils.datetime_utils import now_utc

_LOGGER = logging.getLogger(__name__)


class PipelineStatus(str):
    EMBEDDED = "embedded"
    SKIPPED = "skipped"
    QUEUED = "queued"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class PipelineOutcome:
    message_id: str
    status: str
    metadata: Optional[SearchableMetadata] = None
    classification: Optional[ErrorClassification] = None
    failed_request_id: Optional[str] = None


class EmbeddingPipeline:
    def __init__(
        self,
        session: AsyncSession,
        generator: EmbeddingGenerator,
        *,
        vector_store: Optional[VectorStore] = None,
        failed_requests: Optional[FailedRequestStore] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._session = session
        self._generator = generator
        self._settings = settings or get_settings()
        self._vector_store = vector_store or SqlVectorStore(session, settings=self._settings)
        self._failed_requests = failed_requests or FailedRequestStore(session, settings=self._settings)

    async def handle_message_created(self, event: MessageCreatedEvent, *, force: bool = False) -> PipelineOutcome:
        """Process a "message created" event.

        Retryable provider or store failures are absorbed into the retry queue and
        the call returns normally; non-retryable ones leave the message without an
        embedding and mark it with the error.
        """

        text = event.text or ""
        if len(text.strip()) < self._settings.min_embed_chars:
            _LOGGER.info(
                "Message text too short for embedding",
                extra={"message_id": event.message_id, "text_length": len(text)},
            )
            return PipelineOutcome(message_id=event.message_id, status=PipelineStatus.SKIPPED)

        if not force:
            message = await self._session.get(ChatMessage, event.message_id)
            if message is not None and message.embedding_generated:
                _LOGGER.info("Embedding already exists, skipping", extra={"message_id": event.message_id})
                return PipelineOutcome(message_id=event.message_id, status=PipelineStatus.SKIPPED)

        try:
            metadata = await self._embed_and_store(
                message_id=event.message_id,
                text=text,
                chat_id=event.chat_id,
                sender_id=event.sender_id,
                timestamp_ms=event.timestamp_ms,
            )
        except (EmbeddingProviderError, VectorStoreError) as exc:
            classification = classify_exception(exc)
            record = await self._failed_requests.record_failure(
                AIFeature.EMBEDDING_GENERATION,
                classification,
                user_id=event.sender_id,
                message_id=event.message_id,
                chat_id=event.chat_id,
            )
            if record is not None:
                return PipelineOutcome(
                    message_id=event.message_id,
                    status=PipelineStatus.QUEUED,
                    classification=classification,
                    failed_request_id=record.id,
                )
            _LOGGER.error(
                "Embedding failed with a non-retryable error",
                extra={
                    "message_id": event.message_id,
                    "error_type": classification.type.value,
                    "status_code": classification.status_code,
                },
            )
            await self._mark_failed(event.message_id, classification)
            return PipelineOutcome(
                message_id=event.message_id,
                status=PipelineStatus.FAILED,
                classification=classification,
            )

        return PipelineOutcome(message_id=event.message_id, status=PipelineStatus.EMBEDDED, metadata=metadata)

    async def generate_for_message(self, message_id: str, requester_id: str) -> GenerateEmbeddingResponse:
        """Embed a stored message on request; failures are surfaced to the caller, not queued.

        Only members of the message's chat may trigger it.
        """

        message = await self._session.get(ChatMessage, message_id)
        if message is None:
            raise MessageNotFoundError(message_id)
        try:
            allowed = await is_chat_member(self._session, message.chat_id, requester_id)
        except SQLAlchemyError as exc:
            raise AIServiceError.unavailable(classify_error(f"Membership lookup failed: {exc}", 503)) from exc
        if not allowed:
            raise AIServiceError.permission_denied("Requester is not a member of this chat")
        if len((message.text or "").strip()) < self._settings.min_embed_chars:
            raise AIServiceError.invalid_argument(
                f"text must be at least {self._settings.min_embed_chars} characters"
            )

        try:
            metadata = await self._embed_and_store(
                message_id=message.id,
                text=message.text,
                chat_id=message.chat_id,
                sender_id=message.sender_id,
                timestamp_ms=message.timestamp_ms,
            )
        except (EmbeddingProviderError, VectorStoreError) as exc:
            classification = classify_exception(exc)
            _LOGGER.error(
                "Failed to generate embedding",
                extra={"message_id": message_id, "error_type": classification.type.value},
            )
            raise AIServiceError.unavailable(classification) from exc

        return GenerateEmbeddingResponse(success=True, embedding_id=message.id, metadata=metadata)

    async def retry(self, task: RetryTask) -> None:
        """Re-run the pipeline for a queued failure; raises if the attempt fails again."""

        if not task.message_id:
            raise MessageNotFoundError("<missing>")
        message = await self._session.get(ChatMessage, task.message_id)
        if message is None:
            raise MessageNotFoundError(task.message_id)
        await self._embed_and_store(
            message_id=message.id,
            text=message.text,
            chat_id=message.chat_id,
            sender_id=message.sender_id,
            timestamp_ms=message.timestamp_ms,
        )

    async def _embed_and_store(
        self,
        *,
        message_id: str,
        text: str,
        chat_id: str,
        sender_id: str,
        timestamp_ms: int,
    ) -> SearchableMetadata:
        vector = await self._generator.embed(text)
        chat_context = await self._chat_context(chat_id, sender_id)
        metadata = self._generator.derive_metadata(text, chat_context)

        await self._vector_store.upsert(
            message_id,
            vector,
            VectorMetadata(chat_id=chat_id, sender_id=sender_id, timestamp_ms=timestamp_ms, text_snippet=text),
        )
        _LOGGER.info(
            "Embedding stored",
            extra={"message_id": message_id, "chat_id": chat_id, "dimensions": len(vector)},
        )

        await self._write_back(message_id, metadata)
        return metadata

    async def _chat_context(self, chat_id: str, sender_id: str) -> ChatContext:
        try:
            member_ids = await chat_member_ids(self._session, chat_id)
        except SQLAlchemyError:
            _LOGGER.warning("Could not load chat members", extra={"chat_id": chat_id}, exc_info=True)
            await self._session.rollback()
            member_ids = []
        return ChatContext(chat_id=chat_id, sender_id=sender_id, member_ids=member_ids)

    async def _write_back(self, message_id: str, metadata: SearchableMetadata) -> None:
        # The vector is already stored; a failed write-back only loses the metadata.
        try:
            message = await self._session.get(ChatMessage, message_id)
            if message is None:
                return
            message.searchable_metadata = metadata.model_dump(mode="json")
            message.embedding_generated = True
            message.embedding_error = None
            message.embedded_at = now_utc()
            self._session.add(message)
            await self._session.commit()
        except SQLAlchemyError:
            await self._session.rollback()
            _LOGGER.warning("Failed to write searchable metadata", extra={"message_id": message_id}, exc_info=True)

    async def _mark_failed(self, message_id: str, classification: ErrorClassification) -> None:
        try:
            message = await self._session.get(ChatMessage, message_id)
            if message is None:
                return
            message.embedding_generated = False
            message.embedding_error = f"{classification.type.value}: {classification.message}"[:1000]
            self._session.add(message)
            await self._session.commit()
        except SQLAlchemyError:
            await self._session.rollback()
            _LOGGER.error("Failed to update embedding error status", extra={"message_id": message_id}, exc_info=True)


def make_embedding_retry_handler(
    session_factory: async_sessionmaker,
    generator: EmbeddingGenerator,
    *,
    settings: Optional[Settings] = None,
) -> RetryHandler:
    """Build the ``embeddingGeneration`` entry of the retry dispatch table.

    Each dispatch runs in its own session so concurrent retries never share one.
    """

    async def _handler(task: RetryTask) -> None:
        async with session_factory() as session:
            pipeline = EmbeddingPipeline(session, generator, settings=settings)
            await pipeline.retry(task)

    return _handler
