"""Async OpenAI embeddings client wrapper.

Classes:
    EmbeddingBatch: Collected embedding vectors plus metadata returned from the embeddings API.
    OpenAIService: Calls the embeddings API with a bounded timeout and short in-call retries,
        translating SDK failures into ``EmbeddingProviderError``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

import openai
from openai import AsyncOpenAI
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from chat_recall.core.config import Settings, get_settings
from chat_recall.services.errors import EmbeddingProviderError, classify_exception

_EMBED_BATCH_MAX = 256
_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class EmbeddingBatch:
    vectors: list[list[float]]
    model: str
    dim: int
    model_revision: str | None = None
    provider: str = "openai"


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, EmbeddingProviderError) and classify_exception(exc).retryable


class OpenAIService:
    def __init__(self, client: Optional[AsyncOpenAI] = None, settings: Optional[Settings] = None) -> None:
        settings = settings or get_settings()
        api_key = settings.openai_api_key.get_secret_value() if settings.openai_api_key else None
        if client is not None:
            self._client = client
        elif api_key:
            # Retries are driven by tenacity below and by the retry queue, not by the SDK.
            self._client = AsyncOpenAI(
                api_key=api_key,
                timeout=settings.embedding_timeout_seconds,
                max_retries=0,
            )
        else:
            self._client = None
        self._settings = settings

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    async def embed_texts(
        self,
        texts: Iterable[str],
        *,
        model: Optional[str] = None,
    ) -> EmbeddingBatch:
        docs = list(texts)
        if self._client is None:
            raise EmbeddingProviderError(
                "OpenAI client not configured. Set OPENAI_API_KEY.",
                error_code="not_configured",
            )

        chosen_model = model or self._settings.openai_embedding_model
        if not docs:
            return EmbeddingBatch(vectors=[], model=chosen_model, dim=0)

        vectors: list[list[float]] = []
        dim = 0
        model_revision: str | None = None

        for start in range(0, len(docs), _EMBED_BATCH_MAX):
            chunk = docs[start : start + _EMBED_BATCH_MAX]
            payload = dict(model=chosen_model, input=chunk, encoding_format="float")
            response = await self._create_with_retry(payload)

            data = getattr(response, "data", None) or []
            if len(data) != len(chunk):
                raise EmbeddingProviderError(
                    f"Embedding response returned {len(data)} vectors for {len(chunk)} inputs"
                )
            chunk_vectors = [list(item.embedding) for item in data]
            vectors.extend(chunk_vectors)
            if not dim and chunk_vectors:
                dim = len(chunk_vectors[0])
            response_model = getattr(response, "model", None)
            if response_model:
                model_revision = response_model

        return EmbeddingBatch(
            vectors=vectors,
            model=chosen_model,
            dim=dim,
            model_revision=model_revision,
            provider="openai",
        )

    async def _create_with_retry(self, payload: dict[str, Any]):
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(1, self._settings.embedding_max_attempts)),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
            retry=retry_if_exception(_is_transient),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    _LOGGER.info(
                        "Retrying embeddings call",
                        extra={"attempt": attempt.retry_state.attempt_number, "model": payload["model"]},
                    )
                return await self._create(payload)

    async def _create(self, payload: dict[str, Any]):
        try:
            return await asyncio.wait_for(
                self._client.embeddings.create(**payload),
                timeout=self._settings.embedding_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise EmbeddingProviderError("Embedding request timed out", error_code="TimeoutError") from exc
        except openai.APITimeoutError as exc:
            raise EmbeddingProviderError(str(exc), error_code="TimeoutError") from exc
        except openai.APIConnectionError as exc:
            raise EmbeddingProviderError(str(exc), error_code="APIConnectionError") from exc
        except openai.APIStatusError as exc:
            raise EmbeddingProviderError(str(exc), status_code=exc.status_code) from exc
        except openai.OpenAIError as exc:
            raise EmbeddingProviderError(str(exc) or type(exc).__name__) from exc
