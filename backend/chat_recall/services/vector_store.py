"""Vector store adapter for message embeddings.

Classes:
    VectorMetadata: Metadata stored next to each vector.
    VectorMatch: A raw nearest-neighbour hit, not yet boosted or thresholded.
    VectorStore: Abstract adapter used by the pipeline and the search service.
    SqlVectorStore: SQLModel-backed store ranking by cosine similarity with numpy.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Collection
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from sqlalchemy import delete, func, select
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from chat_recall.core.config import Settings, get_settings
from chat_recall.models import EmbeddingRecord
from chat_recall.services.errors import VectorStoreError
from chat_recall.utils.datetime_utils import now_utc
from chat_recall.utils.text import preview

_LOGGER = logging.getLogger(__name__)

MAX_TOP_K = 50

_TRANSIENT_ERRORS = (OperationalError, InterfaceError, asyncio.TimeoutError)


@dataclass(frozen=True, slots=True)
class VectorMetadata:
    chat_id: str
    sender_id: str
    timestamp_ms: int
    text_snippet: str = ""


@dataclass(frozen=True, slots=True)
class VectorMatch:
    id: str
    raw_score: float
    metadata: VectorMetadata


ChatFilter = Optional[str | Collection[str]]


class VectorStore(ABC):
    @abstractmethod
    async def upsert(self, id: str, vector: Sequence[float], metadata: VectorMetadata) -> None:
        """Insert or replace the record stored under ``id``."""

    @abstractmethod
    async def query(self, vector: Sequence[float], *, chat_filter: ChatFilter = None, top_k: int = 10) -> list[VectorMatch]:
        """Return up to ``top_k`` matches ordered by descending raw score."""

    @abstractmethod
    async def get(self, id: str) -> Optional[VectorMatch]:
        ...

    @abstractmethod
    async def delete(self, id: str) -> bool:
        ...

    @abstractmethod
    async def count(self) -> int:
        ...


def _normalise(vector: Sequence[float]) -> tuple[np.ndarray, float]:
    array = np.asarray(vector, dtype=np.float32)
    if array.ndim != 1 or array.size == 0:
        raise VectorStoreError("Vector must be a non-empty one-dimensional sequence", status_code=400)
    norm = float(np.linalg.norm(array))
    if not np.isfinite(norm):
        raise VectorStoreError("Vector contains non-finite values", status_code=400)
    if norm > 0:
        array = array / norm
    return array, norm


def _chat_ids(chat_filter: ChatFilter) -> Optional[list[str]]:
    if chat_filter is None:
        return None
    if isinstance(chat_filter, str):
        return [chat_filter]
    return sorted(set(chat_filter))


def _as_store_error(exc: BaseException, action: str) -> VectorStoreError:
    """Only connection-level failures and timeouts become ``VectorStoreError``.

    Programming and integrity errors propagate unchanged.
    """

    if isinstance(exc, asyncio.TimeoutError):
        return VectorStoreError(f"Vector store {action} timed out", error_code="TimeoutError")
    if isinstance(exc, OperationalError):
        return VectorStoreError(f"Vector store {action} failed: {exc.orig}", status_code=503)
    return VectorStoreError(f"Vector store {action} failed: {exc}")


class SqlVectorStore(VectorStore):
    """Stores L2-normalised float32 vectors so the dot product equals cosine similarity.

    Non-positive similarities are the store's relevance cutoff and never returned.
    """

    def __init__(self, session: AsyncSession, *, settings: Optional[Settings] = None) -> None:
        self._session = session
        self._settings = settings or get_settings()

    async def upsert(self, id: str, vector: Sequence[float], metadata: VectorMetadata) -> None:
        normalised, norm = _normalise(vector)
        try:
            await asyncio.wait_for(self._write(id, normalised, norm, metadata), self._settings.vector_store_timeout_seconds)
        except _TRANSIENT_ERRORS as exc:
            await self._session.rollback()
            raise _as_store_error(exc, "upsert") from exc
        except SQLAlchemyError:
            await self._session.rollback()
            raise

    async def _write(self, id: str, vector: np.ndarray, norm: float, metadata: VectorMetadata) -> None:
        record = await self._session.get(EmbeddingRecord, id)
        if record is None:
            record = EmbeddingRecord(
                id=id,
                chat_id=metadata.chat_id,
                sender_id=metadata.sender_id,
                timestamp_ms=metadata.timestamp_ms,
                text_snippet=preview(metadata.text_snippet),
                dim=int(vector.shape[0]),
                vector=vector.tobytes(),
                vector_norm=norm,
            )
            self._session.add(record)
        else:
            record.chat_id = metadata.chat_id
            record.sender_id = metadata.sender_id
            record.timestamp_ms = metadata.timestamp_ms
            record.text_snippet = preview(metadata.text_snippet)
            record.dim = int(vector.shape[0])
            record.vector = vector.tobytes()
            record.vector_norm = norm
            record.updated_at = now_utc()
            self._session.add(record)
        await self._session.commit()

    async def query(self, vector: Sequence[float], *, chat_filter: ChatFilter = None, top_k: int = 10) -> list[VectorMatch]:
        if top_k < 1 or top_k > MAX_TOP_K:
            raise ValueError(f"top_k must be between 1 and {MAX_TOP_K}")
        chat_ids = _chat_ids(chat_filter)
        if chat_ids is not None and not chat_ids:
            return []

        query_vector, norm = _normalise(vector)
        if norm == 0:
            return []

        try:
            records = await asyncio.wait_for(self._load(chat_ids), self._settings.vector_store_timeout_seconds)
        except _TRANSIENT_ERRORS as exc:
            raise _as_store_error(exc, "query") from exc

        candidates = [record for record in records if record.dim == query_vector.shape[0]]
        if len(candidates) != len(records):
            _LOGGER.warning(
                "Skipping vectors with mismatched dimensionality",
                extra={"expected_dim": int(query_vector.shape[0]), "skipped": len(records) - len(candidates)},
            )
        if not candidates:
            return []

        matrix = np.vstack([np.frombuffer(record.vector, dtype=np.float32) for record in candidates])
        scores = matrix @ query_vector

        ranked = sorted(
            (
                (float(score), record)
                for score, record in zip(scores, candidates)
                if score > 0
            ),
            key=lambda item: (-item[0], -item[1].timestamp_ms),
        )
        return [
            VectorMatch(id=record.id, raw_score=min(score, 1.0), metadata=_metadata(record))
            for score, record in ranked[:top_k]
        ]

    async def _load(self, chat_ids: Optional[list[str]]) -> list[EmbeddingRecord]:
        statement = select(EmbeddingRecord)
        if chat_ids is not None:
            statement = statement.where(EmbeddingRecord.chat_id.in_(chat_ids))
        result = await self._session.exec(statement)
        return list(result.scalars().all())

    async def get(self, id: str) -> Optional[VectorMatch]:
        record = await self._session.get(EmbeddingRecord, id)
        if record is None:
            return None
        return VectorMatch(id=record.id, raw_score=1.0, metadata=_metadata(record))

    async def delete(self, id: str) -> bool:
        try:
            result = await self._session.exec(delete(EmbeddingRecord).where(EmbeddingRecord.id == id))
            await self._session.commit()
        except (OperationalError, InterfaceError) as exc:
            await self._session.rollback()
            raise _as_store_error(exc, "delete") from exc
        except SQLAlchemyError:
            await self._session.rollback()
            raise
        return bool(result.rowcount)

    async def count(self) -> int:
        result = await self._session.exec(select(func.count()).select_from(EmbeddingRecord))
        return int(result.scalar_one())


def _metadata(record: EmbeddingRecord) -> VectorMetadata:
    return VectorMetadata(
        chat_id=record.chat_id,
        sender_id=record.sender_id,
        timestamp_ms=record.timestamp_ms,
        text_snippet=record.text_snippet or "",
    )
