from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError, ProgrammingError

from chat_recall.models import EmbeddingRecord
from chat_recall.services.errors import VectorStoreError
from chat_recall.models.types import UTCDateTime
from chat_recall.services.vector_store import SqlVectorStore, VectorMetadata


def _meta(chat_id: str, timestamp_ms: int = 1_000, text: str = "") -> VectorMetadata:
    return VectorMetadata(chat_id=chat_id, sender_id="alice", timestamp_ms=timestamp_ms, text_snippet=text)


@pytest.mark.asyncio
async def test_upsert_is_idempotent_per_id(session, settings):
    store = SqlVectorStore(session, settings=settings)

    await store.upsert("m1", [1.0, 0.0, 0.0], _meta("chat-1", text="first"))
    await store.upsert("m1", [0.0, 2.0, 0.0], _meta("chat-1", text="edited"))

    result = await session.exec(select(func.count()).select_from(EmbeddingRecord).where(EmbeddingRecord.id == "m1"))
    assert result.scalar_one() == 1
    assert await store.count() == 1

    matches = await store.query([0.0, 1.0, 0.0], top_k=5)
    assert [match.id for match in matches] == ["m1"]
    assert matches[0].raw_score == pytest.approx(1.0)
    assert matches[0].metadata.text_snippet == "edited"


@pytest.mark.asyncio
async def test_query_orders_by_similarity_and_honours_filters(session, settings):
    store = SqlVectorStore(session, settings=settings)
    await store.upsert("close", [1.0, 0.1, 0.0], _meta("chat-1"))
    await store.upsert("far", [0.2, 1.0, 0.0], _meta("chat-1"))
    await store.upsert("other-chat", [1.0, 0.0, 0.0], _meta("chat-2"))
    await store.upsert("orthogonal", [0.0, 0.0, 1.0], _meta("chat-1"))

    everything = await store.query([1.0, 0.0, 0.0], top_k=10)
    assert [match.id for match in everything][:2] == ["other-chat", "close"]
    assert "orthogonal" not in {match.id for match in everything}
    assert all(0 < match.raw_score <= 1.0 for match in everything)

    single_chat = await store.query([1.0, 0.0, 0.0], chat_filter="chat-1", top_k=10)
    assert [match.id for match in single_chat] == ["close", "far"]

    chat_set = await store.query([1.0, 0.0, 0.0], chat_filter={"chat-2"}, top_k=10)
    assert [match.id for match in chat_set] == ["other-chat"]

    assert await store.query([1.0, 0.0, 0.0], chat_filter=[], top_k=10) == []
    assert len(await store.query([1.0, 0.0, 0.0], top_k=1)) == 1


@pytest.mark.asyncio
async def test_query_validates_top_k(session, settings):
    store = SqlVectorStore(session, settings=settings)
    with pytest.raises(ValueError):
        await store.query([1.0, 0.0], top_k=0)
    with pytest.raises(ValueError):
        await store.query([1.0, 0.0], top_k=51)


@pytest.mark.asyncio
async def test_upsert_rejects_empty_vectors(session, settings):
    store = SqlVectorStore(session, settings=settings)
    with pytest.raises(VectorStoreError):
        await store.upsert("m1", [], _meta("chat-1"))


@pytest.mark.asyncio
async def test_get_and_delete(session, settings):
    store = SqlVectorStore(session, settings=settings)
    await store.upsert("m1", [0.3, 0.4], _meta("chat-9", timestamp_ms=42, text="hello"))

    match = await store.get("m1")
    assert match is not None
    assert match.metadata.chat_id == "chat-9"
    assert match.metadata.timestamp_ms == 42

    assert await store.delete("m1") is True
    assert await store.delete("m1") is False
    assert await store.get("m1") is None


@pytest.mark.asyncio
async def test_upsert_timestamps_reload_as_utc(session, session_factory, settings):
    store = SqlVectorStore(session, settings=settings)
    await store.upsert("m1", [1.0, 0.0, 0.0], _meta("chat-1", text="first"))
    await store.upsert("m1", [0.0, 1.0, 0.0], _meta("chat-1", text="second"))

    async with session_factory() as check:
        record = await check.get(EmbeddingRecord, "m1")
    assert record.created_at.tzinfo == timezone.utc
    assert record.updated_at.tzinfo == timezone.utc
    assert record.updated_at >= record.created_at
    assert record.text_snippet == "second"


def test_utc_column_normalises_offsets_and_naive_values():
    column = UTCDateTime()
    local = datetime(2026, 3, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))

    assert column.process_bind_param(local, None) == datetime(2026, 3, 1, 12, 0)
    assert column.process_bind_param(None, None) is None
    assert column.process_result_value(datetime(2026, 3, 1, 12, 0), None) == datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_operational_failure_becomes_retryable_store_error(session, settings, monkeypatch):
    store = SqlVectorStore(session, settings=settings)

    async def _locked() -> None:
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(session, "commit", _locked)
    with pytest.raises(VectorStoreError) as excinfo:
        await store.upsert("m1", [1.0, 0.0], _meta("chat-1"))
    assert excinfo.value.status_code == 503
    assert "database is locked" in str(excinfo.value)


@pytest.mark.asyncio
async def test_programming_errors_are_not_wrapped(session, settings, monkeypatch):
    store = SqlVectorStore(session, settings=settings)

    async def _broken() -> None:
        raise ProgrammingError("INSERT", {}, Exception("no such column: vector"))

    monkeypatch.setattr(session, "commit", _broken)
    with pytest.raises(ProgrammingError):
        await store.upsert("m1", [1.0, 0.0], _meta("chat-1"))
