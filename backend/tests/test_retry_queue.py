from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from chat_recall.models import FailedAIRequest, RetryResolution
from chat_recall.services.errors import AIFeature, classify_error
from chat_recall.services.retry_queue import FailedRequestStore, RetryQueueProcessor, RetryTask, SweepResult

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class RecordingHandler:
    def __init__(self, failures: dict[str, Exception] | None = None) -> None:
        self.failures = failures or {}
        self.calls: list[RetryTask] = []

    async def __call__(self, task: RetryTask) -> None:
        self.calls.append(task)
        if task.message_id in self.failures:
            raise self.failures[task.message_id]


async def _queue(session, message_id: str, *, error_type: str = "timeout", retry_count: int = 0, feature: str = "embeddingGeneration", due_in: timedelta = timedelta(minutes=-1)) -> str:
    record = FailedAIRequest(
        feature=feature,
        error_type=error_type,
        retry_count=retry_count,
        next_retry_at=NOW + due_in,
        message_id=message_id,
        created_at=NOW - timedelta(minutes=10),
    )
    session.add(record)
    await session.commit()
    return record.id


async def _load(session_factory, request_id: str) -> FailedAIRequest:
    async with session_factory() as check:
        return await check.get(FailedAIRequest, request_id)


def _processor(session_factory, settings, handler) -> RetryQueueProcessor:
    return RetryQueueProcessor(session_factory, {AIFeature.EMBEDDING_GENERATION: handler}, settings=settings)


@pytest.mark.asyncio
async def test_fourth_failure_exhausts_instead_of_rescheduling(session, session_factory, settings):
    request_id = await _queue(session, "m1", error_type="timeout", retry_count=3)
    handler = RecordingHandler({"m1": TimeoutError("timed out again")})

    result = await _processor(session_factory, settings, handler).sweep(now=NOW)

    assert result == SweepResult(processed=1, succeeded=0, failed=1, skipped=0)
    record = await _load(session_factory, request_id)
    assert record.retry_count == 4
    assert record.resolved is True
    assert record.resolution == RetryResolution.EXHAUSTED
    assert record.resolved_at == NOW


@pytest.mark.asyncio
async def test_invalid_request_is_resolved_without_dispatch(session, session_factory, settings):
    request_id = await _queue(session, "m1", error_type="invalidRequest", retry_count=0)
    handler = RecordingHandler()

    result = await _processor(session_factory, settings, handler).sweep(now=NOW)

    assert result == SweepResult(processed=1, succeeded=0, failed=0, skipped=1)
    assert handler.calls == []
    record = await _load(session_factory, request_id)
    assert record.resolved is True
    assert record.resolution == RetryResolution.NON_RETRYABLE
    assert record.retry_count == 0


@pytest.mark.asyncio
async def test_failed_dispatch_is_rescheduled_with_backoff(session, session_factory, settings):
    request_id = await _queue(session, "m1", error_type="timeout", retry_count=1)
    handler = RecordingHandler({"m1": ConnectionResetError("socket reset")})

    result = await _processor(session_factory, settings, handler).sweep(now=NOW)

    assert result.failed == 1
    record = await _load(session_factory, request_id)
    assert record.resolved is False
    assert record.retry_count == 2
    assert record.error_type == "networkFailure"
    assert record.next_retry_at == NOW + timedelta(seconds=4)


@pytest.mark.asyncio
async def test_sweep_isolates_per_record_outcomes(session, session_factory, settings):
    ok_id = await _queue(session, "ok", error_type="serviceUnavailable")
    bad_id = await _queue(session, "bad", error_type="timeout")
    exhausted_id = await _queue(session, "old", error_type="timeout", retry_count=4)
    unsupported_id = await _queue(session, "search", error_type="timeout", feature="semanticSearch")
    future_id = await _queue(session, "later", error_type="timeout", due_in=timedelta(minutes=5))
    handler = RecordingHandler({"bad": RuntimeError("Service Unavailable")})

    result = await _processor(session_factory, settings, handler).sweep(now=NOW)

    assert result == SweepResult(processed=4, succeeded=1, failed=1, skipped=2)
    assert sorted(task.message_id for task in handler.calls) == ["bad", "ok"]

    ok = await _load(session_factory, ok_id)
    assert ok.resolved is True
    assert ok.resolution == RetryResolution.SUCCEEDED

    bad = await _load(session_factory, bad_id)
    assert bad.resolved is False
    assert bad.retry_count == 1
    assert bad.error_type == "serviceUnavailable"

    exhausted = await _load(session_factory, exhausted_id)
    assert exhausted.resolution == RetryResolution.EXHAUSTED
    assert exhausted.retry_count == 4

    unsupported = await _load(session_factory, unsupported_id)
    assert unsupported.resolution == RetryResolution.UNSUPPORTED_FEATURE

    future = await _load(session_factory, future_id)
    assert future.resolved is False
    assert future.retry_count == 0


@pytest.mark.asyncio
async def test_sweep_respects_batch_size(session, session_factory, settings):
    for index in range(3):
        await _queue(session, f"m{index}", due_in=timedelta(minutes=-(index + 1)))
    handler = RecordingHandler()
    small_batch = settings.model_copy(update={"retry_batch_size": 2})

    result = await _processor(session_factory, small_batch, handler).sweep(now=NOW)

    assert result.processed == 2
    assert sorted(task.message_id for task in handler.calls) == ["m1", "m2"]
    async with session_factory() as check:
        assert await FailedRequestStore(check, settings=settings).pending_count() == 1


@pytest.mark.asyncio
async def test_empty_queue_sweep_reports_zero(session_factory, settings):
    result = await _processor(session_factory, settings, RecordingHandler()).sweep(now=NOW)
    assert result == SweepResult()


@pytest.mark.asyncio
async def test_record_failure_skips_non_retryable_and_schedules_retryable(session, settings):
    store = FailedRequestStore(session, settings=settings)

    assert await store.record_failure(AIFeature.EMBEDDING_GENERATION, classify_error("bad", 400), message_id="m1") is None

    record = await store.record_failure(
        AIFeature.SEMANTIC_SEARCH,
        classify_error("", 503),
        user_id="alice",
        query="find my notes",
        now=NOW,
    )
    assert record is not None
    assert record.feature == "semanticSearch"
    assert record.next_retry_at == NOW + timedelta(seconds=2)
    assert record.query_hash is not None and "notes" not in record.query_hash
    assert await store.pending_count() == 1
    assert [due.id for due in await store.due(NOW + timedelta(seconds=2), 10)] == [record.id]
    assert await store.due(NOW, 10) == []


@pytest.mark.asyncio
async def test_offset_timestamps_are_stored_and_scanned_as_utc(session, session_factory, settings):
    store = FailedRequestStore(session, settings=settings)
    local_now = NOW.astimezone(timezone(timedelta(hours=2)))

    record = await store.record_failure(
        AIFeature.EMBEDDING_GENERATION,
        classify_error("", 503),
        message_id="m1",
        now=local_now,
    )

    reloaded = await _load(session_factory, record.id)
    assert reloaded.next_retry_at.tzinfo == timezone.utc
    assert reloaded.next_retry_at == NOW + timedelta(seconds=2)
    assert reloaded.created_at == NOW
    async with session_factory() as check:
        scanner = FailedRequestStore(check, settings=settings)
        assert await scanner.due(NOW + timedelta(seconds=1), 10) == []
        assert [due.id for due in await scanner.due(NOW + timedelta(seconds=2), 10)] == [record.id]
        # A naive bound is read as UTC.
        naive_due = await scanner.due((NOW + timedelta(seconds=2)).replace(tzinfo=None), 10)
        assert [due.id for due in naive_due] == [record.id]


class _FailingSecondCommit:
    """Session factory whose sessions fail on their second commit."""

    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    def __call__(self):
        session = self._session_factory()
        original_commit = session.commit
        commits = 0

        async def commit() -> None:
            nonlocal commits
            commits += 1
            if commits == 2:
                raise OperationalError("COMMIT", {}, Exception("disk I/O error"))
            await original_commit()

        session.commit = commit
        return session


@pytest.mark.asyncio
async def test_sweep_commit_failure_persists_nothing(session, session_factory, settings):
    ok_id = await _queue(session, "ok", error_type="timeout", retry_count=1)
    bad_id = await _queue(session, "bad", error_type="timeout", retry_count=1)
    exhausted_id = await _queue(session, "old", error_type="timeout", retry_count=4)
    handler = RecordingHandler({"bad": TimeoutError("timed out again")})
    processor = _processor(_FailingSecondCommit(session_factory), settings, handler)

    with pytest.raises(OperationalError):
        await processor.sweep(now=NOW)

    assert sorted(task.message_id for task in handler.calls) == ["bad", "ok"]
    for request_id in (ok_id, bad_id, exhausted_id):
        record = await _load(session_factory, request_id)
        assert record.resolved is False
        assert record.resolution is None
        assert record.resolved_at is None
        assert record.error_type == "timeout"
    assert (await _load(session_factory, ok_id)).retry_count == 1
    assert (await _load(session_factory, bad_id)).retry_count == 1
    assert (await _load(session_factory, exhausted_id)).retry_count == 4
    async with session_factory() as check:
        assert await FailedRequestStore(check, settings=settings).pending_count() == 3
