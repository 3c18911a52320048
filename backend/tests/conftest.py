import hashlib
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel.ext.asyncio.session import AsyncSession

from chat_recall.api.deps import get_embedding_generator
from chat_recall.core.config import Settings
from chat_recall.db.session import get_session, get_session_factory, init_db
from chat_recall.main import app
from chat_recall.models import ChatMember, ChatMessage
from chat_recall.services.embeddings import EmbeddingGenerator
from chat_recall.services.openai_client import EmbeddingBatch
from chat_recall.utils.text import tokenize

EMBED_DIM = 64


def hashed_vector(text: str, dim: int = EMBED_DIM) -> list[float]:
    """Bag-of-words vector; texts sharing words get a positive cosine similarity."""

    vector = [0.0] * dim
    for token in tokenize(text):
        index = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % dim
        vector[index] += 1.0
    return vector


class FakeEmbeddingService:
    def __init__(self, dim: int = EMBED_DIM) -> None:
        self.dim = dim
        self.embed_calls: int = 0
        self.embed_payloads: list[list[str]] = []
        self.failures: list[Exception] = []

    @property
    def is_configured(self) -> bool:
        return True

    async def embed_texts(self, texts, **_: object) -> EmbeddingBatch:
        self.embed_calls += 1
        docs = list(texts)
        self.embed_payloads.append(docs)
        if self.failures:
            raise self.failures.pop(0)
        return EmbeddingBatch(
            vectors=[hashed_vector(text, self.dim) for text in docs],
            model="fake-embedding",
            dim=self.dim,
        )


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'recall.db'}",
        openai_api_key=None,
        embedding_dimensions=EMBED_DIM,
        retry_dispatch_concurrency=1,
    )


@pytest_asyncio.fixture()
async def engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(settings.database_url, connect_args={"check_same_thread": False})
    await init_db(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
def embedding_service() -> FakeEmbeddingService:
    return FakeEmbeddingService()


@pytest.fixture()
def generator(embedding_service: FakeEmbeddingService, settings: Settings) -> EmbeddingGenerator:
    return EmbeddingGenerator(embedding_service, dimensions=EMBED_DIM, settings=settings)


@pytest.fixture()
def seed_chat(session: AsyncSession):
    """Insert chat members and messages; messages are ``(id, sender_id, text, timestamp_ms)`` tuples."""

    async def _seed(chat_id: str, member_ids, messages=()) -> list[ChatMessage]:
        for user_id in member_ids:
            session.add(ChatMember(chat_id=chat_id, user_id=user_id))
        stored = []
        for message_id, sender_id, text, timestamp_ms in messages:
            message = ChatMessage(
                id=message_id,
                chat_id=chat_id,
                sender_id=sender_id,
                text=text,
                timestamp_ms=timestamp_ms,
            )
            session.add(message)
            stored.append(message)
        await session.commit()
        return stored

    return _seed


@pytest_asyncio.fixture()
async def client(
    session_factory: async_sessionmaker,
    generator: EmbeddingGenerator,
) -> AsyncGenerator[AsyncClient, None]:
    async def _override_session():
        async with session_factory() as request_session:
            yield request_session

    app.dependency_overrides[get_session] = _override_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_embedding_generator] = lambda: generator
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as test_client:
        yield test_client
    app.dependency_overrides.clear()
