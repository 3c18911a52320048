"""Database engine and session utilities.

Attributes:
    engine (AsyncEngine): Primary SQLModel async engine.
    SessionLocal (async_sessionmaker): Factory for yielding AsyncSession objects.

Functions:
    init_db(): Create database tables and ensure SQLite schema patches are applied.
    get_session(): Dependency that yields an AsyncSession for request handlers.
    get_session_factory(): Dependency returning the session factory for work that outlives a request.
"""

from collections.abc import AsyncGenerator
from pathlib import Path

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from chat_recall.core.config import get_settings

_settings = get_settings()

if _settings.database_url.startswith("sqlite+aiosqlite:///") and ":memory:" not in _settings.database_url:
    _db_path = Path(_settings.database_url.replace("sqlite+aiosqlite:///", "")).resolve()
    if _db_path.parent.name:
        _db_path.parent.mkdir(parents=True, exist_ok=True)


engine: AsyncEngine = create_async_engine(
    _settings.database_url,
    echo=False,
    future=True,
    connect_args=(
        {"check_same_thread": False}
        if _settings.database_url.startswith("sqlite")
        else {}
    ),
)

SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(target: AsyncEngine | None = None) -> None:
    # Importing the models registers every table on SQLModel.metadata.
    import chat_recall.models  # noqa: F401

    bound = target or engine
    async with bound.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
        if bound.url.drivername.startswith("sqlite"):
            await _ensure_sqlite_schema(conn)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session


def get_session_factory() -> async_sessionmaker:
    return SessionLocal


async def _ensure_sqlite_schema(conn) -> None:
    """Apply lightweight, idempotent schema patches for SQLite.

    The message table belongs to the chat storage service; older copies of it
    predate the embedding bookkeeping columns this service writes.
    """

    try:
        await conn.exec_driver_sql("PRAGMA journal_mode=WAL")
        await conn.exec_driver_sql("PRAGMA synchronous=NORMAL")
    except OperationalError:
        pass

    result = await conn.exec_driver_sql("PRAGMA table_info(chat_messages)")
    message_columns = {row[1] for row in result.fetchall()}

    if "embedding_generated" not in message_columns:
        await conn.exec_driver_sql(
            "ALTER TABLE chat_messages ADD COLUMN embedding_generated BOOLEAN DEFAULT 0"
        )

    if "embedding_error" not in message_columns:
        await conn.exec_driver_sql("ALTER TABLE chat_messages ADD COLUMN embedding_error TEXT")

    if "embedded_at" not in message_columns:
        await conn.exec_driver_sql("ALTER TABLE chat_messages ADD COLUMN embedded_at DATETIME")

    if "searchable_metadata" not in message_columns:
        await conn.exec_driver_sql("ALTER TABLE chat_messages ADD COLUMN searchable_metadata JSON")
