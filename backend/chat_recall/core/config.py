"""Runtime configuration helpers.

Classes:
    Settings: Pydantic settings model capturing environment-driven defaults.

Functions:
    get_settings(): Return a cached Settings instance for dependency injection.
"""

from functools import lru_cache

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Chat Recall API"
    log_level: str = "INFO"
    database_url: str = "sqlite+aiosqlite:///./data/chat_recall.db"

    openai_api_key: SecretStr | None = None
    openai_embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    embedding_timeout_seconds: float = 20.0
    embedding_max_attempts: int = 2
    min_embed_chars: int = 10

    vector_store_timeout_seconds: float = 15.0

    search_default_limit: int = 10
    search_max_limit: int = 50
    search_min_query_chars: int = 3
    search_max_query_chars: int = 500
    search_default_min_score: float | None = None
    recency_max_boost: float = 0.05
    recency_half_life_hours: float = 168.0

    retry_batch_size: int = 50
    retry_max_attempts: int = 4
    retry_max_delay_seconds: float = 8.0
    retry_dispatch_concurrency: int = 4
    retry_dispatch_timeout_seconds: float = 30.0
    retry_sweep_interval_seconds: float = 300.0
    retry_sweep_timeout_seconds: float = 240.0
    enable_retry_sweeper: bool = False


@lru_cache()
def get_settings() -> Settings:
    return Settings()
