"""Application configuration with secure handling of sensitive values."""

from functools import lru_cache
from pathlib import Path

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Decision memory settings.

    Sensitive fields use SecretStr so they never leak through logs,
    error messages, or repr() output.
    """

    # Storage - one SQLite file per memory owner
    memory_db_path: str = "~/.decision-memory/memory.db"
    database_url: str = ""  # Overrides memory_db_path, e.g. sqlite+aiosqlite:///:memory:

    @field_validator("database_url", mode="after")
    @classmethod
    def ensure_aiosqlite_driver(cls, v: str) -> str:
        """Convert sqlite:// to sqlite+aiosqlite:// for async support."""
        if v.startswith("sqlite://"):
            return v.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return v

    redis_url: str = ""  # e.g., redis://localhost:6379 (embedding cache, optional)

    # Tier switches
    memory_disabled: bool = False  # Tier 3: the whole memory subsystem is off
    embeddings_disabled: bool = False  # Forces Tier 2 keyword search

    # Embedding provider (any OpenAI-compatible endpoint)
    embedding_api_key: SecretStr = SecretStr("")
    embedding_base_url: str = ""  # Empty means the default OpenAI endpoint
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 0  # 0 keeps the model default
    embedding_timeout_ms: int = 1500  # Hard wall-clock budget per provider call
    embedding_probe_text: str = "decision memory health probe"

    # Embedding cache settings
    embedding_cache_ttl: int = 86400 * 30  # 30 days in seconds
    embedding_cache_min_text_length: int = 10

    # Search defaults
    search_default_limit: int = 5
    search_default_threshold: float = 0.7

    # Hybrid scoring - compatibility constants, not tuning knobs
    score_weight_similarity: float = 0.6
    score_weight_recency: float = 0.3
    score_weight_graph: float = 0.1
    recency_half_life_days: float = 30.0
    graph_weight_cap: int = 5

    # Graph traversal bounds
    link_expand_max_depth: int = 2
    supersedes_chain_max_depth: int = 100

    # Field limits
    max_topic_length: int = 200
    max_text_length: int = 20000

    # App
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    def __repr__(self) -> str:
        """Custom repr that masks sensitive values."""
        safe_fields = {
            "database_url": self.get_database_url(),
            "redis_url": self._mask_url(self.redis_url),
            "memory_disabled": self.memory_disabled,
            "embeddings_disabled": self.embeddings_disabled,
            "embedding_model": self.embedding_model,
            "embedding_timeout_ms": self.embedding_timeout_ms,
            "debug": self.debug,
            "cors_origins": self.cors_origins,
        }
        fields_str = ", ".join(f"{k}={v!r}" for k, v in safe_fields.items())
        return f"Settings({fields_str})"

    @staticmethod
    def _mask_url(url: str) -> str:
        """Mask password in connection URLs."""
        if not url:
            return url
        import re

        return re.sub(r":([^:@]+)@", ":***@", url)

    def get_database_url(self) -> str:
        """Resolve the SQLAlchemy URL for the memory store."""
        if self.database_url:
            return self.database_url
        path = Path(self.memory_db_path).expanduser()
        return f"sqlite+aiosqlite:///{path}"

    def get_embedding_api_key(self) -> str:
        """Safely get the embedding API key value."""
        return self.embedding_api_key.get_secret_value()

    @property
    def embedding_timeout(self) -> float:
        """Provider budget in seconds, as asyncio expects it."""
        return self.embedding_timeout_ms / 1000.0


@lru_cache
def get_settings() -> Settings:
    return Settings()
