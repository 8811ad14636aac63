"""
Knowledge Companion Configuration
=================================

Centralized configuration management using environment variables.
Supports both .env files and system environment variables.

Environment Variables:
    OPENAI_API_KEY: OpenAI key for embeddings and completions (optional,
        embeddings fall back to deterministic mock vectors without it)
    EMBEDDING_MODEL: Embedding model (default: text-embedding-3-large)
    EMBEDDING_DIMENSIONS: Embedding dimensions (default: 3072)
    LLM_PROVIDER: openai | anthropic (default: auto-detect from keys)
    LLM_MODEL: Completion model override

    DATABASE_HOST / DATABASE_PORT / DATABASE_NAME / DATABASE_USER /
    DATABASE_PASSWORD: PostgreSQL (pgvector) connection
    DATABASE_POOL_MIN / DATABASE_POOL_MAX: Pool bounds (default: 2 / 10)

    REDIS_URL: Redis URL for the embedding cache (optional)

    RAG_MAX_CHUNKS: Final chunks per answer (default: 12)
    RAG_CHUNK_MAX_TOKENS / RAG_CHUNK_OVERLAP_TOKENS: Chunker (default: 600 / 100)
    RAG_EXCERPT_LENGTH: Citation span cap in characters (default: 100)
    EMBEDDING_BATCH_SIZE / EMBEDDING_BATCH_DELAY: Provider batching (default: 10 / 1.0s)

    WORKER_INTERVAL_SECONDS: Embedding backfill interval (default: 60)
    WORKER_BATCH_LIMIT: Pending chunks per backfill run (default: 100)
"""

import os
from dataclasses import dataclass, field
from typing import Optional
from pathlib import Path
from dotenv import load_dotenv


# Load environment variables from .env file if present
env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


def get_env(key: str, default: Optional[str] = None, required: bool = False) -> Optional[str]:
    """
    Get environment variable with optional default and required validation.

    Args:
        key: Environment variable name
        default: Default value if not set
        required: If True, raises ValueError when not set

    Returns:
        Environment variable value or default

    Raises:
        ValueError: If required=True and variable is not set
    """
    value = os.getenv(key, default)
    if required and value is None:
        raise ValueError(f"Required environment variable '{key}' is not set")
    return value


def get_env_int(key: str, default: int) -> int:
    """Get environment variable as integer."""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable '{key}' must be an integer, got: {value}")


def get_env_float(key: str, default: float) -> float:
    """Get environment variable as float."""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Environment variable '{key}' must be a float, got: {value}")


def get_env_bool(key: str, default: bool) -> bool:
    """Get environment variable as boolean."""
    value = os.getenv(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


@dataclass
class OpenAIConfig:
    """OpenAI embeddings and completions."""

    api_key: Optional[str] = field(default_factory=lambda: get_env("OPENAI_API_KEY"))
    embedding_model: str = field(default_factory=lambda: get_env("EMBEDDING_MODEL", "text-embedding-3-large"))
    embedding_dimensions: int = field(default_factory=lambda: get_env_int("EMBEDDING_DIMENSIONS", 3072))
    llm_model: str = field(default_factory=lambda: get_env("LLM_MODEL", "gpt-4-turbo"))
    request_timeout: float = field(default_factory=lambda: get_env_float("OPENAI_TIMEOUT", 30.0))

    def __post_init__(self):
        if self.embedding_dimensions <= 0:
            raise ValueError("embedding_dimensions must be positive")


@dataclass
class AnthropicConfig:
    """Anthropic completions (alternative completion provider)."""

    api_key: Optional[str] = field(default_factory=lambda: get_env("ANTHROPIC_API_KEY"))
    model: str = field(default_factory=lambda: get_env("ANTHROPIC_MODEL", "claude-sonnet-4-20250514"))


@dataclass
class DatabaseConfig:
    """PostgreSQL (pgvector) configuration."""

    host: str = field(default_factory=lambda: get_env("DATABASE_HOST", "localhost"))
    port: int = field(default_factory=lambda: get_env_int("DATABASE_PORT", 5432))
    name: str = field(default_factory=lambda: get_env("DATABASE_NAME", "ai_companion"))
    user: str = field(default_factory=lambda: get_env("DATABASE_USER", "postgres"))
    password: str = field(default_factory=lambda: get_env("DATABASE_PASSWORD", ""))

    # Connection pool settings
    pool_min_size: int = field(default_factory=lambda: get_env_int("DATABASE_POOL_MIN", 2))
    pool_max_size: int = field(default_factory=lambda: get_env_int("DATABASE_POOL_MAX", 10))

    connect_timeout: int = field(default_factory=lambda: get_env_int("DATABASE_CONNECT_TIMEOUT", 10))

    # SSL mode: disable, allow, prefer, require, verify-ca, verify-full
    ssl_mode: str = field(default_factory=lambda: get_env("DATABASE_SSL_MODE", "prefer"))

    # When False the service runs on in-memory repositories
    enabled: bool = field(default_factory=lambda: get_env_bool("DATABASE_ENABLED", False))

    @property
    def connection_dict(self) -> dict:
        """Connection parameters as dictionary for psycopg2."""
        return {
            "host": self.host,
            "port": self.port,
            "dbname": self.name,
            "user": self.user,
            "password": self.password,
            "sslmode": self.ssl_mode,
            "connect_timeout": self.connect_timeout,
        }

    def __post_init__(self):
        """Validate configuration."""
        if self.pool_min_size > self.pool_max_size:
            raise ValueError("pool_min_size cannot exceed pool_max_size")


@dataclass
class RedisConfig:
    """Redis embedding cache."""

    url: Optional[str] = field(default_factory=lambda: get_env("REDIS_URL"))
    prefix: str = field(default_factory=lambda: get_env("CACHE_PREFIX", "companion"))
    embedding_ttl_hours: int = field(default_factory=lambda: get_env_int("EMBEDDING_CACHE_TTL_HOURS", 24 * 7))


@dataclass
class RetrievalConfig:
    """Chunking, embedding batching and answer settings."""

    max_chunks: int = field(default_factory=lambda: get_env_int("RAG_MAX_CHUNKS", 12))
    chunk_max_tokens: int = field(default_factory=lambda: get_env_int("RAG_CHUNK_MAX_TOKENS", 600))
    chunk_overlap_tokens: int = field(default_factory=lambda: get_env_int("RAG_CHUNK_OVERLAP_TOKENS", 100))
    excerpt_length: int = field(default_factory=lambda: get_env_int("RAG_EXCERPT_LENGTH", 100))
    embedding_batch_size: int = field(default_factory=lambda: get_env_int("EMBEDDING_BATCH_SIZE", 10))
    embedding_batch_delay: float = field(default_factory=lambda: get_env_float("EMBEDDING_BATCH_DELAY", 1.0))
    completion_temperature: float = field(default_factory=lambda: get_env_float("RAG_COMPLETION_TEMPERATURE", 0.1))
    personalize: bool = field(default_factory=lambda: get_env_bool("RAG_PERSONALIZE", True))

    def __post_init__(self):
        """Validate configuration."""
        if self.max_chunks <= 0:
            raise ValueError("max_chunks must be positive")
        if self.chunk_overlap_tokens >= self.chunk_max_tokens:
            raise ValueError("chunk_overlap_tokens must be smaller than chunk_max_tokens")
        if not 0 < self.embedding_batch_size <= 10:
            raise ValueError("embedding_batch_size must be between 1 and 10")


@dataclass
class WorkerConfig:
    """Embedding backfill worker."""

    interval_seconds: int = field(default_factory=lambda: get_env_int("WORKER_INTERVAL_SECONDS", 60))
    batch_limit: int = field(default_factory=lambda: get_env_int("WORKER_BATCH_LIMIT", 100))
    max_consecutive_failures: int = field(default_factory=lambda: get_env_int("WORKER_MAX_FAILURES", 5))


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = field(default_factory=lambda: get_env("LOG_LEVEL", "INFO"))
    log_file: Optional[str] = field(default_factory=lambda: get_env("LOG_FILE"))

    # Structured logging
    json_logs: bool = field(default_factory=lambda: get_env_bool("LOG_JSON", False))


@dataclass
class Settings:
    """Main application settings container."""

    openai: OpenAIConfig = field(default_factory=OpenAIConfig)
    anthropic: AnthropicConfig = field(default_factory=AnthropicConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Application metadata
    app_name: str = "knowledge-companion"
    app_version: str = "0.4.0"
    environment: str = field(default_factory=lambda: get_env("ENVIRONMENT", "development"))
    llm_provider: Optional[str] = field(default_factory=lambda: get_env("LLM_PROVIDER"))

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() in ("production", "prod")


def load_settings() -> Settings:
    """
    Load and validate all application settings.

    Raises:
        ValueError: If configuration is invalid
    """
    return Settings()


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the lazily loaded settings instance."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
