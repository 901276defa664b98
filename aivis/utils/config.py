"""
Configuration Management

Uses Pydantic Settings for environment-based configuration.
Loads from .env file automatically.
"""

from typing import List, Optional, Tuple
from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Database; POSTGRES_URL is accepted as an alias, SQLite when neither is set
    DATABASE_URL: Optional[str] = None
    POSTGRES_URL: Optional[str] = None
    SQLITE_PATH: str = "aivis_dev.db"
    SQL_DEBUG: bool = False

    # Provider credentials (a provider without a key fails permanently)
    OPENAI_API_KEY: Optional[str] = None
    ANTHROPIC_API_KEY: Optional[str] = None
    PERPLEXITY_API_KEY: Optional[str] = None

    # Models queried for every phrase, as "provider:model" pairs
    QUERY_MODELS: str = (
        "openai:gpt-4o-mini,"
        "anthropic:claude-3-5-haiku-20241022,"
        "perplexity:sonar"
    )

    # Models used for scoring responses and competitor intelligence
    SCORING_MODEL: str = "claude-3-5-haiku-20241022"
    COMPETITOR_MODEL: str = "claude-sonnet-4-20250514"

    # Fan-out limits
    MAX_CONCURRENT_QUERIES: int = 10
    PER_MODEL_CONCURRENCY: int = 3

    # Timeouts (seconds)
    QUERY_TIMEOUT: float = 60.0
    BATCH_TIMEOUT: float = 900.0

    # Retry policy for transient provider failures
    QUERY_MAX_ATTEMPTS: int = 2
    RETRY_INITIAL_DELAY: float = 1.0

    # Application Settings
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra fields in .env file
        case_sensitive = False  # Allow both UPPERCASE and lowercase

    @property
    def query_models(self) -> List[Tuple[str, str]]:
        """Parse QUERY_MODELS into (provider, model) pairs."""
        pairs = []
        for item in self.QUERY_MODELS.split(","):
            item = item.strip()
            if not item:
                continue
            provider, _, model = item.partition(":")
            pairs.append((provider.strip().lower(), model.strip()))
        return pairs


@lru_cache
def get_settings() -> Settings:
    """Get or create cached settings instance."""
    return Settings()
