from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration, read from the environment or a local .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # SQLite file is created at the project root unless DATABASE_URL points elsewhere
    database_url: str = Field(default="sqlite:///./griva.db", validation_alias="DATABASE_URL")

    # Shared secret for the manual /cron and /ingest triggers
    cron_secret: str = Field(default="griva-ingest-2026", validation_alias="CRON_SECRET")

    fetch_interval_seconds: int = Field(default=300, validation_alias="FETCH_INTERVAL_SECONDS")
    scheduler_enabled: bool = Field(default=True, validation_alias="SCHEDULER_ENABLED")

    news_timeout_seconds: float = Field(default=15.0, validation_alias="NEWS_TIMEOUT_SECONDS")
    papers_timeout_seconds: float = Field(default=20.0, validation_alias="PAPERS_TIMEOUT_SECONDS")
    models_timeout_seconds: float = Field(default=15.0, validation_alias="MODELS_TIMEOUT_SECONDS")

    # Hot score decay: penalty = age_hours / (age_hours + offset) ** exponent
    hot_decay_offset: float = Field(default=2.0, validation_alias="HOT_DECAY_OFFSET")
    hot_decay_exponent: float = Field(default=1.5, validation_alias="HOT_DECAY_EXPONENT")


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance. Also usable as a FastAPI dependency."""
    return Settings()
