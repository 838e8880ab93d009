"""Service settings loaded from the environment (``DOCBATCH_*``) or a ``.env`` file."""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Immutable settings passed explicitly into the batch loops and clients."""

    database_url: str = "sqlite:///./docbatch.db"

    # Batch grouping and scheduling
    queue_size_threshold: int = 100
    submit_interval_minutes: float = 15
    poll_interval_minutes: float = 5
    max_retry_count: int = 3
    # 0 disables the orphaned-job sweep
    orphan_grace_minutes: float = 0

    # Gemini
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"

    # Transport timeouts
    bulk_timeout_seconds: int = 600
    callback_timeout_seconds: int = 30

    run_workers: bool = True
    max_document_bytes: int = Field(default=20 * 1024 * 1024, ge=1)

    model_config = SettingsConfigDict(
        env_prefix="DOCBATCH_",
        env_file=".env",
        extra="ignore",
        frozen=True,
    )

    @field_validator("queue_size_threshold")
    @classmethod
    def _positive_threshold(cls, v: int) -> int:
        if v < 1:
            raise ValueError("queue_size_threshold must be at least 1")
        return v

    @field_validator("submit_interval_minutes", "poll_interval_minutes")
    @classmethod
    def _positive_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("intervals must be positive")
        return v

    @field_validator("max_retry_count", "orphan_grace_minutes")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @property
    def submit_interval_seconds(self) -> float:
        return self.submit_interval_minutes * 60

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_minutes * 60


@lru_cache
def get_settings() -> Settings:
    return Settings()
