"""Application configuration using pydantic-settings."""
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Database
    database_url: str
    db_pool_size: int = Field(default=5, validation_alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=10, validation_alias="DB_MAX_OVERFLOW")

    # Redis - shared store for short-lived authorization codes
    redis_url: str = Field(default="redis://localhost:6379", validation_alias="REDIS_URL")
    redis_enabled: bool = Field(default=True, validation_alias="REDIS_ENABLED")
    redis_pool_size: int = Field(default=20, validation_alias="REDIS_POOL_SIZE")
    auth_code_ttl_seconds: int = Field(default=600, validation_alias="AUTH_CODE_TTL_SECONDS")

    # Public share slugs
    share_slug_max_attempts: int = Field(
        default=10, validation_alias="SHARE_SLUG_MAX_ATTEMPTS",
    )

    # Field length limits
    max_title_length: int = Field(default=500, validation_alias="MAX_TITLE_LENGTH")
    max_note_length: int = Field(default=10_000, validation_alias="MAX_NOTE_LENGTH")
    max_tag_name_length: int = Field(default=100, validation_alias="MAX_TAG_NAME_LENGTH")

    @field_validator("share_slug_max_attempts")
    @classmethod
    def validate_slug_attempts(cls, v: int) -> int:
        """Slug issuance needs at least one attempt."""
        if v < 1:
            raise ValueError("SHARE_SLUG_MAX_ATTEMPTS must be at least 1")
        return v

    @property
    def is_sqlite(self) -> bool:
        """Whether the configured database is SQLite (local runs and tests)."""
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
