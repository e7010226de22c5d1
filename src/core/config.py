"""Application configuration using pydantic-settings."""
from functools import lru_cache
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str
    db_pool_size: int = 5
    db_echo: bool = False

    # Redis backs the real-time change feed; without it events are fanned out in-process
    redis_url: str = "redis://localhost:6379"
    redis_enabled: bool = True
    redis_max_connections: int = 20
    # Each open change stream holds one subscriber connection
    redis_max_subscribers: int = 100

    # NoDecode keeps pydantic-settings from JSON-decoding the raw env value
    cors_origins: Annotated[list[str], NoDecode] = ["http://localhost:3000"]

    log_level: str = "INFO"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: str | list[str]) -> list[str]:
        """Accept a comma-separated string or a list of origins."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @property
    def async_database_url(self) -> str:
        """Database URL with the asyncpg driver for plain postgres:// URLs."""
        if self.database_url.startswith("postgresql://"):
            return self.database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if self.database_url.startswith("postgres://"):
            return self.database_url.replace("postgres://", "postgresql+asyncpg://", 1)
        return self.database_url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
