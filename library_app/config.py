"""Application configuration loaded from environment variables."""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Settings for the lending service.

    Every field can be overridden with an environment variable of the same
    name (case-insensitive), e.g. DATABASE_URL or RENTAL_LIMIT.
    """

    app_name: str = "Library Lending API"
    debug: bool = False
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite:///./library.db"
    database_timeout: float = 30.0

    # Lending policy
    rental_limit: int = 3

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
