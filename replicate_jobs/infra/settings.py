"""
Centralized configuration management using Pydantic Settings.

Provides:
- Environment variable loading with validation
- Credential handling with SecretStr
- Retry and streaming defaults

Configuration Sources (in order of precedence):
1. Explicit constructor arguments (ReplicateClient)
2. Environment variables
3. .env file
4. Default values

Usage:
    from replicate_jobs.infra.settings import get_settings

    settings = get_settings()
    print(settings.REPLICATE_BASE_URL)
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from replicate_jobs.inference.exceptions import ConfigurationError


class Settings(BaseSettings):
    """
    Client settings loaded from environment variables.

    The API token uses SecretStr to prevent accidental logging.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=True,
    )

    # =========================================================================
    # API
    # =========================================================================

    REPLICATE_API_TOKEN: Optional[SecretStr] = Field(
        default=None,
        description="Bearer token for the inference service"
    )
    REPLICATE_BASE_URL: str = Field(
        default="https://api.replicate.com/v1",
        description="Base URL of the REST API"
    )
    REPLICATE_TIMEOUT_SECONDS: float = Field(
        default=60.0,
        gt=0.0,
        le=600.0,
        description="Per-request transport timeout"
    )

    # =========================================================================
    # Retry
    # =========================================================================

    REPLICATE_MAX_RETRIES: int = Field(
        default=5,
        ge=0,
        le=20,
        description="Maximum retries per logical request"
    )
    REPLICATE_BACKOFF_BASE_SECONDS: float = Field(
        default=0.5,
        ge=0.0,
        description="Exponential backoff base delay"
    )
    REPLICATE_BACKOFF_MULTIPLIER: float = Field(
        default=2.0,
        ge=0.0,
        description="Exponential backoff multiplier"
    )
    REPLICATE_BACKOFF_JITTER_SECONDS: float = Field(
        default=0.05,
        ge=0.0,
        description="Fixed jitter added to every exponential delay"
    )

    # =========================================================================
    # Streaming
    # =========================================================================

    STREAM_QUEUE_SIZE: int = Field(
        default=64,
        ge=1,
        description="Capacity of the event and error channels"
    )
    STREAM_RECONNECT_DELAY_SECONDS: float = Field(
        default=1.0,
        ge=0.0,
        description="Pause before reconnecting after a read error"
    )

    # =========================================================================
    # Logging
    # =========================================================================

    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level"
    )
    LOG_FORMAT: Literal["json", "console", "auto"] = Field(
        default="auto",
        description="Log output format"
    )
    USE_STRUCTURED_LOGGING: bool = Field(
        default=True,
        description="Use structlog for structured logging"
    )

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("REPLICATE_BASE_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Paths are appended verbatim, so drop a trailing slash."""
        return v.rstrip("/")

    # =========================================================================
    # Helper Methods
    # =========================================================================

    def get_api_token(self) -> str:
        """
        Get the API token.

        Returns:
            Token string

        Raises:
            ConfigurationError: If the token is unset or blank
        """
        if self.REPLICATE_API_TOKEN is None:
            raise ConfigurationError("No auth token provided (set REPLICATE_API_TOKEN)")
        token = self.REPLICATE_API_TOKEN.get_secret_value().strip()
        if not token:
            raise ConfigurationError("REPLICATE_API_TOKEN is set but blank")
        return token


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance
    """
    return Settings()


def clear_settings_cache() -> None:
    """
    Clear the settings cache.

    Useful for testing or reloading configuration.
    """
    get_settings.cache_clear()
