"""
Configuration management for QueryChat.

Loads configuration from environment variables with support for .env files.
Uses Pydantic Settings for validation and type coercion.
"""

import os
import re
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONVERSATION_ID_PATTERN = r"^[0-9a-fA-F-]{36}$"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Backend API
    api_base: str = Field(
        default="http://localhost:8000/api", description="Base URL of the analysis backend"
    )
    api_token: str | None = Field(default=None, description="Bearer token for the backend")
    request_timeout: float = Field(default=120.0, description="HTTP request timeout in seconds")

    # Reconciliation heuristics
    recent_conversation_window_seconds: float = Field(
        default=30.0,
        description="Locally created conversations younger than this survive a list refresh",
    )
    visualization_min_payload_length: int = Field(
        default=100,
        description="Chart payloads shorter than this are treated as placeholders",
    )
    conversation_title_max_length: int = Field(
        default=60, description="Length of titles synthesised for new conversations"
    )

    # History fetch retry policy
    history_fetch_max_retries: int = Field(default=2, description="Retries for transient failures")
    history_fetch_backoff_seconds: float = Field(
        default=1.0, description="Backoff unit, multiplied by the attempt number"
    )
    conversation_id_pattern: str = Field(
        default=DEFAULT_CONVERSATION_ID_PATTERN,
        description="Regex a conversation id must match before it is fetched",
    )

    visualization_page_size: int = Field(default=50, description="Page size for visualization list")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str | None = Field(default=None, description="Log file path")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return upper_v

    @field_validator("conversation_id_pattern")
    @classmethod
    def validate_conversation_id_pattern(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"conversation_id_pattern is not a valid regex: {e}") from e
        return v

    @field_validator("api_base")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application settings instance
    """
    env_file = os.environ.get("QUERYCHAT_ENV_FILE")
    if env_file:
        return Settings(_env_file=env_file)
    return Settings()


def load_settings(env_file: str | Path | None = None) -> Settings:
    """
    Load settings from a specific .env file.

    Args:
        env_file: Path to .env file (optional)

    Returns:
        Settings: Application settings instance
    """
    if env_file:
        os.environ["QUERYCHAT_ENV_FILE"] = str(env_file)
    # Clear cache to reload
    get_settings.cache_clear()
    return get_settings()
