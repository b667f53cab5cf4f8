"""
Configuration management for Starwatch.

This module handles environment variables, settings validation, and configuration
management using Pydantic Settings for type safety and validation.
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerConfig(BaseModel):
    """Web server configuration settings."""

    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    debug: bool = Field(default=False, description="Enable debug mode")


class StoreConfig(BaseModel):
    """User store configuration settings."""

    backend: str = Field(default="sql", description="Store backend")
    url: str = Field(default="sqlite:///./starwatch.db", description="Database URL")


class PollingConfig(BaseModel):
    """Polling configuration settings."""

    enabled: bool = Field(default=True, description="Start the scheduler with the app")
    interval_seconds: int = Field(
        default=900, description="Tick period in seconds (15 minutes)"
    )
    max_concurrent_users: int = Field(
        default=0, description="Cap on concurrent user cycles (0 for unbounded)"
    )
    description_limit: int = Field(
        default=150, description="Maximum length of event bodies in notifications"
    )


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Telegram configuration
    telegram_bot_token: str = Field(..., description="Telegram bot API token")
    telegram_api_url: str = Field(
        default="https://api.telegram.org", description="Telegram Bot API URL"
    )

    # GitHub configuration
    github_api_url: str = Field(
        default="https://api.github.com", description="GitHub API URL"
    )
    http_timeout_seconds: float = Field(
        default=30.0, description="Timeout for remote HTTP calls in seconds"
    )

    # Server configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Store configuration
    state_backend: str = Field(default="sql", description="User store: sql, memory")
    database_url: str = Field(
        default="sqlite:///./starwatch.db", description="Database URL"
    )

    # Logging configuration
    log_level: str = Field(default="INFO", description="Log level")
    log_format: str = Field(default="json", description="Log format")

    # Polling configuration
    enable_polling: bool = Field(default=True, description="Enable polling")
    poll_interval_seconds: int = Field(
        default=900, description="Polling interval in seconds"
    )
    poll_max_concurrent_users: int = Field(
        default=0, description="Number of users polled concurrently (0 = unbounded)"
    )
    description_limit: int = Field(
        default=150, description="Notification body length limit"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        allowed_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()

    @field_validator("state_backend")
    @classmethod
    def validate_state_backend(cls, v: str) -> str:
        """Validate user store backend."""
        allowed_backends = {"sql", "memory"}
        if v.lower() not in allowed_backends:
            raise ValueError(f"Invalid state backend: {v}")
        return v.lower()

    @field_validator("poll_interval_seconds", "description_limit")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate strictly positive integers."""
        if v <= 0:
            raise ValueError(f"Value must be positive, got {v}")
        return v

    @field_validator("poll_max_concurrent_users")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        """Validate the concurrency cap."""
        if v < 0:
            raise ValueError(f"poll_max_concurrent_users must be >= 0, got {v}")
        return v

    @property
    def server_config(self) -> ServerConfig:
        """Get server configuration."""
        return ServerConfig(host=self.host, port=self.port, debug=self.debug)

    @property
    def store_config(self) -> StoreConfig:
        """Get user store configuration."""
        return StoreConfig(backend=self.state_backend, url=self.database_url)

    @property
    def polling_config(self) -> PollingConfig:
        """Get polling configuration."""
        return PollingConfig(
            enabled=self.enable_polling,
            interval_seconds=self.poll_interval_seconds,
            max_concurrent_users=self.poll_max_concurrent_users,
            description_limit=self.description_limit,
        )


# Global settings instance - initialized lazily to avoid import-time errors
_settings_instance = None


def get_settings() -> Settings:
    """Get the global settings instance, creating it if necessary."""
    global _settings_instance
    if _settings_instance is None:
        try:
            _settings_instance = Settings()  # type: ignore[call-arg,unused-ignore]
        except ValueError as e:
            if "telegram_bot_token" in str(e):
                raise ValueError(
                    "TELEGRAM_BOT_TOKEN environment variable is required. "
                    "Please set it to the token of your Telegram bot."
                ) from e
            raise
    return _settings_instance


def __getattr__(name: str) -> Any:
    """Allow module-level access to settings attributes."""
    if name == "settings":
        return get_settings()
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
