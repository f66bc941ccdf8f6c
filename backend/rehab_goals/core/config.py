"""Configuration management using Pydantic Settings."""

import logging
from functools import lru_cache
from typing import Literal

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/api/webhook/goal-recommendations"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase Configuration
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_ROLE_KEY: SecretStr = SecretStr("")

    # External goal-generation workflow
    GOAL_WORKFLOW_WEBHOOK_URL: str = ""
    GOAL_WORKFLOW_TIMEOUT_SECONDS: float = 30.0
    APP_URL: str = ""  # Base URL the workflow calls back into

    # Recommendation polling (fixed interval, no backoff)
    RECOMMENDATION_POLL_MAX_ATTEMPTS: int = 15
    RECOMMENDATION_POLL_INTERVAL_MS: int = 5000

    # Application Settings
    APP_ENV: Literal["development", "staging", "production"] = "development"

    # Logging
    LOG_FORMAT: Literal["text", "json"] = "text"
    LOG_LEVEL: str = "INFO"

    @field_validator("SUPABASE_URL", "GOAL_WORKFLOW_WEBHOOK_URL", "APP_URL")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate that configured URLs use http(s) and drop the trailing slash."""
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("URL settings must start with http:// or https://")
        return v.rstrip("/") if v else v

    @field_validator("RECOMMENDATION_POLL_MAX_ATTEMPTS")
    @classmethod
    def validate_poll_attempts(cls, v: int) -> int:
        """Polling needs at least one read."""
        if v < 1:
            raise ValueError("RECOMMENDATION_POLL_MAX_ATTEMPTS must be at least 1")
        return v

    @field_validator("RECOMMENDATION_POLL_INTERVAL_MS")
    @classmethod
    def validate_poll_interval(cls, v: int) -> int:
        """Reject negative polling intervals."""
        if v < 0:
            raise ValueError("RECOMMENDATION_POLL_INTERVAL_MS must not be negative")
        return v

    @property
    def callback_url(self) -> str | None:
        """URL the workflow should report back to, if an app URL is configured."""
        if not self.APP_URL:
            return None
        return f"{self.APP_URL}{CALLBACK_PATH}"

    @property
    def poll_interval_seconds(self) -> float:
        """Polling interval converted to seconds."""
        return self.RECOMMENDATION_POLL_INTERVAL_MS / 1000

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.APP_ENV == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.APP_ENV == "production"

    @property
    def is_configured(self) -> bool:
        """Check if required settings are configured."""
        return bool(
            self.SUPABASE_URL
            and self.SUPABASE_SERVICE_ROLE_KEY.get_secret_value()
            and self.GOAL_WORKFLOW_WEBHOOK_URL
        )

    def validate_startup(self) -> None:
        """Validate that all required settings are present.

        Raises:
            ValueError: If any required setting is missing or empty.
        """
        required = {
            "SUPABASE_URL": self.SUPABASE_URL,
            "SUPABASE_SERVICE_ROLE_KEY": self.SUPABASE_SERVICE_ROLE_KEY.get_secret_value(),
            "GOAL_WORKFLOW_WEBHOOK_URL": self.GOAL_WORKFLOW_WEBHOOK_URL,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ValueError(f"Required settings are missing or empty: {', '.join(missing)}")
        logger.info("Configuration validated", extra={"app_env": self.APP_ENV})


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Startup validation is left to the application layer so the library
    imports cleanly without secrets.

    Returns:
        Settings instance.
    """
    return Settings()


# Global settings instance - import this for easy access
settings = get_settings()
