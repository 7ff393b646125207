"""Application settings using Pydantic."""
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str = Field(
        default="sqlite:///jobcat.db",
        description="SQLAlchemy database URL",
    )

    # Gmail
    gmail_credentials_file: str = Field(
        default="credentials.json",
        description="Path to Gmail OAuth credentials file",
    )
    gmail_token_file: str = Field(
        default="token.json",
        description="Path to Gmail OAuth token file",
    )

    # OpenAI
    openai_api_key: Optional[str] = Field(
        default=None,
        description="OpenAI API key used for email classification",
    )
    openai_model: str = Field(
        default="gpt-4o-mini",
        description="Chat model used for email classification",
    )
    ai_timeout_seconds: float = Field(
        default=30.0,
        description="Request timeout for a single classification call",
    )
    ai_max_tokens: int = Field(
        default=1000,
        description="Maximum tokens the model may return per classification",
    )
    ai_body_token_budget: int = Field(
        default=6000,
        description="Approximate token budget for the email body sent to the model",
    )

    # Sync policy
    sync_default_lookback_days: int = Field(
        default=50,
        ge=1,
        description="Days to scan on a user's first sync",
    )
    sync_max_messages: int = Field(
        default=200,
        ge=1,
        description="Maximum mailbox messages examined per sync run",
    )
    company_match_threshold: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Confidence a company-directory match must exceed to be accepted",
    )
    keyword_match_threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Confidence a keyword-only match must exceed to be accepted",
    )

    # Scheduler
    sync_user_id: str = Field(
        default="me",
        description="User whose mailbox the scheduler syncs",
    )
    email_sync_interval_minutes: int = Field(
        default=15,
        ge=1,
        description="How often to sync Gmail (minutes)",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    log_file: Optional[str] = Field(
        default="logs/jobcat.log",
        description="Rotating log file path (empty to disable)",
    )


# Global settings instance
settings = Settings()
