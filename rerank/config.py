"""
Configuration Management

Uses Pydantic Settings for environment-based configuration.
Loads from .env file automatically.
"""

from typing import Optional
from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Google Search Console OAuth (token refresh)
    GOOGLE_CLIENT_ID: Optional[str] = None
    GOOGLE_CLIENT_SECRET: Optional[str] = None

    # SERP API
    SERPER_API_KEY: Optional[str] = None

    # Claude API (semantic diff, article suggestions)
    ANTHROPIC_API_KEY: Optional[str] = None
    CLAUDE_MODEL: str = "claude-sonnet-4-20250514"

    # Resend (email notifications)
    RESEND_API_KEY: Optional[str] = None
    RESEND_FROM_EMAIL: str = "notifications@rerank-ai.com"

    # Slack app
    SLACK_CLIENT_ID: Optional[str] = None
    SLACK_CLIENT_SECRET: Optional[str] = None
    SLACK_REDIRECT_BASE_URL: str = "https://rerank-ai.com"

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None

    # Cache
    REDIS_URL: Optional[str] = None

    # Application Settings
    APP_URL: str = "http://localhost:3000"
    ENABLE_PLAN_LIMITS: bool = False
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Timeouts
    API_TIMEOUT: int = 30

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra fields in .env file
        case_sensitive = False  # Allow both UPPERCASE and lowercase

    @property
    def dashboard_url(self) -> str:
        return f"{self.APP_URL.rstrip('/')}/dashboard"


@lru_cache
def get_settings() -> Settings:
    """Get or create cached settings instance."""
    return Settings()
