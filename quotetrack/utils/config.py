"""Application settings loaded from environment variables and ``.env``.

Every setting can be overridden with a ``QUOTETRACK_`` prefixed variable, e.g.
``QUOTETRACK_DATABASE_URL=postgresql+psycopg://...``.
"""

from __future__ import annotations

from decimal import Decimal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration for quotetrack."""

    model_config = SettingsConfigDict(
        env_prefix="QUOTETRACK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    database_url: str = Field(default="sqlite:///./quotetrack.db")

    # Business
    company_name: str = Field(default="Windows & Doors Co.")
    app_origin: str = Field(default="http://localhost:5173")
    default_tax_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)

    # Outgoing e-mail (client quotes and admin notices)
    email_from: str = Field(default="quotes@example.com")
    admin_emails: str = Field(default="", description="Comma-separated admin recipients")
    smtp_host: str | None = None
    smtp_port: int = Field(default=587, gt=0)
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True

    # Chat webhook (Slack-compatible)
    chat_webhook_url: str | None = None

    # Lifecycle
    notification_timeout_seconds: float = Field(default=5.0, gt=0, le=30)
    idempotency_window_seconds: int = Field(default=60, ge=0)
    transition_max_attempts: int = Field(default=5, ge=1)
    store_retry_attempts: int = Field(default=3, ge=0)

    # Logging
    log_level: str = Field(default="INFO")
    json_logs: bool = False
    debug: bool = False

    # Extra domain event listeners (comma-separated dotted paths)
    event_listeners: str | None = None

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level

    @field_validator("app_origin")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def admin_email_list(self) -> list[str]:
        return [email.strip() for email in self.admin_emails.split(",") if email.strip()]

    def quote_link(self, quote_id: str) -> str:
        """Public link the client uses to view a quote."""
        return f"{self.app_origin}/view-quote?id={quote_id}"


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
