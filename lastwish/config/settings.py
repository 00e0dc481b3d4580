"""
Configuration Management for Last Wish

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# SMTP retry policy: attempts per send, and the longest backoff between them
SMTP_SEND_ATTEMPTS = 3
SMTP_RETRY_MAX_WAIT_SECONDS = 10.0


class SupabaseSettings(BaseSettings):
    """Supabase storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SUPABASE_",
        extra="ignore"
    )

    url: str = Field(
        ...,
        description="Supabase project URL"
    )
    service_key: str = Field(
        ...,
        description="Service role key (bypasses row level security)"
    )

    # Table names
    settings_table: str = Field(
        default="last_wish_settings",
        description="Table holding one settings row per user"
    )
    deliveries_table: str = Field(
        default="last_wish_deliveries",
        description="Append-only delivery log"
    )
    audit_table: str = Field(
        default="last_wish_audit_log",
        description="Append-only audit trail"
    )
    profiles_table: str = Field(
        default="profiles",
        description="Table mapping user_id to the account email"
    )

    page_size: int = Field(
        default=1000,
        ge=1,
        le=10000,
        description="Rows fetched per page when scanning"
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError("SUPABASE_URL must be an http(s) URL")
        return v


class SMTPSettings(BaseSettings):
    """Outgoing mail (SMTP) configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SMTP_",
        extra="ignore"
    )

    host: str = Field(
        default="smtp.gmail.com",
        description="SMTP server host"
    )
    port: int = Field(
        default=587,
        ge=1,
        le=65535,
        description="SMTP server port"
    )
    user: Optional[str] = Field(
        default=None,
        description="SMTP login"
    )
    password: Optional[str] = Field(
        default=None,
        description="SMTP password or app password"
    )
    from_address: Optional[str] = Field(
        default=None,
        description="From header; defaults to the SMTP login"
    )
    use_ssl: bool = Field(
        default=False,
        description="Connect with implicit TLS (usually port 465)"
    )
    use_tls: bool = Field(
        default=True,
        description="Upgrade the connection with STARTTLS"
    )
    timeout_seconds: float = Field(
        default=20.0,
        gt=0,
        description="Socket timeout for one SMTP session"
    )

    @model_validator(mode="after")
    def check_tls_modes(self) -> "SMTPSettings":
        if self.use_ssl and self.use_tls:
            # Implicit TLS already encrypts; STARTTLS on top is an error
            self.use_tls = False
        return self

    @property
    def is_configured(self) -> bool:
        return bool(self.user and self.password)

    @property
    def sender(self) -> Optional[str]:
        return self.from_address or self.user

    @property
    def worst_case_send_seconds(self) -> float:
        """Longest one send can take with every retry and backoff used."""
        return (
            SMTP_SEND_ATTEMPTS * self.timeout_seconds
            + (SMTP_SEND_ATTEMPTS - 1) * SMTP_RETRY_MAX_WAIT_SECONDS
        )


class DeliverySettings(BaseSettings):
    """Delivery engine tuning."""

    model_config = SettingsConfigDict(
        env_prefix="LAST_WISH_",
        extra="ignore"
    )

    send_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        le=600,
        description="Upper bound on one recipient send"
    )
    max_concurrent_sends: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Recipients of one user sent in parallel"
    )
    max_concurrent_users: int = Field(
        default=4,
        ge=1,
        le=50,
        description="Overdue users processed in parallel within one run"
    )
    recent_deliveries_limit: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Delivery records shown in a status report"
    )
    product_name: str = Field(
        default="Last Wish",
        description="Name used in email subjects and bodies"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Root log level"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return v


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily to allow partial configuration
    # (status queries work without SMTP credentials)

    @property
    def supabase(self) -> SupabaseSettings:
        return SupabaseSettings()

    @property
    def smtp(self) -> SMTPSettings:
        return SMTPSettings()

    @property
    def delivery(self) -> DeliverySettings:
        return DeliverySettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


def check_send_budget(delivery: DeliverySettings, smtp: SMTPSettings) -> None:
    """
    Ensure the per-send timeout outlasts the transport's own retries.

    A send cancelled by the timeout keeps running in its worker thread and
    may still reach the recipient after it was recorded as failed.

    Raises:
        ValueError: If the timeout is not longer than the worst case
    """
    if delivery.send_timeout_seconds <= smtp.worst_case_send_seconds:
        raise ValueError(
            f"LAST_WISH_SEND_TIMEOUT_SECONDS ({delivery.send_timeout_seconds:g}) must exceed "
            f"the SMTP retry budget ({smtp.worst_case_send_seconds:g}s: "
            f"{SMTP_SEND_ATTEMPTS} attempts of SMTP_TIMEOUT_SECONDS plus backoff)"
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    try:
        _ = settings.supabase
        results["supabase"] = True
    except Exception as e:
        results["supabase"] = False
        results["supabase_error"] = str(e)

    try:
        smtp = settings.smtp
        results["smtp"] = smtp.is_configured
        if not smtp.is_configured:
            results["smtp_error"] = "SMTP_USER and SMTP_PASSWORD are not set"
    except Exception as e:
        results["smtp"] = False
        results["smtp_error"] = str(e)

    try:
        _ = settings.delivery
        results["delivery"] = True
    except Exception as e:
        results["delivery"] = False
        results["delivery_error"] = str(e)

    try:
        check_send_budget(settings.delivery, settings.smtp)
        results["send_budget"] = True
    except Exception as e:
        results["send_budget"] = False
        results["send_budget_error"] = str(e)

    try:
        _ = settings.app
        results["app"] = True
    except Exception as e:
        results["app"] = False
        results["app_error"] = str(e)

    return results
