"""
Configuration Management for duofinance

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Business constants (invitation expiry window, free-plan monthly limit,
reminder lead time) live next to the credentials of the external
collaborators so that every tunable value is visible in one place.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets persistence gateway configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the spreadsheet holding one worksheet per table"
    )
    default_sheet_rows: int = Field(
        default=1000,
        ge=10,
        description="Rows allocated when a table worksheet is created"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class EmailSettings(BaseSettings):
    """Transactional email (Resend API) configuration."""

    model_config = SettingsConfigDict(
        env_prefix="EMAIL_",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="Resend API key"
    )
    api_url: str = Field(
        default="https://api.resend.com/emails",
        description="Email API endpoint"
    )
    from_address: str = Field(
        default="FinanceApp <no-reply@financeapp.site>",
        description="Sender shown on outgoing mail"
    )
    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=60,
        description="HTTP timeout for a single send attempt"
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
    app_url: str = Field(
        default="https://financeappo.netlify.app",
        description="Public URL used to build links in emails"
    )
    storage_backend: str = Field(
        default="memory",
        pattern="^(memory|google_sheets)$",
        description="Which persistence gateway to build"
    )
    local_store_path: Optional[str] = Field(
        default=None,
        description="JSON file for device-local preferences (in memory when unset)"
    )

    # Couple linking
    invitation_expiry_days: int = Field(
        default=7,
        ge=1,
        le=90,
        description="How long a pending invitation stays actionable"
    )
    min_password_length: int = Field(
        default=6,
        ge=1,
        description="Minimum length of a password set from an invitation link"
    )
    admin_emails: str = Field(
        default="",
        description="Comma-separated list of emails granted admin on first sign-in"
    )

    # Plans and usage
    free_monthly_transaction_limit: int = Field(
        default=5,
        ge=0,
        description="Transactions a free profile can add per calendar month"
    )

    # Reminders
    default_notification_days: int = Field(
        default=3,
        ge=0,
        le=60,
        description="Default lead time (days) for bill reminders"
    )

    @property
    def admin_emails_list(self) -> list[str]:
        """Get admin emails as a normalized list."""
        return [
            email.strip().lower()
            for email in self.admin_emails.split(",")
            if email.strip()
        ]

    @property
    def set_password_url(self) -> str:
        """Base URL of the password-setup page."""
        return f"{self.app_url.rstrip('/')}/auth/set-password"


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

    # Sub-settings are loaded lazily so a partially configured
    # environment (e.g. no email key in tests) still works.

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def email(self) -> EmailSettings:
        return EmailSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, with an extra
    "<name>_error" entry for each section that failed to load.
    """
    results = {}

    settings = get_settings()

    for name in ("google_sheets", "email", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
