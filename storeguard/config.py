"""
Configuration

Settings are read from environment variables (or a .env file) with
pydantic-settings.

Security considerations:
- ENCRYPTION_KEY has no default. It is optional at load time so that
  components which never touch encrypted data can start, but the first
  encryption call without it raises ConfigurationError.
- SMS provider credentials are only required when an SMS is actually sent.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Security layer settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Field encryption / search hashing
    ENCRYPTION_KEY: Optional[str] = Field(default=None)

    # TOTP
    MFA_ISSUER: str = Field(default="StoreGuard")

    # SMS provider (Twilio-compatible REST API)
    TWILIO_ACCOUNT_SID: Optional[str] = Field(default=None)
    TWILIO_AUTH_TOKEN: Optional[str] = Field(default=None)
    TWILIO_PHONE_NUMBER: Optional[str] = Field(default=None)
    SMS_API_BASE_URL: str = Field(default="https://api.twilio.com/2010-04-01")
    SMS_TIMEOUT_SECONDS: float = Field(default=10.0)

    # Account lockout
    LOCKOUT_MAX_ATTEMPTS: int = Field(default=5, ge=1)
    LOCKOUT_DURATION_MINUTES: int = Field(default=15, ge=1)

    # Rate limiter sweep
    RATE_LIMIT_CLEANUP_INTERVAL_SECONDS: int = Field(default=300, ge=1)

    LOG_LEVEL: str = Field(default="INFO")

    @field_validator("ENCRYPTION_KEY")
    @classmethod
    def blank_key_is_missing(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
