"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Rosin Tracker happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. bcrypt_rounds -> BCRYPT_ROUNDS). Type coercion and validation are
      built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Used to refuse a weak bcrypt cost factor
      outside of debug mode.

Auth flag:
  auth_enabled is read once and handed to AuthService at construction time.
  Nothing mutates it at runtime. The legacy AUTH_PASSWORD=YES switch from
  older installs is accepted as an alias so existing .env files keep working.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("rosintracker.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'rosintracker_auth.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Auth switch
    # ------------------------------------------------------------------

    auth_enabled: bool = Field(
        default=False,
        validation_alias=AliasChoices("auth_enabled", "auth_password"),
    )

    # ------------------------------------------------------------------
    # Credentials and lockout
    # ------------------------------------------------------------------

    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    min_password_length: int = 8
    max_password_length: int = 128
    max_login_attempts: int = 5
    lockout_minutes: int = 15

    # ------------------------------------------------------------------
    # Sessions and one-time tokens
    # ------------------------------------------------------------------

    session_ttl_days: int = 7
    session_cleanup_interval_minutes: int = 60
    reset_token_ttl_hours: int = 24
    email_verification_ttl_hours: int = 24
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Two-factor
    # ------------------------------------------------------------------

    totp_issuer: str = "Rosin Tracker"
    # Steps of clock drift accepted either side of the current 30s step.
    totp_valid_window: int = 1
    backup_code_count: int = 8

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_bcrypt_cost(self) -> "Settings":
        """Reject a bcrypt cost below 10 unless DEBUG=true.

        Low rounds make the test suite fast, but in production they make
        offline brute force of a leaked users table cheap.
        """
        if self.bcrypt_rounds < 10:
            if not self.debug:
                raise ValueError(
                    "BCRYPT_ROUNDS below 10 is only allowed in development mode. "
                    "Unset BCRYPT_ROUNDS or set DEBUG=true."
                )
            logger.warning("Using reduced bcrypt cost (%d rounds) -- development only.", self.bcrypt_rounds)
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
