"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for expertsman happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, master_password -> MASTER_PASSWORD).

  @model_validator(mode="after"): dev mode generates a SECRET_KEY with a
      warning, production mode refuses to start without one.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. Token HMACs rely
       on key entropy.

  In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure. A random per-process key would silently invalidate
       every issued token on restart.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or workspace/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("expertsman.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'expertsman.db'}"
_DEFAULT_RETENTION_YEARS = 5


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Principals
    # ------------------------------------------------------------------

    # Empty means master login is disabled; POST /master/auth answers 500.
    master_password: str = ""

    master_token_ttl_hours: float = 1
    tenant_token_ttl_hours: float = 24
    expert_token_ttl_hours: float = 2

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    # Store-backed lockout for master / tenant / expert logins.
    login_max_attempts: int = 5
    login_window_seconds: int = 900
    login_block_seconds: int = 900

    # Store-backed lockout for per-voter passwords on poll pages.
    voter_max_attempts: int = 5
    voter_window_seconds: int = 600
    voter_block_seconds: int = 600

    # Coarse per-IP throttle applied by slowapi in front of the login routes.
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    retention_enabled: bool = True
    retention_years: int = _DEFAULT_RETENTION_YEARS
    retention_interval_seconds: int = 24 * 60 * 60

    # ------------------------------------------------------------------
    # Protected default workspace
    # ------------------------------------------------------------------

    protected_tenant_slug: str = "default"
    default_tenant_name: str = "Default Workspace"
    default_tenant_password: str = "0000"
    default_sender_suffix: str = "장"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["*"]
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Honour CF-Connecting-IP / X-Forwarded-For / X-Real-IP for the client
    # address. Enable only behind a proxy that overwrites these headers.
    trust_proxy_headers: bool = False

    audit_queue_size: int = 1000

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("retention_years", mode="before")
    @classmethod
    def coerce_retention_years(cls, value) -> int:
        """Fall back to the default for anything that is not a positive number."""
        try:
            years = int(float(value))
        except (TypeError, ValueError):
            return _DEFAULT_RETENTION_YEARS
        return years if years > 0 else _DEFAULT_RETENTION_YEARS

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
        Production mode: refuse to start if SECRET_KEY is missing.
        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Tokens will not survive a restart.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
