"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AuthGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  Constructor injection downstream: only api/main.py's lifespan calls
      get_settings(). It passes the individual values into UserStore,
      TokenEngine, AuthService and the rate limit dependencies, so no
      component reads configuration on its own and tests can build any
      component with explicit values.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode generates a signing key with a
      warning; production mode refuses to start without one.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing
       relies on key entropy -- a short key makes forgery practical.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure. A random per-process key would silently
       invalidate every issued token on restart.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authgate.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'authgate.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.

    Environment variable name mapping: field names are uppercased automatically.
    E.g. `secret_key` reads from SECRET_KEY, `max_login_attempts` from
    MAX_LOGIN_ATTEMPTS.
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
    app_version: str = "1.0.0"

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    token_expire_seconds: int = 24 * 60 * 60
    token_issuer: str = "authgate"

    # ------------------------------------------------------------------
    # Account security
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    max_login_attempts: int = 5
    lockout_seconds: int = 15 * 60

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    # Applied to every route, keyed by client address.
    rate_limit_window_seconds: int = 15 * 60
    rate_limit_max_requests: int = 100
    # Applied to login/register on top of the general limit, keyed by
    # client address + submitted username.
    auth_rate_limit_window_seconds: int = 15 * 60
    auth_rate_limit_max_requests: int = 10
    rate_limit_purge_interval_seconds: int = 60

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Logging / HTTP
    # ------------------------------------------------------------------

    log_level: str = "INFO"
    log_format: str = "text"  # "text" or "json"
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("text", "json"):
            raise ValueError("LOG_FORMAT must be 'text' or 'json'.")
        return value

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_bcrypt_rounds(cls, value: int) -> int:
        # bcrypt.gensalt() accepts 4..31.
        if not 4 <= value <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return value

    @field_validator(
        "max_login_attempts",
        "lockout_seconds",
        "token_expire_seconds",
        "rate_limit_window_seconds",
        "rate_limit_max_requests",
        "auth_rate_limit_window_seconds",
        "auth_rate_limit_max_requests",
        "rate_limit_purge_interval_seconds",
    )
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
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

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
