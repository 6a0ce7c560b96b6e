"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for MemberGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, session_database_url -> SESSION_DATABASE_URL).

  @model_validator(mode="after"): cross-field validation once every field is
      resolved. Dev mode (DEBUG=true) generates a signing key with a warning;
      production mode refuses to start without one.

Security notes:
  SECRET_KEY signs the session cookie. SESSION_SECRET encrypts session payloads
  at rest and falls back to SECRET_KEY when unset. Both must be at least 32
  characters.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("membergate.config")

_DATA_DIR = Path(__file__).resolve().parent.parent


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
    session_secret: str = ""

    # ------------------------------------------------------------------
    # Stores
    # ------------------------------------------------------------------

    database_url: str = f"sqlite:///{_DATA_DIR / 'membergate_users.db'}"
    session_database_url: str = f"sqlite:///{_DATA_DIR / 'membergate_sessions.db'}"

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    # Absolute lifetime of a session, counted from login/signup.
    session_expire_seconds: int = 3600
    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Server
    # ------------------------------------------------------------------

    host: str = "0.0.0.0"
    port: int = 3000

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the SECRET_KEY / SESSION_SECRET policy.

        Dev mode (DEBUG=true): auto-generate a random signing key with a
            warning. Sessions will not survive a restart.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject secrets shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if not self.session_secret:
            self.session_secret = self.secret_key
        if len(self.session_secret) < 32:
            raise ValueError("SESSION_SECRET must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
