"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for PermGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, public_paths -> PUBLIC_PATHS as JSON).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. DEBUG decides whether a missing SECRET_KEY is generated with a
      warning or refuses startup.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. Token signing
       relies on key entropy -- a short key weakens every issued token.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure. A random key in production would silently
       invalidate every session on restart.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("permgate.config")

_VALID_REGISTRATION_STATUSES = {"active", "inactive"}


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
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    log_level: str = "INFO"
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = "sqlite:///permgate.db"
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Tokens and passwords
    # ------------------------------------------------------------------

    token_expire_seconds: int = 8 * 3600
    bcrypt_rounds: int = 10
    # How often the lifespan task drops revocation entries whose token has
    # already expired on its own.
    revocation_purge_seconds: int = 3600

    # ------------------------------------------------------------------
    # Authentication gate
    # ------------------------------------------------------------------

    public_paths: list[str] = [
        "/api/v1/login",
        "/api/v1/register",
        "/api/v1/health",
    ]
    public_path_prefixes: list[str] = ["/static/"]

    # ------------------------------------------------------------------
    # Registration and permissions
    # ------------------------------------------------------------------

    registration_status: str = "active"
    seed_permissions: bool = True

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_settings(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7] and sanity-check numeric knobs.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
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
        if self.token_expire_seconds <= 0:
            raise ValueError("TOKEN_EXPIRE_SECONDS must be positive.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        if self.registration_status not in _VALID_REGISTRATION_STATUSES:
            raise ValueError(f"REGISTRATION_STATUS must be one of {sorted(_VALID_REGISTRATION_STATUSES)}.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
