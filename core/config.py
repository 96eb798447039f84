"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for OTPGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, smtp_host -> SMTP_HOST).

  @model_validator(mode="after"): DEBUG-conditional SECRET_KEY policy. Dev
      mode generates a key with a warning; production refuses to start
      without one.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. JWT signing
  relies on key entropy -- a short key weakens every session cookie.

  In production mode (DEBUG not set or false), a missing SECRET_KEY is a
  hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
csrf/, or mail/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("otpgate.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'otpgate.db'}"


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
    # Sessions and CSRF
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    session_expire_seconds: int = 7 * 24 * 60 * 60
    csrf_token_ttl_seconds: int = 10 * 60
    # Housekeeping only: expired entries already fail validation on access.
    csrf_sweep_interval_seconds: int = 5 * 60

    # ------------------------------------------------------------------
    # OTP
    # ------------------------------------------------------------------

    otp_ttl_seconds: int = 10 * 60
    otp_length: int = 6

    # ------------------------------------------------------------------
    # Browser clients
    # ------------------------------------------------------------------

    cors_origins: list[str] = ["http://localhost:5173"]

    # ------------------------------------------------------------------
    # Email delivery (optional -- empty smtp_host means log-only delivery)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_use_ssl: bool = False
    smtp_timeout_seconds: int = 10
    email_from: str = ""
    email_from_name: str = "OTP Service"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.otp_length < 4:
            raise ValueError("OTP_LENGTH must be at least 4 digits.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
