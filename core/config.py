"""
core/config.py -- Process configuration for the Cypress identity service.

Every environment variable the service understands is a field on Settings.
Other modules ask get_settings() for values and never touch os.environ.

How it fits together:
  Settings is a pydantic-settings model, so each field is filled from the
      upper-cased env var of the same name (worker_id <- WORKER_ID) or from a
      local .env file, falling back to the default declared below.

  get_settings() is memoized with lru_cache: the environment is read once per
      process and every caller shares that instance.

  The after-validator settles SECRET_KEY once all fields are known, since its
      rules depend on DEBUG.

Security notes:
  [M6] Signing keys under 32 characters are refused. HS256 is only as strong
       as the key behind it.

  [M7] Outside DEBUG, booting without SECRET_KEY is an error. Falling back to
       a random key would quietly log every user out on each restart.

Layer rule: core/ sits at the bottom. Nothing here imports api/, auth/, or
cache/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("cypress.config")

DATA_DIR = Path(__file__).resolve().parent.parent / "data"


class Settings(BaseSettings):
    """Runtime configuration for one Cypress process.

    Every field has a default, so tests can build Settings(...) directly
    with overrides and no .env present.
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
    # "" means unset. validate_secret_key() replaces it or fails, so nothing
    # downstream ever signs with an empty key.
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Identifiers
    # ------------------------------------------------------------------

    # Must be unique per running instance; nothing here coordinates it.
    worker_id: int = Field(default=1, ge=0, le=1023)

    # ------------------------------------------------------------------
    # Session tokens
    # ------------------------------------------------------------------

    token_expire_seconds: int = Field(default=24 * 3600, gt=0)

    # ------------------------------------------------------------------
    # Verification codes
    # ------------------------------------------------------------------

    verification_code_length: int = Field(default=6, ge=1, le=12)
    verification_code_ttl_seconds: int = Field(default=5 * 60, gt=0)
    # Clear the challenge after a successful register / code login.
    single_use_verification_codes: bool = True
    # Echo the issued code in the send_code response. Development only.
    expose_verification_code: bool = False

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    bcrypt_rounds: int = Field(default=12, ge=4, le=16)

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = f"sqlite:///{DATA_DIR / 'cypress_accounts.db'}"
    challenge_db_path: str = str(DATA_DIR / "cypress_challenges.db")

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_allow_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Resolve SECRET_KEY [M7].

        DEBUG=true and no key: mint a random one and warn.
            Tokens issued before a restart stop validating.

        DEBUG unset/false and no key: raise, so startup aborts.

        Any key shorter than 32 characters is rejected [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "SECRET_KEY not set; generated a random key for this DEBUG process. "
                    "Tokens will not survive a restart."
                )
            else:
                raise ValueError(
                    "SECRET_KEY must be set unless DEBUG=true. "
                    "Export it or add it to .env; "
                    "DEBUG=true generates a throwaway key for local runs."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY is too short; use at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings, built on first call.

    Tests that change the environment must call get_settings.cache_clear()
    so the next call re-reads it.
    """
    return Settings()
