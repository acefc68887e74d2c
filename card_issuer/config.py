"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables, with an optional .env file
as a fallback. The vault key never lives in source code — the .env file is
gitignored, and .env.example provides a safe template for developers.

Pydantic Settings automatically:
  1. Reads from environment variables (highest priority)
  2. Falls back to .env file values
  3. Uses defaults defined here (lowest priority)

Usage:
    from card_issuer.config import settings
    print(settings.OUTBOX_BATCH_SIZE)
"""

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the Card Issuer service.

    Required fields (no defaults) MUST be set in .env or environment:
      - TOKEN_VAULT_KEY: Fernet key for encrypting PANs and CVVs in the vault
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Application ---
    APP_NAME: str = "Card Issuer"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # --- Database ---
    # SQLite for MVP; swap to a PostgreSQL (asyncpg) connection string for production
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/cards.db"

    # --- Token Vault ---
    # REQUIRED: Fernet key for the vault. SecretStr keeps it out of reprs and logs.
    # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
    TOKEN_VAULT_KEY: SecretStr

    # --- Issuance ---
    # Product code -> BIN. Unrecognized product codes fall back to DEFAULT_BIN.
    PRODUCT_BINS: dict[str, str] = {
        "VISA_GOLD": "516233",
        "VISA_PLATINUM": "516233",
        "MASTERCARD_GOLD": "453912",
        "MASTERCARD_PLATINUM": "453912",
    }
    DEFAULT_BIN: str = "516233"
    CARD_VALIDITY_YEARS: int = Field(default=3, ge=1)

    # Consumed issuance requests below this score are rejected
    CREDIT_SCORE_THRESHOLD: int = 600

    # --- Outbox dispatcher ---
    OUTBOX_DISPATCHER_ENABLED: bool = True
    OUTBOX_POLL_INTERVAL_SECONDS: float = Field(default=1.0, gt=0)
    OUTBOX_BATCH_SIZE: int = Field(default=100, ge=1)
    OUTBOX_RETRY_INITIAL_DELAY_SECONDS: float = Field(default=0.5, ge=0)
    OUTBOX_RETRY_BACKOFF_FACTOR: float = Field(default=2.0, ge=1)
    OUTBOX_RETRY_MAX_DELAY_SECONDS: float = Field(default=30.0, ge=0)
    OUTBOX_RETRY_MAX_ATTEMPTS: int = Field(default=5, ge=1)
    OUTBOX_RETENTION_DAYS: int = Field(default=7, ge=0)

    # --- Message broker ---
    # When unset, events are written to the log instead of a real transport
    BROKER_URL: str | None = None
    BROKER_TIMEOUT_SECONDS: float = 5.0


# Singleton: import this instance everywhere instead of creating new Settings()
settings = Settings()
