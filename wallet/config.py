"""
Settings for the wallet service, read once at import time.

Values come from the process environment first, then `.env` in the working
directory, then the defaults below. Every module imports the `settings`
instance; tests override individual fields with monkeypatch.setattr.

Money settings are integer cents. SECRET_KEY has no default and must be
provided, or import fails.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Wallet API configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Application ---
    APP_NAME: str = "Wallet API"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # --- Database ---
    # SQLite for local use; swap to a PostgreSQL (asyncpg) URL for production
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/wallet.db"
    # How long a SQLite connection waits on the writer lock before giving up
    SQLITE_BUSY_TIMEOUT_SECONDS: float = 30.0

    # --- Authentication ---
    # Signs bearer tokens; required
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    # --- CORS ---
    ALLOWED_ORIGINS: list[str] = ["http://localhost:5173"]

    # --- Ledger rules ---
    # Balance seeded into every newly opened account (the only source of funds)
    INITIAL_BALANCE_CENTS: int = 1_000_00
    # Largest single transfer accepted ($100,000.00)
    MAX_TRANSFER_CENTS: int = 100_000_00
    MAX_DESCRIPTION_LENGTH: int = 200

    # --- History pagination ---
    DEFAULT_PAGE_SIZE: int = 10
    MAX_PAGE_SIZE: int = 100

    # --- Transfer engine ---
    TRANSFER_MAX_ATTEMPTS: int = 3
    TRANSFER_RETRY_BACKOFF_SECONDS: float = 0.05
    # When set, POST /account/transfer rejects requests without an Idempotency-Key
    REQUIRE_IDEMPOTENCY_KEY: bool = False


settings = Settings()
