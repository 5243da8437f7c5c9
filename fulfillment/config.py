from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./fulfillment.db"

    # Database Connection Pool Settings (ignored for SQLite)
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # Seconds a SQLite writer waits for the database lock before failing
    SQLITE_BUSY_TIMEOUT: int = 30

    # App Settings
    APP_NAME: str = "Storefront Fulfillment"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Orders
    DEFAULT_CURRENCY: str = "USD"
    DEFAULT_LOCATION: str = "main_warehouse"
    ORDER_NUMBER_PREFIX: str = "ORD"
    PO_NUMBER_PREFIX: str = "PO"

    # Abandoned reservation sweep
    RESERVATION_TTL_MINUTES: int = 30  # PENDING orders older than this are cancelled
    RESERVATION_SWEEP_INTERVAL_MINUTES: int = 10
    RESERVATION_SWEEP_BATCH_SIZE: int = 100
    SCHEDULER_TIMEZONE: str = "UTC"

    @field_validator("DEFAULT_CURRENCY", mode="before")
    @classmethod
    def normalize_currency(cls, v):
        if isinstance(v, str):
            v = v.strip().upper()
            if len(v) != 3 or not v.isalpha():
                raise ValueError("DEFAULT_CURRENCY must be a 3-letter ISO code")
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
