"""Application configuration via environment variables."""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """App settings loaded from .env or environment."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Use PostgreSQL in production, SQLite locally
    DATABASE_URL: str = "sqlite:///./quoteledger.db"
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    CORS_ORIGINS: str = "http://localhost:3000"
    LOG_LEVEL: str = "INFO"

    DEFAULT_CURRENCY: str = "GBP"

    # Timeline view shows the most recent N events
    AUDIT_DISPLAY_LIMIT: int = 100

    # Public (unauthenticated) client actions
    RATE_LIMIT_MAX_REQUESTS: int = 5
    RATE_LIMIT_WINDOW_SECONDS: int = 60


settings = Settings()
