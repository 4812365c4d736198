"""Application configuration using Pydantic settings."""

import secrets
from datetime import date, datetime
from functools import lru_cache
from pathlib import Path
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings, SettingsConfigDict

IST_TZ = ZoneInfo("Europe/Istanbul")

# Generate a random secret key for development if not configured
_DEFAULT_SECRET_KEY = secrets.token_hex(32)


def ist_now() -> datetime:
    """Current time in Istanbul (TJK race days are Istanbul-local)."""
    return datetime.now(IST_TZ)


def ist_now_naive() -> datetime:
    """Current Istanbul time as naive datetime (for SQLAlchemy defaults).

    SQLite doesn't handle timezone-aware datetimes well, so we store
    Istanbul local time as naive datetime.
    """
    return ist_now().replace(tzinfo=None)


def ist_today() -> date:
    """Today's date in Istanbul."""
    return ist_now().date()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="STABLEMATE_",
        extra="ignore",
    )

    # Database
    db_path: Path = Path("./data/stablemate.db")
    database_url: str = ""  # Overrides db_path when set (e.g. PostgreSQL)
    prod_database_url: str = ""  # Target for the admin "prod" switch

    # App
    secret_key: str = ""  # Will use random key if not set
    debug: bool = False
    log_level: str = "INFO"
    disable_background: bool = False

    # TJK scraping
    tjk_base_url: str = "https://www.tjk.org"
    fetch_timeout: float = 55.0  # Stay under the 60s platform request ceiling
    http_timeout: float = 20.0
    cache_ttl_hours: int = 24
    nightly_refresh_hour: int = 2

    def model_post_init(self, __context) -> None:
        """Ensure secret_key is set (generate random if not configured)."""
        if not self.secret_key:
            object.__setattr__(self, "secret_key", _DEFAULT_SECRET_KEY)

    @property
    def default_database_url(self) -> str:
        """SQLAlchemy URL for the default (local) database."""
        if self.database_url:
            return to_async_url(self.database_url)
        return f"sqlite+aiosqlite:///{self.db_path}"

    @property
    def prod_url(self) -> str:
        """SQLAlchemy URL for the production database, or empty if unset."""
        return to_async_url(self.prod_database_url) if self.prod_database_url else ""


class FullSettings(Settings):
    """Settings with database URLs also read from the standard unprefixed env vars."""

    def model_post_init(self, __context) -> None:
        """Fall back to DATABASE_URL / PROD_DATABASE_URL from env or .env."""
        import os
        from dotenv import dotenv_values

        super().model_post_init(__context)
        env_vals = dotenv_values(".env")
        if not self.database_url:
            self.database_url = os.getenv("DATABASE_URL", "") or env_vals.get("DATABASE_URL") or ""
        if not self.prod_database_url:
            self.prod_database_url = (
                os.getenv("PROD_DATABASE_URL", "") or env_vals.get("PROD_DATABASE_URL") or ""
            )


def to_async_url(url: str) -> str:
    """Rewrite a plain database URL to use an async SQLAlchemy driver."""
    # Hosting providers hand out postgres:// URLs
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return url


@lru_cache
def get_settings() -> FullSettings:
    """Get cached settings instance."""
    return FullSettings()


# Export for convenience
settings = get_settings()
