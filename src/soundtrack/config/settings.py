"""Application settings loaded from environment variables and .env files."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Hey future me - every settings group has its own env prefix! So DATABASE_URL lands in
# settings.database.url, SPOTIFY_CLIENT_ID in settings.spotify.client_id and so on.
# Each group reads .env on its own (pydantic-settings does not pass env_file down to nested
# BaseSettings created via default_factory), that's why model_config is repeated.
_ENV_FILE = ".env"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_", env_file=_ENV_FILE, extra="ignore"
    )

    url: str = Field(
        default="sqlite+aiosqlite:///./data/soundtrack.db",
        description="SQLAlchemy async database URL (sqlite+aiosqlite or postgresql+asyncpg)",
    )
    echo: bool = Field(default=False, description="Log all SQL statements")
    pool_pre_ping: bool = Field(default=True)
    pool_size: int = Field(default=5, ge=1)
    max_overflow: int = Field(default=10, ge=0)
    pool_timeout: int = Field(default=30, ge=1)
    pool_recycle: int = Field(default=3600, ge=-1)
    sqlite_busy_timeout: float = Field(
        default=30.0, gt=0, description="Seconds a SQLite writer waits for the lock"
    )


class SpotifySettings(BaseSettings):
    """Streaming provider (Spotify) API settings."""

    model_config = SettingsConfigDict(
        env_prefix="SPOTIFY_", env_file=_ENV_FILE, extra="ignore"
    )

    client_id: str = Field(default="", description="OAuth client id")
    client_secret: str = Field(default="", description="OAuth client secret")
    redirect_uri: str = Field(
        default="http://localhost:3000/callback",
        description="Redirect URI registered with the provider",
    )
    accounts_url: str = Field(default="https://accounts.spotify.com")
    api_base_url: str = Field(default="https://api.spotify.com/v1")
    timeout: float = Field(default=30.0, gt=0)
    # 429 handling: total attempts per request and the margin added to Retry-After
    max_attempts: int = Field(default=5, ge=1)
    retry_margin_seconds: float = Field(default=0.5, ge=0)
    scopes: list[str] = Field(
        default_factory=lambda: [
            "user-read-recently-played",
            "user-read-currently-playing",
            "user-read-private",
        ]
    )


class SyncSettings(BaseSettings):
    """History sync engine settings."""

    model_config = SettingsConfigDict(
        env_prefix="SYNC_", env_file=_ENV_FILE, extra="ignore"
    )

    interval_seconds: int = Field(default=600, ge=1, description="Scheduler interval")
    debounce_seconds: int = Field(default=30, ge=0)
    recently_played_limit: int = Field(default=20, ge=1, le=50)
    token_refresh_skew_seconds: int = Field(default=120, ge=0)
    max_concurrent_users: int = Field(default=4, ge=1)
    backfill_concurrency: int = Field(default=1, ge=1)
    # 7 = real week. Set to 1 to keep the old "week means yesterday" behaviour.
    week_lookback_days: int = Field(default=7, ge=1)


class ObservabilitySettings(BaseSettings):
    """Logging settings."""

    model_config = SettingsConfigDict(
        env_prefix="OBSERVABILITY_", env_file=_ENV_FILE, extra="ignore"
    )

    log_json_format: bool = Field(default=False)
    shutdown_timeout: float = Field(default=10.0, gt=0)


class Settings(BaseSettings):
    """Root application settings."""

    model_config = SettingsConfigDict(env_file=_ENV_FILE, extra="ignore")

    app_name: str = Field(default="soundtrack")
    log_level: str = Field(default="INFO")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    spotify: SpotifySettings = Field(default_factory=SpotifySettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {value}")
        return level

    def _get_sqlite_db_path(self) -> Path | None:
        """Return the SQLite database file path, or None for other backends/in-memory."""
        url = self.database.url
        if not url.startswith("sqlite"):
            return None
        _, _, path = url.partition(":///")
        if not path or path.startswith(":memory:"):
            return None
        return Path(path.split("?", 1)[0])


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
