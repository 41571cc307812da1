"""Application settings loaded from environment variables and .env files."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SpotifySettings(BaseSettings):
    """Spotify Web API configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SPOTIFY_", env_file=".env", extra="ignore"
    )

    client_id: str = Field(default="", description="Spotify app client ID")
    client_secret: str = Field(default="", description="Spotify app client secret")
    api_base_url: str = Field(default="https://api.spotify.com/v1")
    token_url: str = Field(
        default="https://accounts.spotify.com/api/token"  # nosec B105 - public endpoint URL
    )
    # Hey future me - 30s because Spotify is slow on big libraries. Timeouts are the ONLY
    # cancellation mechanism a sync has, so don't drop this to something tiny.
    timeout_seconds: float = Field(default=30.0, gt=0)
    rate_limit_burst: int = Field(default=10, ge=1)
    rate_limit_per_second: float = Field(default=2.0, gt=0)


class DatabaseSettings(BaseSettings):
    """Document store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_", env_file=".env", extra="ignore"
    )

    url: str = Field(default="sqlite+aiosqlite:///./tasteprint.db")
    echo: bool = False


class SyncSettings(BaseSettings):
    """Profile sync tuning.

    The audio-features endpoint accepts at most 100 ids per call, so the batch
    size is capped there. max_concurrent_batches bounds the in-flight feature
    calls regardless of how many tracks a user has.
    """

    model_config = SettingsConfigDict(
        env_prefix="SYNC_", env_file=".env", extra="ignore"
    )

    freshness_seconds: int = Field(default=3600, ge=0)
    top_items_limit: int = Field(default=50, ge=1, le=50)
    recently_played_limit: int = Field(default=50, ge=1, le=50)
    saved_tracks_limit: int = Field(default=50, ge=1, le=50)
    playlists_limit: int = Field(default=50, ge=1, le=50)
    audio_features_batch_size: int = Field(default=100, ge=1, le=100)
    max_concurrent_batches: int = Field(default=4, ge=1)
    token_refresh_margin_seconds: int = Field(default=300, ge=0)


class ObservabilitySettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    log_level: str = Field(default="INFO")
    log_json_format: bool = Field(default=False)

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level


class Settings(BaseSettings):
    """Top-level settings container."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "tasteprint"
    spotify: SpotifySettings = Field(default_factory=SpotifySettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    def _get_sqlite_db_path(self) -> Path | None:
        """Return the SQLite file path, or None for non-file databases."""
        url = self.database.url
        if not url.startswith("sqlite") or ":memory:" in url:
            return None
        _, _, path = url.partition(":///")
        return Path(path) if path else None


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
