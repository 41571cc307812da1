"""Startup/shutdown wiring for the tasteprint core.

Hey future me - this is the ONE place that builds the object graph. No module
globals anywhere: the database handle, rate limiter and HTTP clients are created
here, handed down explicitly and closed again on exit. A web app calls
tasteprint_lifespan() from its own lifespan hook; a script just does

    async with tasteprint_lifespan() as core:
        result = await core.sync_service.sync(user_id)
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from tasteprint.application.services.batch_fetcher import SpotifyBatchFetcher
from tasteprint.application.services.profile_sync_service import ProfileSyncService
from tasteprint.application.services.token_manager import DatabaseTokenManager
from tasteprint.config import Settings, get_settings
from tasteprint.domain.exceptions import ConfigurationError
from tasteprint.infrastructure.integrations.spotify_auth_client import SpotifyAuthClient
from tasteprint.infrastructure.integrations.spotify_client import SpotifyClient
from tasteprint.infrastructure.observability import configure_logging
from tasteprint.infrastructure.persistence import Database, ProfileStore
from tasteprint.infrastructure.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


@dataclass
class TasteprintCore:
    """Everything a consumer needs, fully wired."""

    settings: Settings
    database: Database
    store: ProfileStore
    token_manager: DatabaseTokenManager
    spotify_client: SpotifyClient
    sync_service: ProfileSyncService


# SQLite won't create missing parent directories itself - and the error it gives
# ("unable to open database file") doesn't say which directory is missing.
def _ensure_sqlite_directory(settings: Settings) -> None:
    db_path = settings._get_sqlite_db_path()
    if db_path is None or str(db_path.parent) == ".":
        return
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ConfigurationError(
            f"Unable to create SQLite database directory '{db_path.parent}': {exc}. "
            "Update DATABASE_URL or adjust directory permissions."
        ) from exc
    logger.debug(f"Ensured SQLite parent directory exists: {db_path.parent}")


@asynccontextmanager
async def tasteprint_lifespan(
    settings: Settings | None = None, setup_logging: bool = True
) -> AsyncGenerator[TasteprintCore, None]:
    """Open the store, wire clients and services, and close everything on exit.

    Args:
        settings: Explicit settings (defaults to get_settings())
        setup_logging: Install the stdout log handler (off when the host app owns logging)
    """
    settings = settings or get_settings()
    if setup_logging:
        configure_logging(
            log_level=settings.observability.log_level,
            json_format=settings.observability.log_json_format,
            app_name=settings.app_name,
        )

    _ensure_sqlite_directory(settings)
    database = Database(settings.database)
    auth_client = SpotifyAuthClient(settings.spotify)
    spotify_client: SpotifyClient | None = None
    try:
        await database.create_tables()
        store = ProfileStore(database)
        token_manager = DatabaseTokenManager(
            store,
            auth_client,
            margin_seconds=settings.sync.token_refresh_margin_seconds,
        )
        rate_limiter = RateLimiter.for_spotify(
            burst=settings.spotify.rate_limit_burst,
            per_second=settings.spotify.rate_limit_per_second,
        )
        spotify_client = SpotifyClient(settings.spotify, token_manager, rate_limiter)
        fetcher = SpotifyBatchFetcher(spotify_client, settings.sync)
        sync_service = ProfileSyncService(fetcher, store, settings.sync)
        logger.info(f"{settings.app_name} core started")

        yield TasteprintCore(
            settings=settings,
            database=database,
            store=store,
            token_manager=token_manager,
            spotify_client=spotify_client,
            sync_service=sync_service,
        )
    finally:
        if spotify_client is not None:
            await spotify_client.close()
        await auth_client.close()
        await database.close()
        logger.info(f"{settings.app_name} core stopped")
