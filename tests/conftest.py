"""Shared fixtures: Spotify JSON builders, a fake API client and a temp-file store.

Hey future me - everything here is in-process. The fake client answers from dicts
and records every call, so tests can assert on exact call counts (e.g. "zero API
calls on a cache hit"). HTTP-level behavior is tested separately with pytest-httpx.
"""

from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from tasteprint.config.settings import DatabaseSettings, SyncSettings
from tasteprint.domain.entities import TimeRange
from tasteprint.domain.exceptions import AuthenticationError
from tasteprint.domain.ports import ICredentialProvider, ISpotifyClient
from tasteprint.infrastructure.persistence.database import Database
from tasteprint.infrastructure.persistence.repositories import ProfileStore

FIXED_NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=UTC)


def _track_json(
    track_id: str,
    name: str | None = None,
    artists: list[tuple[str, str]] | None = None,
    album: str = "Album",
    duration_ms: int = 180000,
    popularity: int = 50,
) -> dict[str, Any]:
    artists = artists if artists is not None else [(f"artist-{track_id}", "Artist")]
    return {
        "id": track_id,
        "name": name or f"Song {track_id}",
        "artists": [{"id": aid, "name": aname} for aid, aname in artists],
        "album": {"name": album, "images": []},
        "duration_ms": duration_ms,
        "popularity": popularity,
        "external_urls": {"spotify": f"https://open.spotify.com/track/{track_id}"},
        "preview_url": None,
    }


def _artist_json(
    artist_id: str, name: str | None = None, genres: list[str] | None = None
) -> dict[str, Any]:
    return {
        "id": artist_id,
        "name": name or f"Artist {artist_id}",
        "genres": genres or [],
        "popularity": 60,
        "images": [],
        "external_urls": {"spotify": f"https://open.spotify.com/artist/{artist_id}"},
    }


def _features_json(track_id: str, **overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": track_id,
        "acousticness": 0.1,
        "danceability": 0.5,
        "energy": 0.8,
        "instrumentalness": 0.0,
        "liveness": 0.2,
        "loudness": -6.0,
        "speechiness": 0.05,
        "tempo": 120.0,
        "valence": 0.6,
        "key": 5,
        "mode": 1,
        "time_signature": 4,
    }
    data.update(overrides)
    return data


@pytest.fixture
def track_json() -> Callable[..., dict[str, Any]]:
    """Builder for a Spotify track object."""
    return _track_json


@pytest.fixture
def artist_json() -> Callable[..., dict[str, Any]]:
    """Builder for a Spotify artist object."""
    return _artist_json


@pytest.fixture
def features_json() -> Callable[..., dict[str, Any]]:
    """Builder for a Spotify audio-features object."""
    return _features_json


class FakeSpotifyClient(ISpotifyClient):
    """In-memory ISpotifyClient.

    errors maps a resource name ("profile", "topTracks.short", "savedTracks", ...)
    to the exception that call raises. failing_feature_ids makes every
    audio-features batch containing one of those ids raise feature_error.
    """

    def __init__(self) -> None:
        self.profile: dict[str, Any] = {
            "id": "user-1",
            "display_name": "Test User",
            "country": "DE",
            "followers": {"total": 3},
            "images": [],
        }
        self.top_tracks: dict[TimeRange, list[dict[str, Any]]] = {tr: [] for tr in TimeRange}
        self.top_artists: dict[TimeRange, list[dict[str, Any]]] = {tr: [] for tr in TimeRange}
        self.recently_played: list[dict[str, Any]] = []
        self.saved_tracks: list[dict[str, Any]] = []
        self.playlists: list[dict[str, Any]] = []
        self.features: dict[str, dict[str, Any]] = {}
        self.errors: dict[str, Exception] = {}
        self.failing_feature_ids: set[str] = set()
        self.feature_error: Exception | None = None
        self.calls: list[tuple[str, Any]] = []

    def _check(self, resource: str) -> None:
        if resource in self.errors:
            raise self.errors[resource]

    async def get_current_user(self, user_id: str) -> dict[str, Any]:
        self.calls.append(("profile", None))
        self._check("profile")
        return self.profile

    async def get_top_tracks(
        self, user_id: str, time_range: TimeRange, limit: int = 50
    ) -> dict[str, Any]:
        self.calls.append(("top_tracks", time_range))
        self._check(f"topTracks.{time_range.value}")
        return {"items": self.top_tracks[time_range][:limit]}

    async def get_top_artists(
        self, user_id: str, time_range: TimeRange, limit: int = 50
    ) -> dict[str, Any]:
        self.calls.append(("top_artists", time_range))
        self._check(f"topArtists.{time_range.value}")
        return {"items": self.top_artists[time_range][:limit]}

    async def get_recently_played(self, user_id: str, limit: int = 50) -> dict[str, Any]:
        self.calls.append(("recently_played", limit))
        self._check("recentlyPlayed")
        return {"items": self.recently_played[:limit]}

    async def get_saved_tracks(
        self, user_id: str, limit: int = 50, offset: int = 0
    ) -> dict[str, Any]:
        self.calls.append(("saved_tracks", limit))
        self._check("savedTracks")
        return {"items": self.saved_tracks[offset : offset + limit]}

    async def get_user_playlists(self, user_id: str, limit: int = 50) -> dict[str, Any]:
        self.calls.append(("playlists", limit))
        self._check("playlists")
        return {"items": self.playlists[:limit]}

    async def get_audio_features(
        self, user_id: str, track_ids: list[str]
    ) -> dict[str, Any]:
        self.calls.append(("audio_features", list(track_ids)))
        if self.failing_feature_ids & set(track_ids):
            raise self.feature_error or RuntimeError("feature_error not configured")
        return {"audio_features": [self.features.get(tid) for tid in track_ids]}

    def calls_to(self, name: str) -> list[Any]:
        return [arg for call, arg in self.calls if call == name]


@pytest.fixture
def fake_spotify() -> FakeSpotifyClient:
    """Fake Spotify client with an empty library and a valid profile."""
    return FakeSpotifyClient()


class FakeCredentialProvider(ICredentialProvider):
    """Hands out "token-N" strings; refresh bumps N.

    refresh_error, if set, is raised by refresh().
    """

    def __init__(self) -> None:
        self.version = 1
        self.get_token_calls = 0
        self.refresh_calls: list[str | None] = []
        self.refresh_error: Exception | None = None

    async def get_token(self, user_id: str) -> str:
        self.get_token_calls += 1
        return f"token-{self.version}"

    async def refresh(self, user_id: str, rejected_token: str | None = None) -> str:
        self.refresh_calls.append(rejected_token)
        if self.refresh_error is not None:
            raise self.refresh_error
        self.version += 1
        return f"token-{self.version}"


@pytest.fixture
def fake_credentials() -> FakeCredentialProvider:
    """Credential provider that never talks to Spotify."""
    return FakeCredentialProvider()


@pytest.fixture
def auth_error() -> AuthenticationError:
    return AuthenticationError("Please re-authenticate with Spotify.")


@pytest.fixture
def sync_settings() -> SyncSettings:
    """Sync settings with small batches so tests stay readable."""
    return SyncSettings(
        freshness_seconds=3600,
        audio_features_batch_size=100,
        max_concurrent_batches=2,
    )


class Clock:
    """Mutable clock for freshness tests."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
async def database(tmp_path: Path) -> AsyncGenerator[Database, None]:
    """Fresh SQLite file per test."""
    db = Database(DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path}/test.db"))
    await db.create_tables()
    yield db
    await db.close()


@pytest.fixture
def store(database: Database, clock: Clock) -> ProfileStore:
    return ProfileStore(database, clock=clock)
