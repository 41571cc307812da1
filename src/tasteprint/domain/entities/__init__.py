"""Domain entities for listening data and derived profiles.

Hey future me - these are the TYPED shapes everything past the batch fetcher works with.
Raw Spotify JSON gets mapped onto them in spotify_converters and never travels further.
They're plain dataclasses on purpose: the aggregator is a pure function over them and the
persistence layer serializes them to JSON documents (see persistence/documents.py).
"""

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class TimeRange(str, Enum):
    """The three fixed listening-history windows of the top-items endpoints."""

    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"

    @property
    def api_value(self) -> str:
        """Label the Spotify API expects (short_term, medium_term, long_term)."""
        return f"{self.value}_term"


@dataclass
class Credential:
    """OAuth credential owned by the credential provider."""

    access_token: str
    refresh_token: str
    expires_at: datetime
    scope: str | None = None

    def is_expired(self, margin_seconds: int = 0, now: datetime | None = None) -> bool:
        """Check if the token is expired, or expires within margin_seconds."""
        current = now or datetime.now(UTC)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return current >= expires_at - timedelta(seconds=margin_seconds)

    @classmethod
    def from_token_response(
        cls,
        data: dict[str, Any],
        previous_refresh_token: str | None = None,
        now: datetime | None = None,
    ) -> "Credential":
        """Build a credential from a token endpoint response.

        Spotify doesn't always rotate the refresh token - keep the old one then.
        """
        from tasteprint.domain.exceptions import ValidationError

        if not isinstance(data, dict):
            raise ValidationError(f"Token response is {type(data).__name__}, expected an object")
        access_token = data.get("access_token")
        refresh_token = data.get("refresh_token") or previous_refresh_token
        if not (isinstance(access_token, str) and access_token):
            raise ValidationError("Token response is missing access_token or refresh_token")
        if not (isinstance(refresh_token, str) and refresh_token):
            raise ValidationError("Token response is missing access_token or refresh_token")
        expires_in = data.get("expires_in", 3600)
        if isinstance(expires_in, bool) or not isinstance(expires_in, int | float | str):
            raise ValidationError(f"Token response has invalid expires_in: {expires_in!r}")
        try:
            lifetime = int(expires_in)
        except (ValueError, OverflowError) as e:
            raise ValidationError(f"Token response has invalid expires_in: {expires_in!r}") from e
        scope = data.get("scope")
        issued_at = now or datetime.now(UTC)
        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=issued_at + timedelta(seconds=lifetime),
            scope=scope if isinstance(scope, str) else None,
        )


@dataclass(frozen=True)
class UserProfile:
    """Service-reported identity. Replaced wholesale on each sync."""

    id: str
    display_name: str
    country: str | None = None
    followers: int = 0
    email: str | None = None
    image_url: str | None = None


@dataclass(frozen=True)
class ArtistRef:
    """Artist as embedded in a track (id + name only)."""

    id: str
    name: str


@dataclass
class Artist:
    """Artist from the top-artists endpoint."""

    id: str
    name: str
    genres: list[str] = field(default_factory=list)
    popularity: int = 0
    image_url: str | None = None
    external_url: str | None = None


@dataclass
class Track:
    """A track. id is the natural key - audio features key off it."""

    id: str
    name: str
    artists: list[ArtistRef] = field(default_factory=list)
    album: str = "Unknown"
    duration_ms: int = 0
    popularity: int = 0
    external_url: str | None = None
    preview_url: str | None = None
    album_image_url: str | None = None
    played_at: str | None = None
    added_at: str | None = None

    @property
    def artist_names(self) -> str:
        return ", ".join(artist.name for artist in self.artists) or "Unknown"


@dataclass
class AudioFeatureVector:
    """Provider-computed acoustic descriptors of a track.

    Ranges:
        acousticness, danceability, energy, instrumentalness,
        liveness, speechiness, valence: 0.0 - 1.0
        loudness: -60.0 - 0.0 dB (a few mastered tracks go slightly above 0)
        tempo: >= 0 BPM
        key: -1 (no key detected) - 11 (pitch class)
        mode: 0 (minor) or 1 (major)
        time_signature: 0 - 7 (beats per bar, 0 when undetected)
    """

    track_id: str
    acousticness: float
    danceability: float
    energy: float
    instrumentalness: float
    liveness: float
    loudness: float
    speechiness: float
    tempo: float
    valence: float
    key: int
    mode: int
    time_signature: int


@dataclass
class Playlist:
    id: str
    name: str
    description: str = ""
    public: bool = False
    track_count: int = 0
    owner_id: str | None = None
    external_url: str | None = None


@dataclass
class TimeWindowed(Generic[T]):
    """Ordered items per time-range bucket. Order is provider relevance rank."""

    short: list[T] = field(default_factory=list)
    medium: list[T] = field(default_factory=list)
    long: list[T] = field(default_factory=list)

    def get(self, time_range: TimeRange) -> list[T]:
        return getattr(self, time_range.value)

    def set(self, time_range: TimeRange, items: list[T]) -> None:
        setattr(self, time_range.value, items)

    def windows(self) -> Iterator[tuple[TimeRange, list[T]]]:
        """Iterate buckets in fixed order: short, medium, long."""
        for time_range in TimeRange:
            yield time_range, self.get(time_range)

    def all_items(self) -> list[T]:
        return [item for _, items in self.windows() for item in items]

    def total(self) -> int:
        return len(self.short) + len(self.medium) + len(self.long)


@dataclass
class UserDataBundle:
    """Best-effort result of one full fetch.

    skipped maps a resource name (e.g. "savedTracks", "topArtists.long") to
    the reason it's empty. An empty dict means everything came back.
    """

    profile: UserProfile | None = None
    top_tracks: TimeWindowed[Track] = field(default_factory=TimeWindowed)
    top_artists: TimeWindowed[Artist] = field(default_factory=TimeWindowed)
    recently_played: list[Track] = field(default_factory=list)
    saved_tracks: list[Track] = field(default_factory=list)
    playlists: list[Playlist] = field(default_factory=list)
    audio_features: dict[str, AudioFeatureVector] = field(default_factory=dict)
    skipped: dict[str, str] = field(default_factory=dict)

    def unique_track_ids(self) -> list[str]:
        """All track ids in first-seen order: top tracks, recently played, saved."""
        seen: dict[str, None] = {}
        for track in self.top_tracks.all_items():
            seen.setdefault(track.id, None)
        for track in self.recently_played:
            seen.setdefault(track.id, None)
        for track in self.saved_tracks:
            seen.setdefault(track.id, None)
        return list(seen)


# The six fields that make up an averaged audio profile
AUDIO_PROFILE_FIELDS: tuple[str, ...] = (
    "energy",
    "danceability",
    "valence",
    "acousticness",
    "instrumentalness",
    "speechiness",
)


@dataclass(frozen=True)
class AudioProfile:
    energy: float
    danceability: float
    valence: float
    acousticness: float
    instrumentalness: float
    speechiness: float


@dataclass(frozen=True)
class AnalysisArtifact:
    """Compact analysis derived from one UserDataBundle.

    audio_profile is None when no track had a vector - a row of zeros would
    read like a real (very quiet) profile.
    """

    top_genres: list[tuple[str, int]]
    audio_profile: AudioProfile | None
    artist_diversity: float
    tracks_with_features: int = 0


@dataclass(frozen=True)
class RecommendationSeeds:
    track_ids: list[str] = field(default_factory=list)
    artist_ids: list[str] = field(default_factory=list)
    genres: list[str] = field(default_factory=list)


class RecordKind(str, Enum):
    """Independent record kinds in the profile store."""

    USER_DATA = "user_data"
    ANALYSIS = "analysis"
    TRACKS = "tracks"
    CREDENTIALS = "credentials"


@dataclass(frozen=True)
class CacheEntry:
    """A stored document plus its owner and write time."""

    user_id: str
    kind: RecordKind
    payload: dict[str, Any]
    last_updated: datetime


@dataclass(frozen=True)
class SummaryStats:
    top_tracks: int = 0
    top_artists: int = 0
    recently_played: int = 0
    saved_tracks: int = 0
    playlists: int = 0
    audio_features: int = 0


@dataclass(frozen=True)
class DataSummary:
    """Read-only view for the UI, composed from stored records only."""

    user_id: str
    display_name: str
    country: str
    last_updated: datetime
    stats: SummaryStats
    top_genres: list[tuple[str, int]] = field(default_factory=list)
    top_artists: list[str] = field(default_factory=list)
    recent_tracks: list[dict[str, str]] = field(default_factory=list)
    audio_profile: AudioProfile | None = None
    artist_diversity: float | None = None
    skipped_resources: list[str] = field(default_factory=list)


class SyncState(str, Enum):
    IDLE = "idle"
    CHECKING = "checking"
    CACHE_HIT = "cache_hit"
    FETCHING = "fetching"
    AGGREGATING = "aggregating"
    PERSISTED = "persisted"
    FAILED = "failed"


@dataclass
class SyncResult:
    """Outcome of ProfileSyncService.sync().

    skipped lists sub-resources that failed so callers can show a partial
    success message instead of a hard error.
    """

    user_id: str
    state: SyncState
    path: list[SyncState] = field(default_factory=list)
    from_cache: bool = False
    skipped: dict[str, str] = field(default_factory=dict)
    summary: DataSummary | None = None

    @property
    def is_partial(self) -> bool:
        return bool(self.skipped)


__all__ = [
    "AUDIO_PROFILE_FIELDS",
    "AnalysisArtifact",
    "Artist",
    "ArtistRef",
    "AudioFeatureVector",
    "AudioProfile",
    "CacheEntry",
    "Credential",
    "DataSummary",
    "Playlist",
    "RecommendationSeeds",
    "RecordKind",
    "SummaryStats",
    "SyncResult",
    "SyncState",
    "TimeRange",
    "TimeWindowed",
    "Track",
    "UserDataBundle",
    "UserProfile",
]
