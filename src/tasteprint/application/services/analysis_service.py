"""Analysis aggregator: derive a music profile from one UserDataBundle.

Hey future me - everything here is PURE. No I/O, no clock, no randomness; the
same bundle always gives the same artifact, and nothing in here raises for an
empty or partial bundle. That's what lets the store recompute or verify the
analysis record from the raw record alone.
"""

import logging
from collections import Counter
from typing import Any

from tasteprint.domain.entities import (
    AUDIO_PROFILE_FIELDS,
    AnalysisArtifact,
    AudioProfile,
    RecommendationSeeds,
    TimeRange,
    Track,
    UserDataBundle,
)

logger = logging.getLogger(__name__)

TOP_GENRES_LIMIT = 10

SECTION_TOP_SHORT = "Top Tracks - Short Term"
SECTION_TOP_MEDIUM = "Top Tracks - Medium Term"
SECTION_RECENT = "Recently Played"
SECTION_SAVED = "Saved Tracks"


def count_genres(bundle: UserDataBundle) -> list[tuple[str, int]]:
    """Count genres over every artist slot (short, medium, long).

    An artist in two windows counts twice - it's a weight, not a set.
    Ties keep first-seen order.
    """
    counts: Counter[str] = Counter()
    for artist in bundle.top_artists.all_items():
        for genre in artist.genres:
            counts[genre] += 1
    # sorted() is stable and Counter iterates in insertion order
    ranked = sorted(counts.items(), key=lambda item: -item[1])
    return ranked[:TOP_GENRES_LIMIT]


def average_audio_profile(bundle: UserDataBundle) -> tuple[AudioProfile | None, int]:
    """Average the six profile fields over unique tracks that have a vector.

    Returns:
        (profile, number of tracks averaged). profile is None when no track had
        a vector.
    """
    vectors = [
        bundle.audio_features[track_id]
        for track_id in bundle.unique_track_ids()
        if track_id in bundle.audio_features
    ]
    if not vectors:
        return None, 0

    averages = {
        name: sum(getattr(vector, name) for vector in vectors) / len(vectors)
        for name in AUDIO_PROFILE_FIELDS
    }
    return AudioProfile(**averages), len(vectors)


def artist_diversity(bundle: UserDataBundle) -> float:
    """Unique artist ids / artist slots across all windows, in [0, 1]."""
    slots = bundle.top_artists.all_items()
    if not slots:
        return 0.0
    unique = len({artist.id for artist in slots})
    return min(1.0, max(0.0, unique / len(slots)))


def aggregate(bundle: UserDataBundle) -> AnalysisArtifact:
    """Build the analysis artifact for a bundle."""
    audio_profile, tracks_with_features = average_audio_profile(bundle)
    artifact = AnalysisArtifact(
        top_genres=count_genres(bundle),
        audio_profile=audio_profile,
        artist_diversity=artist_diversity(bundle),
        tracks_with_features=tracks_with_features,
    )
    logger.debug(
        f"Aggregated {len(artifact.top_genres)} genres, "
        f"{tracks_with_features} tracks with features, "
        f"diversity {artifact.artist_diversity:.2f}"
    )
    return artifact


# Seeds for /recommendations: Spotify allows 5 in total, we use 2 + 2 + 1
def recommendation_seeds(
    bundle: UserDataBundle, artifact: AnalysisArtifact | None = None
) -> RecommendationSeeds:
    """Pick recommendation seeds from the user's recent favourites.

    Args:
        bundle: Raw listening data
        artifact: Precomputed analysis (recomputed from the bundle if omitted)
    """
    if artifact is None:
        artifact = aggregate(bundle)
    return RecommendationSeeds(
        track_ids=[track.id for track in bundle.top_tracks.get(TimeRange.SHORT)[:2]],
        artist_ids=[artist.id for artist in bundle.top_artists.get(TimeRange.MEDIUM)[:2]],
        genres=[artifact.top_genres[0][0]] if artifact.top_genres else [],
    )


def _duration_minutes(duration_ms: int) -> float:
    return round(duration_ms / 1000 / 60, 2)


def _track_row(track: Track, **extra: Any) -> dict[str, Any]:
    row: dict[str, Any] = {
        "name": track.name,
        "artist": track.artist_names,
        "album": track.album,
        "duration": _duration_minutes(track.duration_ms),
        "popularity": track.popularity,
        "external_url": track.external_url,
    }
    row.update(extra)
    return row


def build_track_snapshot(bundle: UserDataBundle) -> dict[str, list[dict[str, Any]]]:
    """Display-ready track lists, stored as the "tracks" record."""
    return {
        SECTION_TOP_SHORT: [_track_row(t) for t in bundle.top_tracks.get(TimeRange.SHORT)],
        SECTION_TOP_MEDIUM: [_track_row(t) for t in bundle.top_tracks.get(TimeRange.MEDIUM)],
        SECTION_RECENT: [
            _track_row(t, played_at=t.played_at) for t in bundle.recently_played
        ],
        SECTION_SAVED: [_track_row(t, added_at=t.added_at) for t in bundle.saved_tracks],
    }
