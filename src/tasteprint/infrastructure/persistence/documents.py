"""Entity <-> JSON document mapping for the profile store.

The store only knows JSON-shaped dicts. Everything here must survive a
json.dumps/json.loads round trip: tuples become lists (and come back as
tuples), datetimes become ISO strings, the audio-feature map becomes a JSON
object keyed by track id.
"""

from dataclasses import asdict
from datetime import datetime
from typing import Any

from tasteprint.domain.entities import (
    AnalysisArtifact,
    Artist,
    ArtistRef,
    AudioFeatureVector,
    AudioProfile,
    Credential,
    Playlist,
    TimeRange,
    TimeWindowed,
    Track,
    UserDataBundle,
    UserProfile,
)
from tasteprint.infrastructure.persistence.models import ensure_utc_aware


def track_to_document(track: Track) -> dict[str, Any]:
    return asdict(track)


def track_from_document(doc: dict[str, Any]) -> Track:
    data = dict(doc)
    data["artists"] = [ArtistRef(**artist) for artist in data.get("artists") or []]
    return Track(**data)


def _windows_to_document(windows: TimeWindowed[Any], to_doc: Any) -> dict[str, Any]:
    return {tr.value: [to_doc(item) for item in items] for tr, items in windows.windows()}


def _windows_from_document(doc: dict[str, Any] | None, from_doc: Any) -> TimeWindowed[Any]:
    windows: TimeWindowed[Any] = TimeWindowed()
    for time_range in TimeRange:
        windows.set(time_range, [from_doc(item) for item in (doc or {}).get(time_range.value, [])])
    return windows


def bundle_to_document(bundle: UserDataBundle) -> dict[str, Any]:
    """Serialize a bundle. The audio-feature map keeps insertion order."""
    return {
        "profile": asdict(bundle.profile) if bundle.profile else None,
        "top_tracks": _windows_to_document(bundle.top_tracks, track_to_document),
        "top_artists": _windows_to_document(bundle.top_artists, asdict),
        "recently_played": [track_to_document(t) for t in bundle.recently_played],
        "saved_tracks": [track_to_document(t) for t in bundle.saved_tracks],
        "playlists": [asdict(p) for p in bundle.playlists],
        "audio_features": {
            track_id: asdict(vector) for track_id, vector in bundle.audio_features.items()
        },
        "skipped": dict(bundle.skipped),
    }


def bundle_from_document(doc: dict[str, Any]) -> UserDataBundle:
    profile = doc.get("profile")
    return UserDataBundle(
        profile=UserProfile(**profile) if profile else None,
        top_tracks=_windows_from_document(doc.get("top_tracks"), track_from_document),
        top_artists=_windows_from_document(doc.get("top_artists"), lambda a: Artist(**a)),
        recently_played=[track_from_document(t) for t in doc.get("recently_played") or []],
        saved_tracks=[track_from_document(t) for t in doc.get("saved_tracks") or []],
        playlists=[Playlist(**p) for p in doc.get("playlists") or []],
        audio_features={
            track_id: AudioFeatureVector(**vector)
            for track_id, vector in (doc.get("audio_features") or {}).items()
        },
        skipped=dict(doc.get("skipped") or {}),
    )


def artifact_to_document(artifact: AnalysisArtifact) -> dict[str, Any]:
    return {
        "top_genres": [[genre, count] for genre, count in artifact.top_genres],
        "audio_profile": asdict(artifact.audio_profile) if artifact.audio_profile else None,
        "artist_diversity": artifact.artist_diversity,
        "tracks_with_features": artifact.tracks_with_features,
    }


def artifact_from_document(doc: dict[str, Any]) -> AnalysisArtifact:
    profile = doc.get("audio_profile")
    return AnalysisArtifact(
        top_genres=[(genre, int(count)) for genre, count in doc.get("top_genres") or []],
        audio_profile=AudioProfile(**profile) if profile else None,
        artist_diversity=float(doc.get("artist_diversity") or 0.0),
        tracks_with_features=int(doc.get("tracks_with_features") or 0),
    )


def credential_to_document(credential: Credential) -> dict[str, Any]:
    return {
        "access_token": credential.access_token,
        "refresh_token": credential.refresh_token,
        "expires_at": ensure_utc_aware(credential.expires_at).isoformat(),
        "scope": credential.scope,
    }


def credential_from_document(doc: dict[str, Any]) -> Credential:
    return Credential(
        access_token=doc["access_token"],
        refresh_token=doc["refresh_token"],
        expires_at=ensure_utc_aware(datetime.fromisoformat(doc["expires_at"])),
        scope=doc.get("scope"),
    )
