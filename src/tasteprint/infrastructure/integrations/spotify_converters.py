"""Map raw Spotify JSON onto domain entities.

Hey future me - this is the boundary! Spotify JSON is "any-shaped": fields go missing,
tracks in Liked Songs can be null (removed from the catalog), local files have no id.
Every converter here either returns a typed entity or raises ValidationError. The
*_items helpers drop (and log) bad rows so one broken item never kills a whole page.
"""

import logging
import math
from collections.abc import Callable
from typing import Any, TypeVar

from tasteprint.domain.entities import (
    Artist,
    ArtistRef,
    AudioFeatureVector,
    Playlist,
    Track,
    UserProfile,
)
from tasteprint.domain.exceptions import ValidationError

logger = logging.getLogger(__name__)

# (min, max) per bounded feature; see AudioFeatureVector for the meaning
FEATURE_RANGES: dict[str, tuple[float, float]] = {
    "acousticness": (0.0, 1.0),
    "danceability": (0.0, 1.0),
    "energy": (0.0, 1.0),
    "instrumentalness": (0.0, 1.0),
    "liveness": (0.0, 1.0),
    "speechiness": (0.0, 1.0),
    "valence": (0.0, 1.0),
    "loudness": (-60.0, 5.0),
    "tempo": (0.0, math.inf),
    "key": (-1, 11),
    "mode": (0, 1),
    "time_signature": (0, 7),
}


def _require_dict(data: Any, what: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise ValidationError(f"Expected {what} object, got {type(data).__name__}")
    return data


def _require_id(data: dict[str, Any], what: str) -> str:
    value = data.get("id")
    if not value or not isinstance(value, str):
        raise ValidationError(f"{what} without id")
    return value


def _as_dict(value: Any) -> dict[str, Any]:
    """Nested objects Spotify left out (or sent as something else) read as empty."""
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _as_int(value: Any, field_name: str) -> int:
    """Coerce a count-like field; None means 0, anything non-numeric is invalid."""
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} is not a number: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{field_name} is not a number: {value!r}") from e


def best_image(images: Any) -> str | None:
    """Pick the largest image URL (Spotify lists several sizes)."""
    if not isinstance(images, list):
        return None
    candidates = [img for img in images if isinstance(img, dict) and _as_str(img.get("url"))]
    if not candidates:
        return None
    sized = [
        img
        for img in candidates
        if isinstance(img.get("height"), int) and isinstance(img.get("width"), int)
    ]
    if sized:
        largest = max(sized, key=lambda img: img["height"] * img["width"])
        return largest["url"]
    return candidates[0]["url"]


def convert_profile(data: Any) -> UserProfile:
    data = _require_dict(data, "profile")
    return UserProfile(
        id=_require_id(data, "Profile"),
        display_name=_as_str(data.get("display_name")) or "Unknown",
        country=_as_str(data.get("country")),
        followers=_as_int(_as_dict(data.get("followers")).get("total"), "followers.total"),
        email=_as_str(data.get("email")),
        image_url=best_image(data.get("images")),
    )


def convert_artist(data: Any) -> Artist:
    data = _require_dict(data, "artist")
    genres = data.get("genres")
    return Artist(
        id=_require_id(data, "Artist"),
        name=_as_str(data.get("name")) or "Unknown Artist",
        genres=[g for g in genres if isinstance(g, str)] if isinstance(genres, list) else [],
        popularity=_as_int(data.get("popularity"), "popularity"),
        image_url=best_image(data.get("images")),
        external_url=_as_str(_as_dict(data.get("external_urls")).get("spotify")),
    )


def convert_track(
    data: Any, played_at: str | None = None, added_at: str | None = None
) -> Track:
    data = _require_dict(data, "track")
    album = _as_dict(data.get("album"))
    raw_artists = data.get("artists")
    artists = [
        ArtistRef(id=_as_str(a.get("id")) or "", name=_as_str(a.get("name")) or "Unknown Artist")
        for a in (raw_artists if isinstance(raw_artists, list) else [])
        if isinstance(a, dict)
    ]
    return Track(
        id=_require_id(data, "Track"),
        name=_as_str(data.get("name")) or "Unknown",
        artists=artists,
        album=_as_str(album.get("name")) or "Unknown",
        duration_ms=_as_int(data.get("duration_ms"), "duration_ms"),
        popularity=_as_int(data.get("popularity"), "popularity"),
        external_url=_as_str(_as_dict(data.get("external_urls")).get("spotify")),
        preview_url=_as_str(data.get("preview_url")),
        album_image_url=best_image(album.get("images")),
        played_at=_as_str(played_at),
        added_at=_as_str(added_at),
    )


def convert_played_item(data: Any) -> Track:
    """Recently-played items wrap the track: {"track": {...}, "played_at": "..."}."""
    data = _require_dict(data, "play history item")
    return convert_track(data.get("track"), played_at=data.get("played_at"))


def convert_saved_item(data: Any) -> Track:
    """Saved-track items wrap the track: {"track": {...}, "added_at": "..."}."""
    data = _require_dict(data, "saved track item")
    return convert_track(data.get("track"), added_at=data.get("added_at"))


def convert_playlist(data: Any) -> Playlist:
    data = _require_dict(data, "playlist")
    return Playlist(
        id=_require_id(data, "Playlist"),
        name=_as_str(data.get("name")) or "Untitled",
        description=_as_str(data.get("description")) or "",
        public=data.get("public") is True,
        track_count=_as_int(_as_dict(data.get("tracks")).get("total"), "tracks.total"),
        owner_id=_as_str(_as_dict(data.get("owner")).get("id")),
        external_url=_as_str(_as_dict(data.get("external_urls")).get("spotify")),
    )


def convert_audio_features(data: Any) -> AudioFeatureVector:
    """Validate ranges and build a vector.

    Raises:
        ValidationError: Missing field or value outside its documented range
    """
    data = _require_dict(data, "audio features")
    track_id = _require_id(data, "Audio features")
    values: dict[str, float] = {}
    for name, (low, high) in FEATURE_RANGES.items():
        raw = data.get(name)
        if isinstance(raw, bool) or not isinstance(raw, int | float):
            raise ValidationError(f"Audio features for {track_id}: {name} missing")
        if not low <= raw <= high:
            raise ValidationError(
                f"Audio features for {track_id}: {name}={raw} outside [{low}, {high}]"
            )
        values[name] = raw
    return AudioFeatureVector(
        track_id=track_id,
        acousticness=float(values["acousticness"]),
        danceability=float(values["danceability"]),
        energy=float(values["energy"]),
        instrumentalness=float(values["instrumentalness"]),
        liveness=float(values["liveness"]),
        loudness=float(values["loudness"]),
        speechiness=float(values["speechiness"]),
        tempo=float(values["tempo"]),
        valence=float(values["valence"]),
        key=int(values["key"]),
        mode=int(values["mode"]),
        time_signature=int(values["time_signature"]),
    )


T = TypeVar("T")


def convert_items(
    payload: Any, converter: Callable[[Any], T], what: str, key: str = "items"
) -> list[T]:
    """Convert a page of items, dropping the ones that fail validation.

    Order is preserved - for top items it's the relevance rank.
    """
    if not isinstance(payload, dict):
        raise ValidationError(f"Expected {what} page object, got {type(payload).__name__}")
    items = payload.get(key)
    if items is None:
        return []
    if not isinstance(items, list):
        raise ValidationError(f"Expected {what} item list, got {type(items).__name__}")
    converted: list[T] = []
    for item in items:
        if item is None:
            continue
        try:
            converted.append(converter(item))
        except ValidationError as e:
            logger.debug(f"Dropping {what} item: {e.message}")
    return converted
