"""Batch fetcher: pull a user's complete listening data in one best-effort pass.

Hey future me - this replaces the old "one endpoint after the other" collector.
Stage 1 fires all independent endpoints at once (profile, 3x top tracks, 3x top
artists, recently played, saved tracks, playlists). Stage 2 needs the track ids
from stage 1 and fetches audio features in batches of <=100, with a semaphore so
a huge library doesn't open 30 requests at once.

Failure policy:
- AuthenticationError anywhere -> re-raised. The user has to log in again, a
  "partial" result would just be a wall of skipped resources.
- ConfigurationError (no client id/secret for the refresh) -> re-raised too.
  Every resource would fail the same way and nothing the user does fixes it.
- Any other DomainException -> the resource stays empty and lands in
  bundle.skipped with the error message. A 403 on saved tracks (missing scope)
  or a 429 on one window must not cost the user the whole sync.
- Anything else (bugs) propagates.

The profile is special: without it there's no identity, so its failure is
reported via FetchOutcome.profile_error and the orchestrator fails the sync.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from tasteprint.config.settings import SyncSettings
from tasteprint.domain.entities import (
    AudioFeatureVector,
    TimeRange,
    UserDataBundle,
)
from tasteprint.domain.exceptions import (
    AuthenticationError,
    ConfigurationError,
    DomainException,
)
from tasteprint.domain.ports import ISpotifyClient
from tasteprint.infrastructure.integrations.spotify_client import AUDIO_FEATURES_MAX_IDS
from tasteprint.infrastructure.integrations.spotify_converters import (
    convert_artist,
    convert_audio_features,
    convert_items,
    convert_played_item,
    convert_playlist,
    convert_profile,
    convert_saved_item,
    convert_track,
)

logger = logging.getLogger(__name__)

# Errors that end the whole fetch instead of marking one resource skipped
FATAL_ERRORS = (AuthenticationError, ConfigurationError)

PROFILE = "profile"
RECENTLY_PLAYED = "recentlyPlayed"
SAVED_TRACKS = "savedTracks"
PLAYLISTS = "playlists"
AUDIO_FEATURES = "audioFeatures"


def top_tracks_resource(time_range: TimeRange) -> str:
    return f"topTracks.{time_range.value}"


def top_artists_resource(time_range: TimeRange) -> str:
    return f"topArtists.{time_range.value}"


@dataclass
class FetchOutcome:
    """What one fetch produced.

    profile_error is set when the profile couldn't be fetched; the bundle is
    then incomplete and must not be persisted.
    """

    bundle: UserDataBundle
    profile_error: DomainException | None = None

    @property
    def profile_ok(self) -> bool:
        return self.profile_error is None


def chunked(items: list[str], size: int) -> list[list[str]]:
    """Split into consecutive chunks of at most size items."""
    return [items[i : i + size] for i in range(0, len(items), size)]


class SpotifyBatchFetcher:
    """Fetches one user's listening data with partial-failure tolerance."""

    def __init__(self, client: ISpotifyClient, settings: SyncSettings) -> None:
        self._client = client
        self._settings = settings

    async def fetch(self, user_id: str) -> FetchOutcome:
        """Run both fetch stages for a user.

        Raises:
            AuthenticationError: Credential unusable even after a refresh
            ConfigurationError: Spotify client credentials are not configured
        """
        bundle = UserDataBundle()
        profile_error = await self._fetch_listening_data(user_id, bundle)
        if profile_error is not None:
            # No point spending feature calls on a sync that will fail anyway
            return FetchOutcome(bundle=bundle, profile_error=profile_error)

        await self._fetch_audio_features(user_id, bundle)
        logger.info(
            f"Fetched data for user {user_id}: {bundle.top_tracks.total()} top tracks, "
            f"{bundle.top_artists.total()} top artists, {len(bundle.recently_played)} recent, "
            f"{len(bundle.saved_tracks)} saved, {len(bundle.audio_features)} audio features"
            + (f", skipped {sorted(bundle.skipped)}" if bundle.skipped else "")
        )
        return FetchOutcome(bundle=bundle)

    # =========================================================================
    # STAGE 1: independent endpoints
    # =========================================================================

    def _stage_one_loaders(
        self, user_id: str, bundle: UserDataBundle
    ) -> dict[str, Callable[[], Awaitable[None]]]:
        limits = self._settings
        client = self._client

        async def load_profile() -> None:
            bundle.profile = convert_profile(await client.get_current_user(user_id))

        def load_top_tracks(time_range: TimeRange) -> Callable[[], Awaitable[None]]:
            async def load() -> None:
                payload = await client.get_top_tracks(
                    user_id, time_range, limit=limits.top_items_limit
                )
                bundle.top_tracks.set(
                    time_range, convert_items(payload, convert_track, "top track")
                )

            return load

        def load_top_artists(time_range: TimeRange) -> Callable[[], Awaitable[None]]:
            async def load() -> None:
                payload = await client.get_top_artists(
                    user_id, time_range, limit=limits.top_items_limit
                )
                bundle.top_artists.set(
                    time_range, convert_items(payload, convert_artist, "top artist")
                )

            return load

        async def load_recently_played() -> None:
            payload = await client.get_recently_played(
                user_id, limit=limits.recently_played_limit
            )
            bundle.recently_played = convert_items(
                payload, convert_played_item, "recently played"
            )

        async def load_saved_tracks() -> None:
            payload = await client.get_saved_tracks(user_id, limit=limits.saved_tracks_limit)
            bundle.saved_tracks = convert_items(payload, convert_saved_item, "saved track")

        async def load_playlists() -> None:
            payload = await client.get_user_playlists(user_id, limit=limits.playlists_limit)
            bundle.playlists = convert_items(payload, convert_playlist, "playlist")

        loaders: dict[str, Callable[[], Awaitable[None]]] = {PROFILE: load_profile}
        for time_range in TimeRange:
            loaders[top_tracks_resource(time_range)] = load_top_tracks(time_range)
        for time_range in TimeRange:
            loaders[top_artists_resource(time_range)] = load_top_artists(time_range)
        loaders[RECENTLY_PLAYED] = load_recently_played
        loaders[SAVED_TRACKS] = load_saved_tracks
        loaders[PLAYLISTS] = load_playlists
        return loaders

    async def _fetch_listening_data(
        self, user_id: str, bundle: UserDataBundle
    ) -> DomainException | None:
        """Stage 1. Fills the bundle in place and returns the profile error, if any."""
        loaders = self._stage_one_loaders(user_id, bundle)
        tasks = [
            asyncio.create_task(load(), name=resource) for resource, load in loaders.items()
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        fatal_error: DomainException | None = None
        profile_error: DomainException | None = None
        for task, result in zip(tasks, results, strict=True):
            resource = task.get_name()
            if result is None:
                continue
            if isinstance(result, FATAL_ERRORS):
                fatal_error = fatal_error or result
            elif isinstance(result, DomainException):
                logger.warning(f"Skipping {resource} for user {user_id}: {result.message}")
                bundle.skipped[resource] = result.message
                if resource == PROFILE:
                    profile_error = result
            else:
                raise result

        if fatal_error is not None:
            raise fatal_error
        return profile_error

    # =========================================================================
    # STAGE 2: audio features
    # =========================================================================

    async def _fetch_audio_features(self, user_id: str, bundle: UserDataBundle) -> None:
        track_ids = bundle.unique_track_ids()
        if not track_ids:
            return

        batch_size = min(self._settings.audio_features_batch_size, AUDIO_FEATURES_MAX_IDS)
        batches = chunked(track_ids, batch_size)
        semaphore = asyncio.Semaphore(self._settings.max_concurrent_batches)

        async def run_batch(batch: list[str]) -> list[AudioFeatureVector]:
            async with semaphore:
                payload = await self._client.get_audio_features(user_id, batch)
            return convert_items(
                payload, convert_audio_features, "audio features", key="audio_features"
            )

        results: list[Any] = await asyncio.gather(
            *(run_batch(batch) for batch in batches), return_exceptions=True
        )

        found: dict[str, AudioFeatureVector] = {}
        failed = 0
        last_error = ""
        for batch, result in zip(batches, results, strict=True):
            if isinstance(result, FATAL_ERRORS):
                raise result
            if isinstance(result, DomainException):
                failed += 1
                last_error = result.message
                logger.warning(
                    f"Audio features batch of {len(batch)} failed for user {user_id}: "
                    f"{result.message}"
                )
                continue
            if isinstance(result, BaseException):
                raise result
            requested = set(batch)
            for vector in result:
                # Spotify answers positionally; anything we didn't ask for is noise
                if vector.track_id in requested:
                    found[vector.track_id] = vector

        # Keep first-seen track order so the stored map is deterministic
        bundle.audio_features = {tid: found[tid] for tid in track_ids if tid in found}
        if failed:
            bundle.skipped[AUDIO_FEATURES] = (
                f"{failed} of {len(batches)} batches failed: {last_error}"
            )
