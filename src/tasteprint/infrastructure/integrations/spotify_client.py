"""Spotify Web API client with refresh-and-retry on 401."""

import logging
from typing import Any

import httpx

from tasteprint.config.settings import SpotifySettings
from tasteprint.domain.entities import AUDIO_PROFILE_FIELDS, TimeRange
from tasteprint.domain.exceptions import (
    AuthenticationError,
    NetworkError,
    SpotifyApiError,
)
from tasteprint.domain.ports import ICredentialProvider, ISpotifyClient
from tasteprint.infrastructure.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

# Spotify's hard ceiling for /audio-features?ids=...
AUDIO_FEATURES_MAX_IDS = 100

# Tunable attributes accepted by /recommendations (each as min_/max_/target_)
RECOMMENDATION_TUNABLES = frozenset(
    {*AUDIO_PROFILE_FIELDS, "liveness", "loudness", "tempo", "popularity"}
)


class SpotifyClient(ISpotifyClient):
    """HTTP client for Spotify API operations.

    Purely reactive: the only state is the pooled HTTP connection. Credentials
    are looked up per call through the injected credential provider.
    """

    def __init__(
        self,
        settings: SpotifySettings,
        credential_provider: ICredentialProvider,
        rate_limiter: RateLimiter | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize Spotify client.

        Args:
            settings: Spotify configuration settings
            credential_provider: Source of access tokens (and refreshes)
            rate_limiter: Shared limiter; a Spotify-tuned one is created if omitted
            http_client: Pre-built httpx client (tests inject one)
        """
        self.settings = settings
        self._credentials = credential_provider
        self._rate_limiter = rate_limiter or RateLimiter.for_spotify(
            burst=settings.rate_limit_burst,
            per_second=settings.rate_limit_per_second,
        )
        self._client = http_client

    # Hey future me - the httpx client is created lazily so constructing a SpotifyClient
    # outside a running event loop is safe. The timeout here is the ONLY cancellation a
    # sync has - there's no cancel API on purpose.
    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.settings.timeout_seconds)
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _send(
        self,
        method: str,
        url: str,
        access_token: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        """Issue one rate-limited request. Transport failures become NetworkError."""
        client = await self._get_client()
        headers = {"Authorization": f"Bearer {access_token}"}
        try:
            async with self._rate_limiter:
                return await client.request(
                    method=method,
                    url=url,
                    params=params,
                    json=json,
                    headers=headers,
                )
        except httpx.TransportError as e:
            logger.warning(f"Spotify request failed: {method} {url}: {e!r}")
            raise NetworkError(f"Could not reach Spotify ({method} {url}): {e}") from e

    # Hey future me - THE central request path. Every endpoint helper ends up here.
    # 401 gets exactly ONE refresh + ONE re-issue. A second 401 is an AuthenticationError,
    # never another refresh - otherwise a revoked app spins in a refresh loop forever.
    # Everything else non-2xx (429 too!) is raised right away as SpotifyApiError with the
    # body attached; the batch fetcher decides what's fatal.
    async def call(
        self,
        user_id: str,
        endpoint: str,
        *,
        method: str = "GET",
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """Call a Spotify endpoint on behalf of a user.

        Args:
            user_id: Whose credential to use
            endpoint: Path below the API base URL, e.g. "/me/top/tracks"
            method: HTTP method
            params: Query parameters
            json: JSON request body

        Returns:
            Decoded JSON body, or None for empty responses

        Raises:
            AuthenticationError: Still unauthorized after one refresh
            SpotifyApiError: Any other non-2xx response
            NetworkError: Transport failure
        """
        url = f"{self.settings.api_base_url}{endpoint}"

        token = await self._credentials.get_token(user_id)
        response = await self._send(method, url, token, params=params, json=json)

        if response.status_code == 401:
            logger.info(f"Spotify returned 401 for {endpoint}, refreshing token once")
            token = await self._credentials.refresh(user_id, rejected_token=token)
            response = await self._send(method, url, token, params=params, json=json)
            if response.status_code == 401:
                logger.error(f"Spotify still returned 401 for {endpoint} after refresh")
                raise AuthenticationError(
                    "Spotify rejected the credential even after a refresh. "
                    "Please re-authenticate with Spotify."
                )

        return await self._handle_response(response, url)

    async def _handle_response(self, response: httpx.Response, url: str) -> Any:
        if response.status_code == 429:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            await self._rate_limiter.cool_down(retry_after)
            raise SpotifyApiError(
                status=429, body=response.text, url=url, retry_after=retry_after
            )

        if not response.is_success:
            logger.error(
                f"Spotify API error: {response.status_code} {url} - {response.text[:500]}"
            )
            raise SpotifyApiError(status=response.status_code, body=response.text, url=url)

        self._rate_limiter.reset_cooldown()
        if response.status_code == 204 or not response.content:
            return None

        try:
            return response.json()
        except ValueError as e:
            raise SpotifyApiError(
                status=response.status_code, body=response.text, url=url
            ) from e

    # =========================================================================
    # ENDPOINTS
    # =========================================================================

    async def get_current_user(self, user_id: str) -> dict[str, Any]:
        """Get the current user's profile (/me)."""
        return await self.call(user_id, "/me")

    async def get_top_tracks(
        self, user_id: str, time_range: TimeRange, limit: int = 50
    ) -> dict[str, Any]:
        """Get the user's top tracks for one time range (max 50)."""
        return await self.call(
            user_id,
            "/me/top/tracks",
            params={"time_range": time_range.api_value, "limit": min(limit, 50)},
        )

    async def get_top_artists(
        self, user_id: str, time_range: TimeRange, limit: int = 50
    ) -> dict[str, Any]:
        """Get the user's top artists for one time range (max 50)."""
        return await self.call(
            user_id,
            "/me/top/artists",
            params={"time_range": time_range.api_value, "limit": min(limit, 50)},
        )

    async def get_recently_played(self, user_id: str, limit: int = 50) -> dict[str, Any]:
        """Get recently played tracks (items have 'track' and 'played_at')."""
        return await self.call(
            user_id, "/me/player/recently-played", params={"limit": min(limit, 50)}
        )

    async def get_saved_tracks(
        self, user_id: str, limit: int = 50, offset: int = 0
    ) -> dict[str, Any]:
        """Get the user's Liked Songs (items have 'track' and 'added_at')."""
        return await self.call(
            user_id, "/me/tracks", params={"limit": min(limit, 50), "offset": offset}
        )

    async def get_user_playlists(self, user_id: str, limit: int = 50) -> dict[str, Any]:
        """Get the user's playlists (metadata only, no tracks)."""
        return await self.call(user_id, "/me/playlists", params={"limit": min(limit, 50)})

    async def get_audio_features(
        self, user_id: str, track_ids: list[str]
    ) -> dict[str, Any]:
        """Get audio features for up to 100 tracks in one call.

        Unknown ids come back as null entries in 'audio_features'.

        Raises:
            ValueError: If more than 100 ids are passed - chunking is the caller's job
        """
        if not track_ids:
            return {"audio_features": []}
        if len(track_ids) > AUDIO_FEATURES_MAX_IDS:
            raise ValueError(
                f"At most {AUDIO_FEATURES_MAX_IDS} track ids per call, got {len(track_ids)}"
            )
        return await self.call(
            user_id, "/audio-features", params={"ids": ",".join(track_ids)}
        )

    # Hey future me - recommendations aren't used by the profile sync at all. They're here
    # because the UI layer asks Spotify for them with seeds from analysis_service.
    # Spotify wants 1..5 seeds IN TOTAL across tracks, artists and genres.
    async def get_recommendations(
        self,
        user_id: str,
        seed_tracks: list[str] | None = None,
        seed_artists: list[str] | None = None,
        seed_genres: list[str] | None = None,
        limit: int = 20,
        market: str | None = None,
        **tunables: float,
    ) -> dict[str, Any]:
        """Get track recommendations from seeds.

        Args:
            user_id: Whose credential to use
            seed_tracks: Track ids
            seed_artists: Artist ids
            seed_genres: Genre names
            limit: Number of tracks (1-100)
            market: ISO 3166-1 alpha-2 country code
            **tunables: min_/max_/target_ attribute filters, e.g. target_energy=0.8

        Raises:
            ValueError: Invalid seed count or unknown tunable
        """
        seed_tracks = seed_tracks or []
        seed_artists = seed_artists or []
        seed_genres = seed_genres or []
        seed_count = len(seed_tracks) + len(seed_artists) + len(seed_genres)
        if not 1 <= seed_count <= 5:
            raise ValueError(f"Recommendations need 1-5 seeds in total, got {seed_count}")

        params: dict[str, Any] = {"limit": max(1, min(limit, 100))}
        if seed_tracks:
            params["seed_tracks"] = ",".join(seed_tracks)
        if seed_artists:
            params["seed_artists"] = ",".join(seed_artists)
        if seed_genres:
            params["seed_genres"] = ",".join(seed_genres)
        if market:
            params["market"] = market

        for name, value in tunables.items():
            prefix, _, attribute = name.partition("_")
            if prefix not in ("min", "max", "target") or attribute not in RECOMMENDATION_TUNABLES:
                raise ValueError(f"Unknown recommendation tunable: {name}")
            params[name] = value

        return await self.call(user_id, "/recommendations", params=params)

    async def __aenter__(self) -> "SpotifyClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


def _parse_retry_after(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None
