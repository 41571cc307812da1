"""Spotify accounts-service client (token refresh only)."""

import base64
import logging
from typing import Any

import httpx

from tasteprint.config.settings import SpotifySettings
from tasteprint.domain.exceptions import (
    ConfigurationError,
    NetworkError,
    SpotifyApiError,
    TokenRefreshException,
)

logger = logging.getLogger(__name__)


class SpotifyAuthClient:
    """Talks to accounts.spotify.com. The OAuth redirect dance lives elsewhere."""

    def __init__(
        self, settings: SpotifySettings, http_client: httpx.AsyncClient | None = None
    ) -> None:
        self.settings = settings
        self._client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.settings.timeout_seconds)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _basic_auth_header(self) -> str:
        if not self.settings.client_id.strip() or not self.settings.client_secret.strip():
            raise ConfigurationError(
                "SPOTIFY_CLIENT_ID / SPOTIFY_CLIENT_SECRET are not configured. "
                "Get credentials at https://developer.spotify.com/dashboard"
            )
        raw = f"{self.settings.client_id}:{self.settings.client_secret}".encode()
        return "Basic " + base64.b64encode(raw).decode("ascii")

    # Hey future me, access tokens expire after 1 hour. Spotify returns 400 with
    # {"error": "invalid_grant"} when the refresh token was revoked - that's the
    # "user must log in again" case, so it becomes TokenRefreshException. Other
    # 4xx/5xx are ordinary API errors. Spotify MAY rotate the refresh token; if the
    # response has none, the caller keeps the old one.
    async def refresh_token(self, refresh_token: str) -> dict[str, Any]:
        """
        Refresh access token using refresh token.

        Args:
            refresh_token: Refresh token from previous authentication

        Returns:
            Token response with access_token, expires_in, scope and
            (only if rotated) refresh_token

        Raises:
            TokenRefreshException: If refresh token is invalid/revoked (requires re-auth)
            SpotifyApiError: For other HTTP errors
            NetworkError: If Spotify can't be reached
        """
        client = await self._get_client()

        try:
            response = await client.post(
                self.settings.token_url,
                data={"grant_type": "refresh_token", "refresh_token": refresh_token},
                headers={
                    "Authorization": self._basic_auth_header(),
                    "Content-Type": "application/x-www-form-urlencoded",
                },
            )
        except httpx.TransportError as e:
            raise NetworkError(f"Could not reach Spotify accounts service: {e}") from e

        if response.status_code == 400:
            try:
                error_data = response.json()
            except ValueError:
                error_data = {}
            if not isinstance(error_data, dict):
                error_data = {}
            if error_data.get("error") == "invalid_grant":
                description = error_data.get(
                    "error_description", "Refresh token is invalid or has been revoked"
                )
                raise TokenRefreshException(
                    message=f"Refresh token invalid: {description}. Please re-authenticate with Spotify.",
                    error_code="invalid_grant",
                    http_status=400,
                )

        if response.status_code in (401, 403):
            raise TokenRefreshException(
                message="Spotify access denied. Please re-authenticate with Spotify.",
                error_code="access_denied",
                http_status=response.status_code,
            )

        if not response.is_success:
            raise SpotifyApiError(
                status=response.status_code,
                body=response.text,
                url=self.settings.token_url,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise TokenRefreshException(
                message="Spotify token endpoint returned a non-JSON body",
                error_code="invalid_response",
                http_status=response.status_code,
            ) from e
        if not isinstance(data, dict):
            raise TokenRefreshException(
                message=f"Spotify token endpoint returned {type(data).__name__}, expected an object",
                error_code="invalid_response",
                http_status=response.status_code,
            )

        logger.debug("Successfully refreshed access token")
        return data
