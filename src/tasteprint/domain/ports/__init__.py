"""Domain ports (interfaces) for dependency inversion."""

from abc import ABC, abstractmethod
from typing import Any

from tasteprint.domain.entities import TimeRange


class ICredentialProvider(ABC):
    """Port for the collaborator that owns OAuth credentials.

    Hey future me - the API client never keeps a token around. It asks this port for
    one on EVERY call, and asks for exactly one refresh when Spotify says 401.
    """

    @abstractmethod
    async def get_token(self, user_id: str) -> str:
        """Return a usable access token for the user.

        Raises:
            AuthenticationError: If no credential exists or it can't be refreshed
        """
        pass

    @abstractmethod
    async def refresh(self, user_id: str, rejected_token: str | None = None) -> str:
        """Refresh the user's credential and return the new access token.

        Args:
            user_id: Owner of the credential
            rejected_token: The token Spotify just rejected. If the stored token
                already differs from it, another caller refreshed first.

        Raises:
            TokenRefreshException: If the refresh itself fails
        """
        pass


class ISpotifyClient(ABC):
    """Port for the listening-history endpoints the batch fetcher needs.

    All methods return the raw JSON body; mapping onto entities happens in the fetcher.
    """

    @abstractmethod
    async def get_current_user(self, user_id: str) -> dict[str, Any]:
        pass

    @abstractmethod
    async def get_top_tracks(
        self, user_id: str, time_range: TimeRange, limit: int = 50
    ) -> dict[str, Any]:
        pass

    @abstractmethod
    async def get_top_artists(
        self, user_id: str, time_range: TimeRange, limit: int = 50
    ) -> dict[str, Any]:
        pass

    @abstractmethod
    async def get_recently_played(self, user_id: str, limit: int = 50) -> dict[str, Any]:
        pass

    @abstractmethod
    async def get_saved_tracks(
        self, user_id: str, limit: int = 50, offset: int = 0
    ) -> dict[str, Any]:
        pass

    @abstractmethod
    async def get_user_playlists(self, user_id: str, limit: int = 50) -> dict[str, Any]:
        pass

    @abstractmethod
    async def get_audio_features(
        self, user_id: str, track_ids: list[str]
    ) -> dict[str, Any]:
        """Fetch vectors for at most 100 track ids in one call."""
        pass


__all__ = ["ICredentialProvider", "ISpotifyClient"]
