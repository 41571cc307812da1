"""Domain exceptions."""

from typing import Any


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    # Hey future me, message is stored as an attribute so code can inspect it without parsing
    # str(exception). Don't raise this directly - use a subclass so callers can catch precisely.
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class ValidationError(DomainException):
    """Input validation failed.

    Raised at the API boundary when a payload can't be mapped onto an entity
    (missing id, out-of-range audio feature, etc.).
    """

    pass


class ConfigurationError(DomainException):
    """Application misconfiguration.

    Example:
        raise ConfigurationError("SPOTIFY_CLIENT_ID is not configured")
    """

    pass


class AuthenticationError(DomainException):
    """Credential invalid even after one refresh - the user must re-authenticate.

    Fatal for the current sync.
    """

    pass


class TokenRefreshException(AuthenticationError):
    """Raised when token refresh fails and re-authentication is required.

    Hey future me - this is thrown when Spotify's refresh token is no longer valid.
    Common causes:
    - User revoked app access in Spotify settings
    - App credentials changed
    - No credential stored for the user at all
    """

    def __init__(
        self,
        message: str = "Token refresh failed. Please re-authenticate with Spotify.",
        error_code: str | None = None,
        http_status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code  # e.g., "invalid_grant"
        self.http_status = http_status  # e.g., 400, 401

    @property
    def requires_reauth(self) -> bool:
        """Check if error requires user re-authentication."""
        return self.error_code == "invalid_grant" or self.http_status in (400, 401, 403)


class ExternalServiceError(DomainException):
    """External service returned an error or could not be reached."""

    pass


class SpotifyApiError(ExternalServiceError):
    """Spotify rejected a specific call with a non-2xx status.

    The response body is kept verbatim for diagnostics. retry_after is only
    set for 429 responses that carry a Retry-After header.
    """

    def __init__(
        self,
        status: int,
        body: str,
        url: str | None = None,
        retry_after: int | None = None,
    ) -> None:
        super().__init__(f"Spotify API error {status}: {body[:200]}")
        self.status = status
        self.body = body
        self.url = url
        self.retry_after = retry_after

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429


class NetworkError(ExternalServiceError):
    """Transport failure (connection refused, DNS, timeout)."""

    pass


class ProfileUnavailableError(ExternalServiceError):
    """The profile fetch failed, so the sync has no identity to key the cache on."""

    def __init__(self, user_id: str, reason: str) -> None:
        super().__init__(f"Profile fetch failed for user {user_id}: {reason}")
        self.user_id = user_id
        self.reason = reason


class StoreError(DomainException):
    """Persistence layer unavailable or rejected an operation.

    Surfaced to callers of sync/get_summary, never swallowed.
    """

    pass


# Short names used throughout the sync code
AuthError = AuthenticationError
ApiError = SpotifyApiError


__all__ = [
    "DomainException",
    "ValidationError",
    "ConfigurationError",
    "AuthenticationError",
    "AuthError",
    "TokenRefreshException",
    "ExternalServiceError",
    "SpotifyApiError",
    "ApiError",
    "NetworkError",
    "ProfileUnavailableError",
    "StoreError",
]
