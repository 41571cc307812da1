"""Database-backed credential provider.

Hey future me - this is the default ICredentialProvider. The OAuth redirect flow (outside
this package) hands us the first token response via store_credential(); after that we
own the credential: hand out access tokens, refresh them before they expire, and refresh
on demand when the API client reports a 401.

Refresh is SINGLE-FLIGHT per user. Feature batches run concurrently, so an expired token
can produce several 401s at once - without this every one of them would burn a refresh
call and, when Spotify rotates refresh tokens, invalidate each other's results.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from tasteprint.domain.entities import Credential, RecordKind
from tasteprint.domain.exceptions import (
    ExternalServiceError,
    TokenRefreshException,
    ValidationError,
)
from tasteprint.domain.ports import ICredentialProvider
from tasteprint.infrastructure.integrations.spotify_auth_client import SpotifyAuthClient
from tasteprint.infrastructure.persistence.documents import (
    credential_from_document,
    credential_to_document,
)
from tasteprint.infrastructure.persistence.models import utc_now
from tasteprint.infrastructure.persistence.repositories import ProfileStore

logger = logging.getLogger(__name__)


class DatabaseTokenManager(ICredentialProvider):
    """Credential provider that keeps credentials in the profile store."""

    def __init__(
        self,
        store: ProfileStore,
        auth_client: SpotifyAuthClient,
        margin_seconds: int = 300,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """
        Args:
            store: Where credentials live (RecordKind.CREDENTIALS)
            auth_client: Talks to the accounts service for refreshes
            margin_seconds: Refresh proactively when the token expires within this window
            clock: Current time source (tests pin it)
        """
        self._store = store
        self._auth_client = auth_client
        self._margin_seconds = margin_seconds
        self._clock = clock
        self._refresh_tasks: dict[str, asyncio.Task[str]] = {}

    async def load_credential(self, user_id: str) -> Credential | None:
        entry = await self._store.load(user_id, RecordKind.CREDENTIALS)
        if entry is None:
            return None
        return credential_from_document(entry.payload)

    async def store_credential(
        self, user_id: str, credential: Credential | dict[str, Any]
    ) -> Credential:
        """Record a credential from the OAuth flow.

        Args:
            user_id: Owner
            credential: A Credential or a raw token endpoint response

        Returns:
            The stored Credential
        """
        if isinstance(credential, dict):
            credential = Credential.from_token_response(credential, now=self._clock())
        await self._store.save(
            user_id, RecordKind.CREDENTIALS, credential_to_document(credential)
        )
        logger.info(f"Stored Spotify credential for user {user_id}")
        return credential

    async def get_token(self, user_id: str) -> str:
        credential = await self.load_credential(user_id)
        if credential is None:
            raise TokenRefreshException(
                message=f"No Spotify credential stored for user {user_id}. Please log in.",
                error_code="no_credential",
            )
        if credential.is_expired(self._margin_seconds, now=self._clock()):
            logger.debug(f"Token for user {user_id} expires soon, refreshing proactively")
            return await self.refresh(user_id, rejected_token=credential.access_token)
        return credential.access_token

    async def refresh(self, user_id: str, rejected_token: str | None = None) -> str:
        task = self._refresh_tasks.get(user_id)
        if task is None:
            task = asyncio.create_task(self._refresh(user_id, rejected_token))
            self._refresh_tasks[user_id] = task
            task.add_done_callback(lambda _: self._refresh_tasks.pop(user_id, None))
        else:
            logger.debug(f"Joining in-flight token refresh for user {user_id}")
        # shield: one cancelled caller must not cancel the refresh the others wait for
        return await asyncio.shield(task)

    async def _refresh(self, user_id: str, rejected_token: str | None) -> str:
        credential = await self.load_credential(user_id)
        if credential is None:
            raise TokenRefreshException(
                message=f"No Spotify credential stored for user {user_id}. Please log in.",
                error_code="no_credential",
            )

        # Someone else already refreshed since this token was rejected
        if (
            rejected_token is not None
            and credential.access_token != rejected_token
            and not credential.is_expired(now=self._clock())
        ):
            logger.debug(f"Token for user {user_id} already refreshed elsewhere")
            return credential.access_token

        # ConfigurationError (no client id/secret) is not wrapped: re-login can't fix it
        try:
            response = await self._auth_client.refresh_token(credential.refresh_token)
        except ExternalServiceError as e:
            logger.warning(f"Token refresh for user {user_id} failed: {e.message}")
            raise TokenRefreshException(
                message=f"Token refresh failed: {e.message}",
                error_code="refresh_failed",
                http_status=getattr(e, "status", None),
            ) from e

        try:
            refreshed = Credential.from_token_response(
                response, previous_refresh_token=credential.refresh_token, now=self._clock()
            )
        except ValidationError as e:
            raise TokenRefreshException(
                message=f"Malformed token response: {e.message}",
                error_code="invalid_response",
            ) from e
        await self._store.save(
            user_id, RecordKind.CREDENTIALS, credential_to_document(refreshed)
        )
        logger.info(f"Refreshed Spotify token for user {user_id}")
        return refreshed.access_token
