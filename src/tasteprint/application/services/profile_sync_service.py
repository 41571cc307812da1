"""Profile sync orchestrator - the consumer-facing surface of tasteprint.

Hey future me - this is what the UI/route layer talks to. Three calls matter:
get_summary(), sync() and clear() (plus logout(), which is clear() + forget the
credential). Everything below it is injected, so tests run it against a fake
Spotify client and a temp SQLite file.

State machine per sync:

    IDLE -> CHECKING -> CACHE_HIT ----------------------------> PERSISTED -> IDLE
                     \-> FETCHING -> AGGREGATING -> PERSISTED -> IDLE
                                 \-> FAILED   (profile fetch failed only)

Sub-resource failures never reach FAILED - they show up in SyncResult.skipped.
AuthenticationError, ConfigurationError and StoreError propagate to the caller unchanged.
"""

import asyncio
import logging

from tasteprint.application.services.analysis_service import aggregate, build_track_snapshot
from tasteprint.application.services.batch_fetcher import SpotifyBatchFetcher
from tasteprint.config.settings import SyncSettings
from tasteprint.domain.entities import (
    DataSummary,
    RecordKind,
    SyncResult,
    SyncState,
)
from tasteprint.domain.exceptions import ProfileUnavailableError
from tasteprint.infrastructure.observability.logging import log_operation, set_correlation_id
from tasteprint.infrastructure.persistence.documents import (
    artifact_to_document,
    bundle_to_document,
)
from tasteprint.infrastructure.persistence.repositories import ProfileStore

logger = logging.getLogger(__name__)


class ProfileSyncService:
    """Coordinates fetch -> aggregate -> persist for one user at a time."""

    def __init__(
        self,
        fetcher: SpotifyBatchFetcher,
        store: ProfileStore,
        settings: SyncSettings,
    ) -> None:
        self._fetcher = fetcher
        self._store = store
        self._settings = settings
        self._states: dict[str, SyncState] = {}
        self._inflight: dict[str, asyncio.Task[SyncResult]] = {}

    def current_state(self, user_id: str) -> SyncState:
        """Where the user's sync currently is (IDLE if none ran yet)."""
        return self._states.get(user_id, SyncState.IDLE)

    async def get_summary(self, user_id: str) -> DataSummary | None:
        """Summary from stored data only - never calls Spotify."""
        return await self._store.summarize(user_id)

    # Hey future me - single-flight per user! Two tabs hitting "refresh" at once would
    # otherwise run two full batch fetches that race to overwrite each other's records.
    # The second caller simply awaits the first run's task and gets the same result,
    # even if it asked with a different force_refresh.
    async def sync(self, user_id: str, force_refresh: bool = False) -> SyncResult:
        """Bring the user's stored profile up to date.

        Args:
            user_id: Whose data to sync
            force_refresh: Ignore a fresh cache and fetch anyway

        Returns:
            SyncResult in state PERSISTED, with skipped resources if partial

        Raises:
            ProfileUnavailableError: Profile fetch failed (state FAILED)
            AuthenticationError: User must re-authenticate
            ConfigurationError: Spotify client credentials are not configured
            StoreError: Persistence failed
        """
        task = self._inflight.get(user_id)
        if task is None:
            task = asyncio.create_task(
                self._run(user_id, force_refresh), name=f"sync:{user_id}"
            )
            self._inflight[user_id] = task
            task.add_done_callback(lambda _: self._inflight.pop(user_id, None))
        else:
            logger.info(f"Sync for user {user_id} already running, joining it")
        return await asyncio.shield(task)

    async def _run(self, user_id: str, force_refresh: bool) -> SyncResult:
        correlation_id = set_correlation_id()
        path: list[SyncState] = []

        def enter(state: SyncState) -> None:
            path.append(state)
            self._states[user_id] = state
            logger.debug(f"Sync {correlation_id} for user {user_id} -> {state.value}")

        enter(SyncState.CHECKING)
        try:
            async with log_operation(
                logger, "profile_sync", user_id=user_id, force_refresh=force_refresh
            ):
                if not force_refresh and await self._store.is_fresh(
                    user_id, self._settings.freshness_seconds
                ):
                    enter(SyncState.CACHE_HIT)
                    summary = await self._store.summarize(user_id)
                    enter(SyncState.PERSISTED)
                    return SyncResult(
                        user_id=user_id,
                        state=SyncState.PERSISTED,
                        path=list(path),
                        from_cache=True,
                        skipped={},
                        summary=summary,
                    )

                enter(SyncState.FETCHING)
                outcome = await self._fetcher.fetch(user_id)
                if outcome.profile_error is not None:
                    enter(SyncState.FAILED)
                    raise ProfileUnavailableError(
                        user_id, outcome.profile_error.message
                    ) from outcome.profile_error

                enter(SyncState.AGGREGATING)
                bundle = outcome.bundle
                artifact = aggregate(bundle)
                await self._store.save_many(
                    user_id,
                    {
                        RecordKind.USER_DATA: bundle_to_document(bundle),
                        RecordKind.ANALYSIS: artifact_to_document(artifact),
                        RecordKind.TRACKS: build_track_snapshot(bundle),
                    },
                )
                enter(SyncState.PERSISTED)
                summary = await self._store.summarize(user_id)
                if bundle.skipped:
                    logger.warning(
                        f"Sync for user {user_id} was partial, skipped: {sorted(bundle.skipped)}"
                    )
                return SyncResult(
                    user_id=user_id,
                    state=SyncState.PERSISTED,
                    path=list(path),
                    from_cache=False,
                    skipped=dict(bundle.skipped),
                    summary=summary,
                )
        except Exception:
            # FAILED sticks until the next sync; anything else must not leave
            # the user stuck in FETCHING/AGGREGATING
            if self._states.get(user_id) != SyncState.FAILED:
                self._states.pop(user_id, None)
            raise
        finally:
            # Back to IDLE means no entry; current_state() defaults to IDLE
            if self._states.get(user_id) == SyncState.PERSISTED:
                self._states.pop(user_id, None)

    async def clear(self, user_id: str) -> None:
        """Drop the user's synced data. The credential stays."""
        await self._store.clear(user_id)
        self._states.pop(user_id, None)

    async def logout(self, user_id: str) -> None:
        """Drop the user's synced data AND stored credential."""
        await self._store.clear(user_id, include_credentials=True)
        self._states.pop(user_id, None)
        logger.info(f"Logged out user {user_id}")
