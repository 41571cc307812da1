"""Profile store: per-user document records with freshness and summary queries."""

import logging
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tasteprint.domain.entities import (
    CacheEntry,
    DataSummary,
    RecordKind,
    SummaryStats,
)
from tasteprint.domain.exceptions import StoreError
from tasteprint.infrastructure.persistence.database import Database
from tasteprint.infrastructure.persistence.documents import (
    artifact_from_document,
    bundle_from_document,
)
from tasteprint.infrastructure.persistence.models import (
    MODEL_BY_KIND,
    AnalysisModel,
    UserDataModel,
    ensure_utc_aware,
    utc_now,
)

logger = logging.getLogger(__name__)

# Kinds removed by clear(); credentials only go on logout
SYNC_KINDS = (RecordKind.USER_DATA, RecordKind.ANALYSIS, RecordKind.TRACKS)


class ProfileStore:
    """Repository for cached user data, analysis, track snapshots and credentials.

    Key methods:
    - save()/save_many(): full-record replace (upsert by user id), never a merge
    - load(): CacheEntry or None
    - summarize(): UI view from stored records only, no API calls
    - clear(): drop a user's records in one transaction
    - is_fresh(): THE staleness policy - the orchestrator just asks
    """

    def __init__(
        self, database: Database, clock: Callable[[], datetime] = utc_now
    ) -> None:
        self._db = database
        self._clock = clock

    # Hey future me - every store operation goes through here so SQLAlchemy errors come out
    # as StoreError. The sync orchestrator lets StoreError propagate: a sync that can't
    # persist is a failed sync, not a partial one.
    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with self._db.session_scope() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Profile store {operation} failed: {e}")
            raise StoreError(f"Profile store {operation} failed: {e}") from e

    @staticmethod
    async def _replace(
        session: AsyncSession,
        user_id: str,
        kind: RecordKind,
        payload: dict[str, Any],
        now: datetime,
    ) -> None:
        # Delete + insert instead of an ORM merge: the new row can't inherit anything
        # from the old one.
        model = MODEL_BY_KIND[kind]
        await session.execute(delete(model).where(model.user_id == user_id))
        session.add(model(user_id=user_id, payload=payload, last_updated=now))

    async def save(self, user_id: str, kind: RecordKind, payload: dict[str, Any]) -> datetime:
        """Replace the user's record of one kind.

        Returns:
            The last_updated timestamp written
        """
        now = self._clock()
        async with self._session(f"save({kind.value})") as session:
            await self._replace(session, user_id, kind, payload, now)
        logger.debug(f"Saved {kind.value} for user {user_id}")
        return now

    async def save_many(
        self, user_id: str, payloads: dict[RecordKind, dict[str, Any]]
    ) -> datetime:
        """Replace several kinds in ONE transaction with one shared timestamp.

        The sync writes raw data + analysis + track snapshot this way so a reader
        never sees an analysis derived from a different raw record.
        """
        now = self._clock()
        async with self._session("save_many") as session:
            for kind, payload in payloads.items():
                await self._replace(session, user_id, kind, payload, now)
        logger.info(
            f"Saved {', '.join(k.value for k in payloads)} for user {user_id}"
        )
        return now

    async def load(self, user_id: str, kind: RecordKind) -> CacheEntry | None:
        model = MODEL_BY_KIND[kind]
        async with self._session(f"load({kind.value})") as session:
            row = await session.get(model, user_id)
            if row is None:
                return None
            return CacheEntry(
                user_id=row.user_id,
                kind=kind,
                payload=row.payload,
                last_updated=ensure_utc_aware(row.last_updated),
            )

    async def delete(self, user_id: str, kind: RecordKind) -> bool:
        """Delete one record. Returns True if something was removed."""
        model = MODEL_BY_KIND[kind]
        async with self._session(f"delete({kind.value})") as session:
            result = await session.execute(delete(model).where(model.user_id == user_id))
            return bool(result.rowcount)

    async def clear(self, user_id: str, include_credentials: bool = False) -> None:
        """Remove the user's sync records in a single transaction.

        Readers of summarize() see either everything or nothing - never raw data
        without its analysis.

        Args:
            user_id: Whose records to drop
            include_credentials: Also forget the OAuth credential (logout)
        """
        kinds = SYNC_KINDS + ((RecordKind.CREDENTIALS,) if include_credentials else ())
        async with self._session("clear") as session:
            for kind in kinds:
                model = MODEL_BY_KIND[kind]
                await session.execute(delete(model).where(model.user_id == user_id))
        logger.info(f"Cleared stored data for user {user_id} ({len(kinds)} record kinds)")

    async def last_updated(self, user_id: str) -> datetime | None:
        """Timestamp of the user's raw data record, if any."""
        async with self._session("last_updated") as session:
            result = await session.execute(
                select(UserDataModel.last_updated).where(UserDataModel.user_id == user_id)
            )
            value = result.scalar_one_or_none()
            return ensure_utc_aware(value) if value is not None else None

    async def is_fresh(self, user_id: str, max_age_seconds: int) -> bool:
        """True if the raw data record exists and is at most max_age_seconds old."""
        updated = await self.last_updated(user_id)
        if updated is None:
            return False
        return self._clock() - updated <= timedelta(seconds=max_age_seconds)

    async def has_user_data(self, user_id: str) -> bool:
        return await self.last_updated(user_id) is not None

    async def list_user_ids(self) -> list[str]:
        """All users with stored raw data."""
        async with self._session("list_user_ids") as session:
            result = await session.execute(
                select(UserDataModel.user_id).order_by(UserDataModel.user_id)
            )
            return list(result.scalars().all())

    # Hey future me - raw data and analysis are read with ONE statement (outer join) on
    # purpose. Two separate SELECTs could straddle a clear() or a save_many() and mix
    # states. A single statement always sees one snapshot.
    async def summarize(self, user_id: str) -> DataSummary | None:
        """Compose the UI summary from stored records only.

        Returns:
            DataSummary, or None if no raw data record exists yet
        """
        async with self._session("summarize") as session:
            result = await session.execute(
                select(UserDataModel, AnalysisModel)
                .outerjoin(AnalysisModel, AnalysisModel.user_id == UserDataModel.user_id)
                .where(UserDataModel.user_id == user_id)
            )
            row = result.first()
            if row is None:
                return None
            user_data, analysis = row
            raw_payload = user_data.payload
            analysis_payload = analysis.payload if analysis is not None else None
            last_updated = ensure_utc_aware(user_data.last_updated)

        return build_summary(user_id, raw_payload, analysis_payload, last_updated)


def build_summary(
    user_id: str,
    raw_payload: dict[str, Any],
    analysis_payload: dict[str, Any] | None,
    last_updated: datetime,
) -> DataSummary:
    """Build the DataSummary view from a raw-data and an analysis document."""
    bundle = bundle_from_document(raw_payload)
    artifact = artifact_from_document(analysis_payload) if analysis_payload else None
    profile = bundle.profile

    return DataSummary(
        user_id=user_id,
        display_name=(profile.display_name if profile else None) or "Unknown",
        country=(profile.country if profile else None) or "Unknown",
        last_updated=last_updated,
        stats=SummaryStats(
            top_tracks=bundle.top_tracks.total(),
            top_artists=bundle.top_artists.total(),
            recently_played=len(bundle.recently_played),
            saved_tracks=len(bundle.saved_tracks),
            playlists=len(bundle.playlists),
            audio_features=len(bundle.audio_features),
        ),
        top_genres=artifact.top_genres[:5] if artifact else [],
        top_artists=[artist.name for artist in bundle.top_artists.medium[:5]],
        recent_tracks=[
            {"name": track.name, "artist": track.artist_names}
            for track in bundle.recently_played[:3]
        ],
        audio_profile=artifact.audio_profile if artifact else None,
        artist_diversity=artifact.artist_diversity if artifact else None,
        skipped_resources=sorted(bundle.skipped),
    )
