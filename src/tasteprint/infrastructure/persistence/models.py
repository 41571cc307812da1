"""SQLAlchemy ORM models for the profile store.

Every record kind gets its own table with the same three columns: the owning
user id (primary key, so one record per user per kind), the JSON document and
the write timestamp. The store treats payloads as opaque documents.
"""

from datetime import UTC, datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy import JSON, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from tasteprint.domain.entities import RecordKind


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


# Hey future me - SQLite doesn't preserve timezone info! UTC datetimes come back naive.
# ALWAYS run DB datetimes through this before comparing with datetime.now(UTC), or you get
# "can't compare offset-naive and offset-aware datetimes".
def ensure_utc_aware(dt: datetime) -> datetime:
    """Ensure datetime is UTC-aware, assuming naive datetimes are UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class DocumentMixin:
    """Columns shared by every document table."""

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )


class UserDataModel(DocumentMixin, Base):
    """Raw listening data of the last successful sync."""

    __tablename__ = "user_data"


class AnalysisModel(DocumentMixin, Base):
    """Analysis artifact derived from the user_data row of the same user."""

    __tablename__ = "analysis"


class TrackSnapshotModel(DocumentMixin, Base):
    """Display-ready track lists (sections of name/artist/album rows)."""

    __tablename__ = "track_snapshots"


class CredentialModel(DocumentMixin, Base):
    """OAuth credential of the user (not encrypted)."""

    __tablename__ = "credentials"


MODEL_BY_KIND: dict[RecordKind, type[DocumentMixin]] = {
    RecordKind.USER_DATA: UserDataModel,
    RecordKind.ANALYSIS: AnalysisModel,
    RecordKind.TRACKS: TrackSnapshotModel,
    RecordKind.CREDENTIALS: CredentialModel,
}
