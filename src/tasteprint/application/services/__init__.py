"""Application services."""

from tasteprint.application.services.analysis_service import (
    aggregate,
    build_track_snapshot,
    recommendation_seeds,
)
from tasteprint.application.services.batch_fetcher import FetchOutcome, SpotifyBatchFetcher
from tasteprint.application.services.profile_sync_service import ProfileSyncService
from tasteprint.application.services.token_manager import DatabaseTokenManager

__all__ = [
    "DatabaseTokenManager",
    "FetchOutcome",
    "ProfileSyncService",
    "SpotifyBatchFetcher",
    "aggregate",
    "build_track_snapshot",
    "recommendation_seeds",
]
