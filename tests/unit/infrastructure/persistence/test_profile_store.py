"""Tests for ProfileStore against a temporary SQLite file."""

import json

import pytest
from sqlalchemy.exc import OperationalError

from tasteprint.domain.entities import (
    AnalysisArtifact,
    Artist,
    ArtistRef,
    AudioFeatureVector,
    AudioProfile,
    RecordKind,
    TimeRange,
    Track,
    UserDataBundle,
    UserProfile,
)
from tasteprint.domain.exceptions import StoreError
from tasteprint.infrastructure.persistence.documents import (
    artifact_from_document,
    artifact_to_document,
    bundle_from_document,
    bundle_to_document,
)
from tasteprint.infrastructure.persistence.repositories import ProfileStore


def _vector(track_id: str, energy: float = 0.5) -> AudioFeatureVector:
    return AudioFeatureVector(
        track_id=track_id,
        acousticness=0.1,
        danceability=0.2,
        energy=energy,
        instrumentalness=0.0,
        liveness=0.3,
        loudness=-5.0,
        speechiness=0.04,
        tempo=128.0,
        valence=0.7,
        key=2,
        mode=0,
        time_signature=4,
    )


@pytest.fixture
def bundle() -> UserDataBundle:
    bundle = UserDataBundle(
        profile=UserProfile(id="user-1", display_name="Test User", country="DE", followers=3),
        recently_played=[
            Track(id=f"r{i}", name=f"Recent {i}", artists=[ArtistRef("a1", "Band")], played_at="2025-05-01T10:00:00Z")
            for i in range(5)
        ],
        saved_tracks=[Track(id="s1", name="Saved", added_at="2025-01-01T00:00:00Z")],
        audio_features={"r0": _vector("r0", 0.9), "s1": _vector("s1", 0.1)},
        skipped={"playlists": "Spotify API error 403: forbidden"},
    )
    bundle.top_tracks.set(TimeRange.SHORT, [Track(id="t1", name="Top", artists=[ArtistRef("a1", "Band")])])
    bundle.top_artists.set(
        TimeRange.MEDIUM,
        [Artist(id=f"a{i}", name=f"Artist {i}", genres=["pop"]) for i in range(7)],
    )
    return bundle


@pytest.fixture
def artifact() -> AnalysisArtifact:
    return AnalysisArtifact(
        top_genres=[(f"genre-{i}", 10 - i) for i in range(8)],
        audio_profile=AudioProfile(
            energy=0.5, danceability=0.2, valence=0.7, acousticness=0.1,
            instrumentalness=0.0, speechiness=0.04,
        ),
        artist_diversity=1.0,
        tracks_with_features=2,
    )


async def _save_sync(store: ProfileStore, bundle, artifact) -> None:
    await store.save_many(
        "user-1",
        {
            RecordKind.USER_DATA: bundle_to_document(bundle),
            RecordKind.ANALYSIS: artifact_to_document(artifact),
            RecordKind.TRACKS: {"Saved Tracks": []},
        },
    )


class TestSaveLoad:
    """Test full-record replace semantics."""

    async def test_round_trip_keeps_every_audio_feature_key(
        self, store: ProfileStore, bundle: UserDataBundle
    ) -> None:
        """save -> load -> decode gives back an equal bundle."""
        await store.save("user-1", RecordKind.USER_DATA, bundle_to_document(bundle))

        entry = await store.load("user-1", RecordKind.USER_DATA)

        assert entry is not None
        restored = bundle_from_document(entry.payload)
        assert restored == bundle
        assert list(restored.audio_features) == ["r0", "s1"]

    async def test_documents_survive_json(self, bundle: UserDataBundle, artifact) -> None:
        """Documents are plain JSON: dumping and loading changes nothing."""
        doc = json.loads(json.dumps(bundle_to_document(bundle)))
        assert bundle_from_document(doc) == bundle

        artifact_doc = json.loads(json.dumps(artifact_to_document(artifact)))
        assert artifact_from_document(artifact_doc) == artifact

    async def test_save_replaces_instead_of_merging(self, store: ProfileStore) -> None:
        """Fields missing from the new payload don't survive."""
        await store.save("user-1", RecordKind.TRACKS, {"a": 1, "b": 2})
        await store.save("user-1", RecordKind.TRACKS, {"a": 3})

        entry = await store.load("user-1", RecordKind.TRACKS)

        assert entry is not None
        assert entry.payload == {"a": 3}

    async def test_load_missing_returns_none(self, store: ProfileStore) -> None:
        """Absent records are None, not an error."""
        assert await store.load("nobody", RecordKind.ANALYSIS) is None

    async def test_save_many_shares_one_timestamp(
        self, store: ProfileStore, bundle, artifact, clock
    ) -> None:
        """Raw and analysis records carry the same last_updated."""
        await _save_sync(store, bundle, artifact)

        raw = await store.load("user-1", RecordKind.USER_DATA)
        analysis = await store.load("user-1", RecordKind.ANALYSIS)

        assert raw is not None and analysis is not None
        assert raw.last_updated == analysis.last_updated == clock.now

    async def test_users_are_isolated(self, store: ProfileStore) -> None:
        """One user's records never show up for another."""
        await store.save("user-1", RecordKind.TRACKS, {"owner": 1})
        await store.save("user-2", RecordKind.TRACKS, {"owner": 2})

        entry = await store.load("user-2", RecordKind.TRACKS)

        assert entry is not None
        assert entry.payload == {"owner": 2}
        assert await store.list_user_ids() == []


class TestSummarize:
    """Test the read-only summary view."""

    async def test_summary_composition(self, store: ProfileStore, bundle, artifact) -> None:
        """Counts, top-5 lists and the last 3 plays come from stored records."""
        await _save_sync(store, bundle, artifact)

        summary = await store.summarize("user-1")

        assert summary is not None
        assert summary.display_name == "Test User"
        assert summary.country == "DE"
        assert summary.stats.top_tracks == 1
        assert summary.stats.top_artists == 7
        assert summary.stats.recently_played == 5
        assert summary.stats.saved_tracks == 1
        assert summary.stats.audio_features == 2
        assert summary.top_genres == [(f"genre-{i}", 10 - i) for i in range(5)]
        assert summary.top_artists == [f"Artist {i}" for i in range(5)]
        assert summary.recent_tracks == [
            {"name": f"Recent {i}", "artist": "Band"} for i in range(3)
        ]
        assert summary.audio_profile == artifact.audio_profile
        assert summary.skipped_resources == ["playlists"]

    async def test_summary_without_analysis(self, store: ProfileStore, bundle) -> None:
        """Raw data alone still gives a summary, just without analysis fields."""
        await store.save("user-1", RecordKind.USER_DATA, bundle_to_document(bundle))

        summary = await store.summarize("user-1")

        assert summary is not None
        assert summary.top_genres == []
        assert summary.audio_profile is None

    async def test_summary_without_profile_uses_unknown(self, store: ProfileStore) -> None:
        """Defaults instead of None for display fields."""
        await store.save("user-1", RecordKind.USER_DATA, bundle_to_document(UserDataBundle()))

        summary = await store.summarize("user-1")

        assert summary is not None
        assert summary.display_name == "Unknown"
        assert summary.country == "Unknown"

    async def test_no_raw_record_returns_none(self, store: ProfileStore) -> None:
        """Nothing synced yet."""
        assert await store.summarize("user-1") is None


class TestClear:
    """Test clear/logout."""

    async def test_clear_then_summarize_is_none(
        self, store: ProfileStore, bundle, artifact
    ) -> None:
        """After clear the user has no summary and no records."""
        await _save_sync(store, bundle, artifact)

        await store.clear("user-1")

        assert await store.summarize("user-1") is None
        assert await store.load("user-1", RecordKind.ANALYSIS) is None
        assert await store.load("user-1", RecordKind.TRACKS) is None

    async def test_clear_keeps_credentials(self, store: ProfileStore) -> None:
        """Only logout forgets the credential."""
        await store.save("user-1", RecordKind.CREDENTIALS, {"access_token": "x"})

        await store.clear("user-1")
        assert await store.load("user-1", RecordKind.CREDENTIALS) is not None

        await store.clear("user-1", include_credentials=True)
        assert await store.load("user-1", RecordKind.CREDENTIALS) is None


class TestFreshness:
    """Test is_fresh against an injected clock."""

    async def test_fresh_within_window(self, store: ProfileStore, bundle, clock) -> None:
        """Fresh up to and including max_age_seconds, stale after."""
        await store.save("user-1", RecordKind.USER_DATA, bundle_to_document(bundle))

        clock.advance(3600)
        assert await store.is_fresh("user-1", 3600)

        clock.advance(1)
        assert not await store.is_fresh("user-1", 3600)

    async def test_missing_record_is_not_fresh(self, store: ProfileStore) -> None:
        """No record, nothing fresh."""
        assert not await store.is_fresh("user-1", 3600)
        assert not await store.has_user_data("user-1")

    async def test_list_user_ids(self, store: ProfileStore, bundle) -> None:
        """Only users with raw data are listed, sorted."""
        await store.save("b", RecordKind.USER_DATA, bundle_to_document(bundle))
        await store.save("a", RecordKind.USER_DATA, bundle_to_document(bundle))

        assert await store.list_user_ids() == ["a", "b"]


class TestStoreErrors:
    """Test SQLAlchemy errors surface as StoreError."""

    async def test_missing_tables_raise_store_error(self, store: ProfileStore, database) -> None:
        """A broken schema is a StoreError, not a raw OperationalError."""
        await database.drop_tables()

        with pytest.raises(StoreError) as exc_info:
            await store.load("user-1", RecordKind.USER_DATA)

        assert isinstance(exc_info.value.__cause__, OperationalError)
