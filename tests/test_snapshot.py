"""Tests for snapshot persistence"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from strmarr.models import MovieSnapshot, SeriesSnapshot, Snapshot
from strmarr.sync.snapshot import SnapshotStore


class StepClock:
    """Clock advancing one second per call"""

    def __init__(self):
        self.now = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


def make_snapshot(movie_name="Heat", is_complete=True):
    return Snapshot(
        created_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
        provider_url="http://provider.test",
        config_fingerprint="abc123",
        movies={1: MovieSnapshot(1, movie_name, "c1", 3, "mkv", ["/lib/Movies/Heat (1995)/Heat (1995).strm"])},
        series={
            9: SeriesSnapshot(
                9, "Lost", "c9", 4, 25, datetime(2024, 4, 1, tzinfo=timezone.utc), ["/lib/Series/Lost"]
            ),
        },
        is_complete=is_complete,
        duration_seconds=12.5,
    )


@pytest.fixture
def store(temp_dir):
    return SnapshotStore(temp_dir / "snapshots", retention=3, clock=StepClock())


class TestSnapshotStore:
    """Test saving and loading snapshots"""

    def test_save_and_load(self, store):
        store.save(make_snapshot())

        loaded = store.load_latest()

        assert loaded.provider_url == "http://provider.test"
        assert loaded.movies[1].paths == ["/lib/Movies/Heat (1995)/Heat (1995).strm"]
        assert loaded.series[9].episode_count == 25
        assert loaded.series[9].last_modified == datetime(2024, 4, 1, tzinfo=timezone.utc)
        assert loaded.series[9].folders == ["/lib/Series/Lost"]
        assert loaded.duration_seconds == 12.5

    def test_document_layout(self, store):
        """Test the saved document carries version, items and metadata"""
        path = store.save(make_snapshot())

        data = json.loads(path.read_text())

        assert data["version"] == 1
        assert set(data["movies"]) == {"1"}
        assert data["metadata"] == {
            "total_movies": 1,
            "total_series": 1,
            "duration_seconds": 12.5,
            "is_complete": True,
        }
        assert not list(store.directory.glob("*.tmp"))

    def test_newest_wins(self, store):
        store.save(make_snapshot("Old"))
        store.save(make_snapshot("New"))

        assert store.load_latest().movies[1].name == "New"

    def test_retention(self, store):
        for i in range(5):
            store.save(make_snapshot(f"Run {i}"))

        files = list(store.directory.glob("snapshot_*.json"))

        assert len(files) == 3
        assert store.load_latest().movies[1].name == "Run 4"

    def test_corrupt_newest_falls_back(self, store):
        store.save(make_snapshot("Good"))
        corrupt = store.save(make_snapshot("Bad"))
        corrupt.write_text("{not json")

        assert store.load_latest().movies[1].name == "Good"

    def test_incomplete_snapshot_ignored(self, store):
        store.save(make_snapshot(is_complete=False))

        assert store.load_latest() is None

    def test_empty_store(self, store):
        assert store.load_latest() is None
        assert store.has_snapshot() is False
        assert store.clear_all() == 0

    def test_clear_all(self, store):
        store.save(make_snapshot())
        store.save(make_snapshot())

        assert store.clear_all() == 2
        assert store.has_snapshot() is False
        assert store.load_latest() is None
