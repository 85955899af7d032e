"""Tests for delta computation"""

from datetime import datetime, timezone

import pytest

from strmarr.models import Episode, Movie, MovieSnapshot, Series, SeriesSnapshot, Snapshot
from strmarr.sync.checksum import movie_checksum, series_checksum
from strmarr.sync.delta import DeltaCalculator, count_episodes

MODIFIED = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def calculator():
    return DeltaCalculator()


def make_snapshot(movies=(), series=()):
    return Snapshot(
        created_at=MODIFIED,
        provider_url="http://provider.test",
        config_fingerprint="abc",
        movies={
            m.stream_id: MovieSnapshot(m.stream_id, m.name, movie_checksum(m), m.category_id)
            for m in movies
        },
        series={
            s.series_id: SeriesSnapshot(s.series_id, s.name, series_checksum(s, count), s.category_id, count)
            for s, count in series
        },
        is_complete=True,
    )


class TestMovieDelta:
    """Test movie partitioning"""

    def test_no_snapshot_everything_new(self, calculator):
        movies = [Movie(1, "Heat", category_id=1), Movie(2, "Ronin", category_id=1)]

        delta = calculator.compute_movie_delta(movies, None)

        assert [m.stream_id for m in delta.new_movies] == [1, 2]
        assert delta.stats.total == 2
        assert delta.stats.new == 2
        assert delta.removed_movie_ids == []

    def test_partition(self, calculator):
        heat = Movie(1, "Heat", "mkv", 1)
        ronin = Movie(2, "Ronin", "mkv", 1)
        gone = Movie(3, "Gone", "mkv", 1)
        snapshot = make_snapshot(movies=[heat, ronin, gone])

        current = [heat, Movie(2, "Ronin", "mp4", 1), Movie(4, "New", "mkv", 1)]
        delta = calculator.compute_movie_delta(current, snapshot)

        assert [m.stream_id for m in delta.new_movies] == [4]
        assert [m.stream_id for m in delta.modified_movies] == [2]
        assert delta.removed_movie_ids == [3]
        assert delta.stats.unchanged == 1
        assert delta.changed_movie_ids == {2, 4}

    def test_duplicates_collapsed(self, calculator):
        """Test a movie listed twice is counted once with both categories kept"""
        movies = [Movie(1, "Heat", category_id=1), Movie(1, "Heat", category_id=7)]

        delta = calculator.compute_movie_delta(movies, None)

        assert delta.stats.total == 1
        assert len(delta.new_movies) == 1
        assert delta.categories_by_id == {1: [1, 7]}

    def test_change_percentage(self, calculator):
        snapshot = make_snapshot(movies=[Movie(i, f"M{i}", category_id=1) for i in range(1, 5)])
        current = [Movie(i, f"M{i}", category_id=1) for i in range(1, 4)]

        delta = calculator.compute_movie_delta(current, snapshot)

        assert delta.stats.removed == 1
        assert delta.stats.change_percentage == pytest.approx(25.0)


class TestSeriesDelta:
    """Test series partitioning"""

    def test_episode_count_change_is_modified(self, calculator):
        lost = Series(1, "Lost", 2, last_modified=MODIFIED)
        snapshot = make_snapshot(series=[(lost, 2)])
        episodes = {1: [Episode(11, 1, 1), Episode(12, 2, 1), Episode(13, 3, 1)]}

        delta = calculator.compute_series_delta([lost], {1: episodes}, snapshot)

        assert [s.series_id for s in delta.modified_series] == [1]

    def test_known_count_unchanged(self, calculator):
        lost = Series(1, "Lost", 2, last_modified=MODIFIED)
        snapshot = make_snapshot(series=[(lost, 2)])

        delta = calculator.compute_series_delta([lost], {1: 2}, snapshot)

        assert delta.stats.unchanged == 1
        assert delta.changed_series_ids == set()

    def test_removed_series(self, calculator):
        snapshot = make_snapshot(series=[(Series(1, "Lost", 2), 1)])

        delta = calculator.compute_series_delta([], {}, snapshot)

        assert delta.removed_series_ids == [1]


def test_merge_deltas(calculator):
    """Test merged stats add up"""
    movie_delta = calculator.compute_movie_delta([Movie(1, "Heat", category_id=1)], None)
    series_delta = calculator.compute_series_delta([Series(5, "Lost", 2)], {5: 1}, None)

    merged = calculator.merge_deltas(movie_delta, series_delta)

    assert merged.stats.total == 2
    assert merged.stats.new == 2
    assert merged.categories_by_id == {1: [1], 5: [2]}


def test_count_episodes():
    assert count_episodes(None) == 0
    assert count_episodes(4) == 4
    assert count_episodes({1: [Episode(1, 1, 1)], 2: [Episode(2, 1, 2), Episode(3, 2, 2)]}) == 3
