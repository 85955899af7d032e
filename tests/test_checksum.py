"""Tests for content fingerprints"""

import dataclasses
from datetime import datetime, timezone

from strmarr.models import Movie, Series
from strmarr.sync.checksum import config_fingerprint, movie_checksum, series_checksum


class TestMovieChecksum:
    """Test movie fingerprints"""

    def test_stable(self):
        movie = Movie(stream_id=1, name="Heat (1995)", container_extension="mkv", category_id=3)

        assert movie_checksum(movie) == movie_checksum(dataclasses.replace(movie))
        assert len(movie_checksum(movie)) == 32

    def test_cosmetic_fields_ignored(self):
        """Test artwork and rating changes do not change the fingerprint"""
        movie = Movie(stream_id=1, name="Heat (1995)", container_extension="mkv", category_id=3)
        restyled = dataclasses.replace(movie, stream_icon="http://img/new.jpg", rating="8.1")

        assert movie_checksum(movie) == movie_checksum(restyled)

    def test_relevant_fields_change_fingerprint(self):
        movie = Movie(stream_id=1, name="Heat (1995)", container_extension="mkv", category_id=3)

        assert movie_checksum(movie) != movie_checksum(dataclasses.replace(movie, name="Heat"))
        assert movie_checksum(movie) != movie_checksum(dataclasses.replace(movie, container_extension="mp4"))
        assert movie_checksum(movie) != movie_checksum(dataclasses.replace(movie, category_id=4))

    def test_missing_category_is_zero(self):
        movie = Movie(stream_id=1, name="Heat", category_id=None)

        assert movie_checksum(movie) == movie_checksum(dataclasses.replace(movie, category_id=0))


class TestSeriesChecksum:
    """Test series fingerprints"""

    def test_episode_count_and_modified_time(self):
        series = Series(
            series_id=1, name="Lost", category_id=2,
            last_modified=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
        base = series_checksum(series, 10)

        assert series_checksum(series, 11) != base
        assert series_checksum(
            dataclasses.replace(series, last_modified=datetime(2024, 1, 2, tzinfo=timezone.utc)), 10
        ) != base
        assert series_checksum(dataclasses.replace(series, cover="x.jpg"), 10) == base


class TestConfigFingerprint:
    """Test the layout settings fingerprint"""

    def test_layout_settings_change_fingerprint(self, settings):
        base = config_fingerprint(settings)

        assert config_fingerprint(dataclasses.replace(settings, movie_folder_mode="multiple")) != base
        assert config_fingerprint(dataclasses.replace(settings, tmdb_overrides={"heat": 949})) != base

    def test_mapping_order_ignored(self, settings):
        first = dataclasses.replace(settings, movie_folder_mappings={"A": [1, 2], "B": [3]})
        second = dataclasses.replace(settings, movie_folder_mappings={"B": [3], "A": [2, 1]})

        assert config_fingerprint(first) == config_fingerprint(second)

    def test_runtime_settings_ignored(self, settings):
        """Test tuning knobs do not force a full sync"""
        tuned = dataclasses.replace(settings, parallelism=8, orphan_threshold=0.5)

        assert config_fingerprint(tuned) == config_fingerprint(settings)
