"""Test configuration and fixtures"""

import tempfile
import threading
import time
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path

import pytest

from strmarr.config import MetadataSettings, SyncSettings
from strmarr.models import Category, Episode, Movie, MovieDetail, Series, SeriesInfo
from strmarr.sync import MetadataCache, MetadataResolver, ReconciliationEngine, RunHistory
from strmarr.sync.exceptions import ItemNotFoundError


class FakeCatalog:
    """In-memory catalog source"""

    def __init__(self):
        self.vod_categories = []
        self.vod_streams = {}
        self.vod_info = {}
        self.series_categories = []
        self.series = {}
        self.series_info = {}
        self.fail_categories = set()
        self.fail_series_info = set()
        self.on_fetch = None
        self.calls = Counter()
        self._lock = threading.Lock()

    def _count(self, name):
        with self._lock:
            self.calls[name] += 1

    def add_movie(self, category_id, stream_id, name, extension="mkv", tmdb_id=None):
        if category_id not in [c.category_id for c in self.vod_categories]:
            self.vod_categories.append(Category(category_id, f"Movies {category_id}"))
        movie = Movie(
            stream_id=stream_id,
            name=name,
            container_extension=extension,
            category_id=category_id,
            tmdb_id=tmdb_id,
        )
        self.vod_streams.setdefault(category_id, []).append(movie)
        self.vod_info[stream_id] = MovieDetail(stream_id, name, extension, category_id, tmdb_id)
        return movie

    def remove_movie(self, stream_id):
        for category_id, movies in self.vod_streams.items():
            self.vod_streams[category_id] = [m for m in movies if m.stream_id != stream_id]
        self.vod_info.pop(stream_id, None)

    def add_series(self, category_id, series_id, name, seasons=None, last_modified=None):
        """Add a series; seasons maps season number to episode titles."""
        if category_id not in [c.category_id for c in self.series_categories]:
            self.series_categories.append(Category(category_id, f"Series {category_id}"))
        series = Series(
            series_id=series_id,
            name=name,
            category_id=category_id,
            last_modified=last_modified or datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
        self.series.setdefault(category_id, []).append(series)

        episodes = {}
        for season, titles in (seasons or {1: ["Pilot"]}).items():
            episodes[season] = [
                Episode(
                    episode_id=series_id * 1000 + season * 100 + number,
                    episode_num=number,
                    season=season,
                    title=title,
                    container_extension="mkv",
                )
                for number, title in enumerate(titles, start=1)
            ]
        self.series_info[series_id] = SeriesInfo(series_id, name, episodes)
        return series

    def get_vod_categories(self):
        return list(self.vod_categories)

    def get_vod_streams(self, category_id):
        self._count("get_vod_streams")
        if self.on_fetch:
            self.on_fetch()
        if category_id in self.fail_categories:
            raise RuntimeError(f"category {category_id} unavailable")
        return list(self.vod_streams.get(category_id, []))

    def get_vod_info(self, vod_id):
        self._count("get_vod_info")
        if vod_id not in self.vod_info:
            raise ItemNotFoundError(f"movie {vod_id} not found")
        return self.vod_info[vod_id]

    def get_series_categories(self):
        return list(self.series_categories)

    def get_series(self, category_id):
        self._count("get_series")
        if category_id in self.fail_categories:
            raise RuntimeError(f"category {category_id} unavailable")
        return list(self.series.get(category_id, []))

    def get_series_info(self, series_id):
        self._count("get_series_info")
        if series_id in self.fail_series_info:
            raise RuntimeError(f"series {series_id} unavailable")
        if series_id not in self.series_info:
            raise ItemNotFoundError(f"series {series_id} not found")
        return self.series_info[series_id]


class FakeSearch:
    """Metadata search returning canned results keyed by lowercase title"""

    def __init__(self, movies=None, series=None, delay=0.0, error=None, delays=None):
        self.movies = movies or {}
        self.series = series or {}
        self.delay = delay
        self.delays = delays or {}
        self.error = error
        self.calls = []
        self._lock = threading.Lock()

    def _search(self, table, title, year):
        with self._lock:
            self.calls.append((title, year))
        delay = self.delays.get(title.lower(), self.delay)
        if delay:
            time.sleep(delay)
        if self.error:
            raise self.error
        results = table.get((title.lower(), year))
        if results is None:
            results = table.get(title.lower(), [])
        return list(results)

    def search_movies(self, title, year=None):
        return self._search(self.movies, title, year)

    def search_series(self, title, year=None):
        return self._search(self.series, title, year)


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def settings(temp_dir):
    """Sync settings rooted in the temp directory, metadata lookups off"""
    return SyncSettings(
        provider_url="http://provider.test",
        username="user",
        password="pass",
        library_path=temp_dir / "library",
        state_dir=temp_dir / "state",
        parallelism=2,
        metadata=MetadataSettings(enabled=False),
    )


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def make_search():
    """Factory for canned metadata searches"""
    return FakeSearch


@pytest.fixture
def make_engine(catalog):
    """Factory building an engine over the fake catalog"""
    engines = []

    def _make(settings, search=None, **kwargs):
        resolver = MetadataResolver(search, MetadataCache(), settings.metadata)
        engine = ReconciliationEngine(
            settings=settings,
            catalog=catalog,
            resolver=resolver,
            history=RunHistory(settings.state_dir / "history.json"),
            **kwargs,
        )
        engines.append(engine)
        return engine

    yield _make

    for engine in engines:
        engine.resolver.close()
