"""Capabilities the reconciliation engine depends on.

The engine only talks to these protocols; the CLI wires in the concrete
Xtream and TMDB clients.
"""

import threading
from datetime import datetime, timezone
from typing import Callable, List, Optional, Protocol

from ..models import Category, Movie, MovieDetail, SearchResult, Series, SeriesInfo
from .exceptions import SyncCancelledError

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CatalogSource(Protocol):
    """Provider catalog (Xtream player API or a test double)."""

    def get_vod_categories(self) -> List[Category]: ...

    def get_vod_streams(self, category_id: int) -> List[Movie]: ...

    def get_vod_info(self, vod_id: int) -> MovieDetail: ...

    def get_series_categories(self) -> List[Category]: ...

    def get_series(self, category_id: int) -> List[Series]: ...

    def get_series_info(self, series_id: int) -> SeriesInfo: ...


class MetadataSearch(Protocol):
    """External ID search returning ranked candidates."""

    def search_movies(self, title: str, year: Optional[int] = None) -> List[SearchResult]: ...

    def search_series(self, title: str, year: Optional[int] = None) -> List[SearchResult]: ...


class CancellationToken:
    """Cooperative cancellation signal shared by every worker of a run."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise SyncCancelledError("Sync cancelled")

    def wait(self, timeout: float) -> bool:
        """Sleep up to timeout seconds; returns True if cancelled meanwhile."""
        return self._event.wait(timeout)
