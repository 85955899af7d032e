"""External ID resolution with a persistent cache.

Lookups are cached by normalized "type:title[:year]" key. A cached entry
with a null ID means the title was looked up and not found, so it is not
searched again until the entry expires.
"""

import logging
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import timedelta
from typing import Dict, List, Optional

from ..config import MetadataSettings
from ..db import Database
from ..models import MediaType, MetadataCacheEntry, SearchResult
from .exceptions import SyncCancelledError
from .interfaces import CancellationToken, Clock, MetadataSearch, utc_now

logger = logging.getLogger(__name__)

TITLE_YEAR = re.compile(r"\b(19\d{2}|20\d{2})\b")
WORD = re.compile(r"\w+")


def cache_key(media_type: MediaType, title: str, year: Optional[int] = None) -> str:
    key = f"{media_type.value}:{title.strip().lower()}"
    if year:
        key += f":{year}"
    return key


def extract_title_year(title: Optional[str]) -> Optional[int]:
    """A 19xx/20xx token that follows other text ("Formule 1 2023 Race" -> 2023).

    A title that starts with a year ("1917", "2001: A Space Odyssey") gives None.
    """
    if not title:
        return None
    for match in TITLE_YEAR.finditer(title):
        if title[:match.start()].strip(" ([-_.:"):
            return int(match.group(1))
    return None


def is_likely_false_positive(
    search_title: str,
    result_name: Optional[str],
    search_year: Optional[int] = None,
    result_year: Optional[int] = None,
    year_tolerance: int = 2,
    short_title_max: int = 3,
    long_title_min: int = 15,
) -> bool:
    """Reject degenerate top results from a title search.

    Args:
        search_title: Title that was searched for
        result_name: Title of the top result
        search_year: Year passed to the search, if any
        result_year: Year of the top result, if known
        year_tolerance: Allowed year difference
        short_title_max: Result titles this short are suspicious
        long_title_min: ...when the search title is at least this long

    Returns:
        True if the result should be discarded
    """
    if not result_name:
        return False

    if search_year and result_year and abs(search_year - result_year) > year_tolerance:
        return True

    if not search_year and result_year:
        title_year = extract_title_year(search_title)
        if title_year and abs(title_year - result_year) > year_tolerance:
            return True

    result_name = result_name.strip()
    if len(result_name) <= short_title_max:
        if len(search_title.strip()) >= long_title_min:
            return True
        core = "".join(WORD.findall(result_name)).lower()
        if not core or core not in WORD.findall(search_title.lower()):
            return True

    return False


class MetadataCache:
    """In-memory lookup cache backed by the state database.

    Writes are buffered; ``flush`` persists only what changed.
    """

    def __init__(
        self,
        database: Optional[Database] = None,
        max_age_days: int = 30,
        clock: Clock = utc_now,
    ):
        self.database = database
        self.max_age = timedelta(days=max_age_days)
        self.clock = clock
        self._entries: Dict[str, MetadataCacheEntry] = {}
        self._dirty = set()
        self._lock = threading.Lock()
        self._loaded = False

    def load(self):
        """Load entries from the database (once)."""
        with self._lock:
            if self._loaded:
                return
            if self.database is not None:
                self._entries.update(self.database.get_all_metadata_cache())
                logger.debug(f"Loaded {len(self._entries)} metadata cache entries")
            self._loaded = True

    def get(self, key: str) -> Optional[MetadataCacheEntry]:
        """Return a fresh entry, or None if absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.last_lookup is None or self.clock() - entry.last_lookup > self.max_age:
                return None
            return entry

    def set(self, key: str, entry: MetadataCacheEntry):
        with self._lock:
            self._entries[key] = entry
            self._dirty.add(key)

    def flush(self) -> int:
        """Persist changed entries.

        Returns:
            Number of entries written
        """
        with self._lock:
            if not self._dirty:
                return 0
            pending = {key: self._entries[key] for key in self._dirty}
            if self.database is not None:
                self.database.set_multiple_metadata_cache(pending)
            self._dirty.clear()

        logger.debug(f"Flushed {len(pending)} metadata cache entries")
        return len(pending)

    def purge_stale(self) -> int:
        """Drop expired entries from memory and the database."""
        now = self.clock()
        with self._lock:
            stale = [
                key for key, entry in self._entries.items()
                if entry.last_lookup is None or now - entry.last_lookup > self.max_age
            ]
            for key in stale:
                del self._entries[key]
                self._dirty.discard(key)
        if self.database is not None:
            return self.database.delete_stale_metadata_cache(self.max_age.days, now)
        return len(stale)

    def clear(self) -> int:
        """Forget every lookup.

        Returns:
            Number of entries removed
        """
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._dirty.clear()
        if self.database is not None:
            count = max(count, self.database.clear_metadata_cache())
        logger.info(f"Cleared metadata cache ({count} entries)")
        return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class MetadataResolver:
    """Resolves TMDB (movies) and TVDB (series) IDs for clean titles."""

    def __init__(
        self,
        search: Optional[MetadataSearch],
        cache: MetadataCache,
        settings: Optional[MetadataSettings] = None,
    ):
        """Initialize resolver.

        Args:
            search: External ID search collaborator (None disables lookups)
            cache: Lookup cache
            settings: Resolver settings
        """
        self.search = search
        self.cache = cache
        self.settings = settings or MetadataSettings()
        self._limiter = threading.BoundedSemaphore(self.settings.max_concurrent_lookups)
        self._executor_lock = threading.Lock()
        self._executor = self._new_executor()
        self._stats_lock = threading.Lock()
        self._resolved_keys = set()
        self._stats = dict.fromkeys(
            ("lookups", "cache_hits", "matched", "unmatched", "rejected", "timeouts"), 0
        )

    @property
    def enabled(self) -> bool:
        return self.settings.enabled and self.search is not None

    def resolve_movie(
        self, title: str, year: Optional[int] = None, cancel_token: Optional[CancellationToken] = None
    ) -> Optional[int]:
        """Resolve a TMDB movie ID.

        Args:
            title: Clean movie title (no year suffix)
            year: Release year, if known
            cancel_token: Run cancellation token

        Returns:
            TMDB ID or None
        """
        return self._resolve(MediaType.MOVIE, title, year, cancel_token)

    def resolve_series(
        self, title: str, year: Optional[int] = None, cancel_token: Optional[CancellationToken] = None
    ) -> Optional[int]:
        """Resolve a TVDB series ID.

        Args:
            title: Clean series title (no year suffix)
            year: First-air year, if known
            cancel_token: Run cancellation token

        Returns:
            TVDB ID or None
        """
        return self._resolve(MediaType.SERIES, title, year, cancel_token)

    def _resolve(
        self,
        media_type: MediaType,
        title: str,
        year: Optional[int],
        cancel_token: Optional[CancellationToken],
    ) -> Optional[int]:
        if not self.enabled or not title or not title.strip():
            return None

        external_id = self._lookup(media_type, title, year, cancel_token)
        if external_id is None and year is not None and self.settings.yearless_fallback:
            logger.debug(f"  No match for '{title}' ({year}), retrying without year")
            external_id = self._lookup(media_type, title, None, cancel_token)

        key = cache_key(media_type, title, year)
        with self._stats_lock:
            first = key not in self._resolved_keys
            self._resolved_keys.add(key)
        if first:
            self._count("matched" if external_id is not None else "unmatched")
        return external_id

    def _lookup(
        self,
        media_type: MediaType,
        title: str,
        year: Optional[int],
        cancel_token: Optional[CancellationToken],
    ) -> Optional[int]:
        key = cache_key(media_type, title, year)
        cached = self.cache.get(key)
        if cached is not None:
            self._count("cache_hits")
            return cached.tmdb_id if media_type == MediaType.MOVIE else cached.tvdb_id

        self._acquire(cancel_token)
        try:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            self._count("lookups")
            search_fn = (
                self.search.search_movies if media_type == MediaType.MOVIE
                else self.search.search_series
            )
            with self._executor_lock:
                executor = self._executor
            future = executor.submit(search_fn, title, year)
            try:
                results: List[SearchResult] = future.result(timeout=self.settings.lookup_timeout)
            except FutureTimeoutError:
                future.cancel()
                self._retire_executor(executor)
                self._count("timeouts")
                logger.warning(
                    f"  Metadata lookup timed out after {self.settings.lookup_timeout}s: "
                    f"{media_type.value} '{title}'"
                )
                return None
            except Exception as e:
                logger.warning(f"  Metadata lookup failed for {media_type.value} '{title}': {e}")
                return None
        finally:
            self._limiter.release()

        external_id = None
        confidence = 0
        if results:
            top = results[0]
            if is_likely_false_positive(
                title,
                top.name,
                year,
                top.year,
                year_tolerance=self.settings.year_tolerance,
                short_title_max=self.settings.short_title_max,
                long_title_min=self.settings.long_title_min,
            ):
                self._count("rejected")
                logger.info(
                    f"  Rejected likely false positive for '{title}': "
                    f"'{top.name}' ({top.year or 'n/a'})"
                )
            else:
                id_field = "tmdb" if media_type == MediaType.MOVIE else "tvdb"
                external_id = _parse_id(top.provider_ids.get(id_field))
                if external_id is not None:
                    confidence = 100 if year else 80

        entry = MetadataCacheEntry(confidence=confidence, last_lookup=self.cache.clock())
        if media_type == MediaType.MOVIE:
            entry.tmdb_id = external_id
        else:
            entry.tvdb_id = external_id
        self.cache.set(key, entry)
        return external_id

    def _new_executor(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(
            max_workers=self.settings.max_concurrent_lookups,
            thread_name_prefix="metadata-lookup",
        )

    def _retire_executor(self, executor: ThreadPoolExecutor):
        """Leave a hung search to finish on its own pool and submit to a fresh one.

        The pool has one worker per limiter slot, so a slot released on
        timeout must come with a free worker.
        """
        with self._executor_lock:
            if self._executor is not executor:
                return
            self._executor = self._new_executor()
        executor.shutdown(wait=False)

    def _acquire(self, cancel_token: Optional[CancellationToken]):
        if cancel_token is None:
            self._limiter.acquire()
            return
        while not self._limiter.acquire(timeout=0.25):
            if cancel_token.is_cancelled:
                raise SyncCancelledError("Sync cancelled while waiting for metadata lookup")

    def _count(self, name: str, amount: int = 1):
        with self._stats_lock:
            self._stats[name] += amount

    def stats(self) -> Dict[str, int]:
        with self._stats_lock:
            return dict(self._stats)

    def reset_stats(self):
        with self._stats_lock:
            for name in self._stats:
                self._stats[name] = 0
            self._resolved_keys.clear()

    def flush(self) -> int:
        return self.cache.flush()

    def close(self):
        with self._executor_lock:
            executor = self._executor
        executor.shutdown(wait=False)


def _parse_id(value) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
