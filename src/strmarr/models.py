"""Data models for provider catalog items, snapshots and sync runs."""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Union


class MediaType(Enum):
    """Type of catalog item."""
    MOVIE = "movie"
    SERIES = "series"
    EPISODE = "episode"


class FileOutcome(Enum):
    """Result of writing a single pointer file."""
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"


class SyncState(Enum):
    """Lifecycle state of a reconciliation run."""
    IDLE = "idle"
    INITIALIZING = "initializing"
    FETCHING_CATALOG = "fetching_catalog"
    COMPUTING_DELTA = "computing_delta"
    SYNCING_MOVIES = "syncing_movies"
    SYNCING_SERIES = "syncing_series"
    SYNCING = "syncing"
    CLEANING_ORPHANS = "cleaning_orphans"
    SAVING_SNAPSHOT = "saving_snapshot"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class Category:
    """Provider category (VOD or series)."""
    category_id: int
    name: str
    parent_id: Optional[int] = None


@dataclass(frozen=True)
class Movie:
    """VOD stream as listed by the provider."""
    stream_id: int
    name: str
    container_extension: Optional[str] = None
    category_id: Optional[int] = None
    stream_icon: Optional[str] = None
    rating: Optional[str] = None
    added: Optional[str] = None
    tmdb_id: Optional[int] = None


@dataclass(frozen=True)
class Episode:
    """Single playable episode of a series."""
    episode_id: int
    episode_num: int
    season: int
    title: Optional[str] = None
    container_extension: Optional[str] = None


@dataclass(frozen=True)
class Series:
    """Series as listed by the provider (without episodes)."""
    series_id: int
    name: str
    category_id: Optional[int] = None
    cover: Optional[str] = None
    last_modified: Optional[datetime] = None
    rating: Optional[str] = None
    tmdb_id: Optional[int] = None


@dataclass
class SeriesInfo:
    """Series detail: episodes grouped by season number."""
    series_id: int
    name: Optional[str] = None
    episodes: Dict[int, List[Episode]] = None

    def __post_init__(self):
        if self.episodes is None:
            self.episodes = {}

    @property
    def episode_count(self) -> int:
        return sum(len(episodes) for episodes in self.episodes.values())


@dataclass
class MovieDetail:
    """Single VOD detail, used when re-resolving a failed item."""
    stream_id: int
    name: str
    container_extension: Optional[str] = None
    category_id: Optional[int] = None
    tmdb_id: Optional[int] = None

    def to_movie(self) -> Movie:
        return Movie(
            stream_id=self.stream_id,
            name=self.name,
            container_extension=self.container_extension,
            category_id=self.category_id,
            tmdb_id=self.tmdb_id,
        )


@dataclass
class SearchResult:
    """Candidate returned by an external ID search."""
    name: Optional[str]
    year: Optional[int] = None
    provider_ids: Dict[str, str] = None

    def __post_init__(self):
        if self.provider_ids is None:
            self.provider_ids = {}


@dataclass
class MovieSnapshot:
    """Persisted state of a single movie."""
    stream_id: int
    name: str
    checksum: str
    category_id: Optional[int] = None
    container_extension: Optional[str] = None
    paths: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "stream_id": self.stream_id,
            "name": self.name,
            "checksum": self.checksum,
            "category_id": self.category_id,
            "container_extension": self.container_extension,
            "paths": list(self.paths),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MovieSnapshot":
        return cls(
            stream_id=int(data["stream_id"]),
            name=data["name"],
            checksum=data["checksum"],
            category_id=data.get("category_id"),
            container_extension=data.get("container_extension"),
            paths=list(data.get("paths") or []),
        )


@dataclass
class SeriesSnapshot:
    """Persisted state of a single series."""
    series_id: int
    name: str
    checksum: str
    category_id: Optional[int] = None
    episode_count: int = 0
    last_modified: Optional[datetime] = None
    folders: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "series_id": self.series_id,
            "name": self.name,
            "checksum": self.checksum,
            "category_id": self.category_id,
            "episode_count": self.episode_count,
            "last_modified": self.last_modified.isoformat() if self.last_modified else None,
            "folders": list(self.folders),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SeriesSnapshot":
        last_modified = data.get("last_modified")
        return cls(
            series_id=int(data["series_id"]),
            name=data["name"],
            checksum=data["checksum"],
            category_id=data.get("category_id"),
            episode_count=int(data.get("episode_count") or 0),
            last_modified=datetime.fromisoformat(last_modified) if last_modified else None,
            folders=list(data.get("folders") or []),
        )


@dataclass
class Snapshot:
    """Last-known catalog state used as the diff base for incremental runs."""
    created_at: datetime
    provider_url: str
    config_fingerprint: str
    movies: Dict[int, MovieSnapshot] = field(default_factory=dict)
    series: Dict[int, SeriesSnapshot] = field(default_factory=dict)
    is_complete: bool = False
    duration_seconds: float = 0.0
    version: int = 1

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "provider_url": self.provider_url,
            "config_fingerprint": self.config_fingerprint,
            "movies": {str(k): v.to_dict() for k, v in self.movies.items()},
            "series": {str(k): v.to_dict() for k, v in self.series.items()},
            "metadata": {
                "total_movies": len(self.movies),
                "total_series": len(self.series),
                "duration_seconds": self.duration_seconds,
                "is_complete": self.is_complete,
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Snapshot":
        metadata = data.get("metadata") or {}
        return cls(
            version=int(data.get("version", 1)),
            created_at=datetime.fromisoformat(data["created_at"]),
            provider_url=data.get("provider_url") or "",
            config_fingerprint=data.get("config_fingerprint") or "",
            movies={
                int(k): MovieSnapshot.from_dict(v)
                for k, v in (data.get("movies") or {}).items()
            },
            series={
                int(k): SeriesSnapshot.from_dict(v)
                for k, v in (data.get("series") or {}).items()
            },
            is_complete=bool(metadata.get("is_complete", False)),
            duration_seconds=float(metadata.get("duration_seconds") or 0.0),
        )


@dataclass
class DeltaStats:
    """Aggregate counts for a delta."""
    total: int = 0
    new: int = 0
    modified: int = 0
    removed: int = 0
    unchanged: int = 0

    @property
    def change_percentage(self) -> float:
        denominator = self.total + self.removed
        if denominator == 0:
            return 0.0
        return (self.new + self.modified + self.removed) / denominator * 100

    def __add__(self, other: "DeltaStats") -> "DeltaStats":
        return DeltaStats(
            total=self.total + other.total,
            new=self.new + other.new,
            modified=self.modified + other.modified,
            removed=self.removed + other.removed,
            unchanged=self.unchanged + other.unchanged,
        )

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "new": self.new,
            "modified": self.modified,
            "removed": self.removed,
            "unchanged": self.unchanged,
        }


@dataclass
class Delta:
    """Partition of the current catalog against a snapshot."""
    new_movies: List[Movie] = field(default_factory=list)
    modified_movies: List[Movie] = field(default_factory=list)
    removed_movie_ids: List[int] = field(default_factory=list)
    new_series: List[Series] = field(default_factory=list)
    modified_series: List[Series] = field(default_factory=list)
    removed_series_ids: List[int] = field(default_factory=list)
    stats: DeltaStats = field(default_factory=DeltaStats)
    categories_by_id: Dict[int, List[int]] = field(default_factory=dict)

    @property
    def changed_movie_ids(self) -> set:
        return {m.stream_id for m in self.new_movies} | {m.stream_id for m in self.modified_movies}

    @property
    def changed_series_ids(self) -> set:
        return {s.series_id for s in self.new_series} | {s.series_id for s in self.modified_series}


@dataclass
class MetadataCacheEntry:
    """Cached outcome of an external ID lookup. A null ID means 'not found'."""
    tmdb_id: Optional[int] = None
    tvdb_id: Optional[int] = None
    confidence: int = 0
    last_lookup: Optional[datetime] = None


@dataclass
class FailedItem:
    """Per-item failure recorded during a run, consumed by retry."""
    item_type: MediaType
    provider_id: int
    name: str
    error: str
    timestamp: datetime
    category_id: Optional[int] = None
    series_id: Optional[int] = None
    season_number: Optional[int] = None
    episode_number: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "item_type": self.item_type.value,
            "provider_id": self.provider_id,
            "name": self.name,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
            "category_id": self.category_id,
            "series_id": self.series_id,
            "season_number": self.season_number,
            "episode_number": self.episode_number,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FailedItem":
        return cls(
            item_type=MediaType(data["item_type"]),
            provider_id=int(data["provider_id"]),
            name=data.get("name") or "",
            error=data.get("error") or "",
            timestamp=datetime.fromisoformat(data["timestamp"]),
            category_id=data.get("category_id"),
            series_id=data.get("series_id"),
            season_number=data.get("season_number"),
            episode_number=data.get("episode_number"),
        )


COUNTER_FIELDS = (
    "movies_created",
    "movies_updated",
    "movies_skipped",
    "series_created",
    "series_updated",
    "series_skipped",
    "seasons_created",
    "seasons_skipped",
    "episodes_created",
    "episodes_updated",
    "episodes_skipped",
    "files_deleted",
    "errors",
    "metadata_matched",
    "metadata_unmatched",
)


@dataclass
class RunResult:
    """Outcome of a reconciliation run (or a retry pass)."""
    start_time: datetime
    end_time: Optional[datetime] = None
    state: SyncState = SyncState.IDLE
    success: bool = False
    error: Optional[str] = None
    was_incremental: bool = False
    is_retry: bool = False
    movies_created: int = 0
    movies_updated: int = 0
    movies_skipped: int = 0
    series_created: int = 0
    series_updated: int = 0
    series_skipped: int = 0
    seasons_created: int = 0
    seasons_skipped: int = 0
    episodes_created: int = 0
    episodes_updated: int = 0
    episodes_skipped: int = 0
    files_deleted: int = 0
    errors: int = 0
    metadata_matched: int = 0
    metadata_unmatched: int = 0
    delta: Optional[DeltaStats] = None
    failed_items: List[FailedItem] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def duration_seconds(self) -> float:
        if not self.end_time:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    def increment(self, **counts: int):
        """Add to one or more counters; safe to call from worker threads."""
        with self._lock:
            for name, amount in counts.items():
                if name not in COUNTER_FIELDS:
                    raise AttributeError(f"Unknown counter: {name}")
                setattr(self, name, getattr(self, name) + amount)

    def add_failure(self, item: FailedItem):
        with self._lock:
            self.failed_items.append(item)

    def merge_counts(self, other: "RunResult"):
        """Fold another result's counters into this one."""
        self.increment(**{name: getattr(other, name) for name in COUNTER_FIELDS})

    def to_dict(self, include_failed: bool = True) -> dict:
        data: Dict[str, Union[str, int, float, bool, None, dict, list]] = {
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_seconds": self.duration_seconds,
            "state": self.state.value,
            "success": self.success,
            "error": self.error,
            "was_incremental": self.was_incremental,
            "is_retry": self.is_retry,
            "delta": self.delta.to_dict() if self.delta else None,
            "failed_count": len(self.failed_items),
        }
        for name in COUNTER_FIELDS:
            data[name] = getattr(self, name)
        if include_failed:
            data["failed_items"] = [item.to_dict() for item in self.failed_items]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "RunResult":
        end_time = data.get("end_time")
        delta = data.get("delta")
        result = cls(
            start_time=datetime.fromisoformat(data["start_time"]),
            end_time=datetime.fromisoformat(end_time) if end_time else None,
            state=SyncState(data.get("state", SyncState.IDLE.value)),
            success=bool(data.get("success", False)),
            error=data.get("error"),
            was_incremental=bool(data.get("was_incremental", False)),
            is_retry=bool(data.get("is_retry", False)),
            delta=DeltaStats(**delta) if delta else None,
            failed_items=[FailedItem.from_dict(f) for f in data.get("failed_items") or []],
        )
        for name in COUNTER_FIELDS:
            setattr(result, name, int(data.get(name) or 0))
        return result
