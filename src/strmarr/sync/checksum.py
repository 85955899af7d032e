"""Content fingerprints used for change detection.

Only fields that affect what ends up on disk take part in a fingerprint.
Artwork, ratings and plot text are left out so cosmetic provider edits do
not trigger a resync.
"""

import hashlib
import json

from ..config import SyncSettings
from ..models import Movie, Series


def _md5(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()


def movie_checksum(movie: Movie) -> str:
    """Fingerprint a movie from name, container and category.

    Args:
        movie: Movie as listed by the provider

    Returns:
        Lowercase hex digest
    """
    category_id = movie.category_id if movie.category_id is not None else 0
    return _md5(f"{movie.name}|{movie.container_extension or ''}|{category_id}")


def series_checksum(series: Series, episode_count: int) -> str:
    """Fingerprint a series from name, category, episode count and modification time.

    Args:
        series: Series as listed by the provider
        episode_count: Total episodes across all seasons

    Returns:
        Lowercase hex digest
    """
    category_id = series.category_id if series.category_id is not None else 0
    last_modified = series.last_modified.isoformat() if series.last_modified else ""
    return _md5(f"{series.name}|{category_id}|{episode_count}|{last_modified}")


def config_fingerprint(settings: SyncSettings) -> str:
    """Fingerprint the settings that change the on-disk layout.

    A snapshot taken under a different fingerprint is never used as a diff
    base, so changing any of these forces a full resync.
    """
    layout = {
        "movie_folder_mode": settings.movie_folder_mode,
        "movie_folder_mappings": _canonical_mappings(settings.movie_folder_mappings),
        "series_folder_mode": settings.series_folder_mode,
        "series_folder_mappings": _canonical_mappings(settings.series_folder_mappings),
        "selected_vod_categories": sorted(settings.selected_vod_categories),
        "selected_series_categories": sorted(settings.selected_series_categories),
        "metadata_enabled": settings.metadata.enabled,
        "tmdb_overrides": sorted(settings.tmdb_overrides.items()),
        "tvdb_overrides": sorted(settings.tvdb_overrides.items()),
    }
    return _md5(json.dumps(layout, sort_keys=True))


def _canonical_mappings(mappings: dict) -> list:
    return sorted((folder, sorted(ids)) for folder, ids in mappings.items())
