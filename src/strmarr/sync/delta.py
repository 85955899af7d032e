"""Partition the live catalog against the previous snapshot."""

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Union

from ..models import Delta, DeltaStats, Episode, Movie, Series, Snapshot
from .checksum import movie_checksum, series_checksum

logger = logging.getLogger(__name__)

EpisodeCounts = Dict[int, Union[int, Dict[int, Sequence[Episode]]]]


class DeltaCalculator:
    """Computes New / Modified / Unchanged / Removed sets.

    Duplicate IDs (a provider listing one item under several categories) are
    collapsed, first occurrence wins. Every category an ID was seen under is
    kept in ``Delta.categories_by_id``.
    """

    def compute_movie_delta(
        self, current_movies: Iterable[Movie], snapshot: Optional[Snapshot]
    ) -> Delta:
        """Compute the movie delta.

        Args:
            current_movies: Movies fetched this run (may contain duplicates)
            snapshot: Previous snapshot, or None for a full sync

        Returns:
            Delta with movie fields and stats populated
        """
        delta = Delta()
        previous = snapshot.movies if snapshot else {}
        seen = set()

        for movie in current_movies:
            _record_category(delta, movie.stream_id, movie.category_id)
            if movie.stream_id in seen:
                continue
            seen.add(movie.stream_id)
            delta.stats.total += 1

            entry = previous.get(movie.stream_id)
            if entry is None:
                delta.new_movies.append(movie)
                delta.stats.new += 1
            elif entry.checksum != movie_checksum(movie):
                delta.modified_movies.append(movie)
                delta.stats.modified += 1
            else:
                delta.stats.unchanged += 1

        delta.removed_movie_ids = sorted(set(previous) - seen)
        delta.stats.removed = len(delta.removed_movie_ids)

        logger.debug(
            f"Movie delta: {delta.stats.new} new, {delta.stats.modified} modified, "
            f"{delta.stats.removed} removed, {delta.stats.unchanged} unchanged"
        )
        return delta

    def compute_series_delta(
        self,
        current_series: Iterable[Series],
        episode_counts: EpisodeCounts,
        snapshot: Optional[Snapshot],
    ) -> Delta:
        """Compute the series delta.

        Args:
            current_series: Series fetched this run (may contain duplicates)
            episode_counts: Per series ID, either the season -> episodes map
                from the detail fetch or an already known total
            snapshot: Previous snapshot, or None for a full sync

        Returns:
            Delta with series fields and stats populated
        """
        delta = Delta()
        previous = snapshot.series if snapshot else {}
        seen = set()

        for series in current_series:
            _record_category(delta, series.series_id, series.category_id)
            if series.series_id in seen:
                continue
            seen.add(series.series_id)
            delta.stats.total += 1

            count = count_episodes(episode_counts.get(series.series_id))
            entry = previous.get(series.series_id)
            if entry is None:
                delta.new_series.append(series)
                delta.stats.new += 1
            elif entry.checksum != series_checksum(series, count):
                delta.modified_series.append(series)
                delta.stats.modified += 1
            else:
                delta.stats.unchanged += 1

        delta.removed_series_ids = sorted(set(previous) - seen)
        delta.stats.removed = len(delta.removed_series_ids)

        logger.debug(
            f"Series delta: {delta.stats.new} new, {delta.stats.modified} modified, "
            f"{delta.stats.removed} removed, {delta.stats.unchanged} unchanged"
        )
        return delta

    def merge_deltas(self, movie_delta: Delta, series_delta: Delta) -> Delta:
        """Combine a movie and a series delta for reporting."""
        categories = {k: list(v) for k, v in movie_delta.categories_by_id.items()}
        for item_id, ids in series_delta.categories_by_id.items():
            categories.setdefault(item_id, []).extend(ids)

        return Delta(
            new_movies=list(movie_delta.new_movies),
            modified_movies=list(movie_delta.modified_movies),
            removed_movie_ids=list(movie_delta.removed_movie_ids),
            new_series=list(series_delta.new_series),
            modified_series=list(series_delta.modified_series),
            removed_series_ids=list(series_delta.removed_series_ids),
            stats=movie_delta.stats + series_delta.stats,
            categories_by_id=categories,
        )


def count_episodes(value) -> int:
    """Total episodes from a season map, a known count, or nothing."""
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    return sum(len(episodes) for episodes in value.values())


def _record_category(delta: Delta, item_id: int, category_id: Optional[int]):
    if category_id is None:
        delta.categories_by_id.setdefault(item_id, [])
        return
    categories: List[int] = delta.categories_by_id.setdefault(item_id, [])
    if category_id not in categories:
        categories.append(category_id)
