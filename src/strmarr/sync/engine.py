"""Reconciliation engine: mirror the provider catalog into the .strm library."""

import dataclasses
import logging
import shutil
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set, Tuple

from ..config import SyncSettings
from ..db import Database
from ..models import (
    Category,
    Delta,
    FailedItem,
    FileOutcome,
    MediaType,
    Movie,
    MovieSnapshot,
    RunResult,
    Series,
    SeriesInfo,
    SeriesSnapshot,
    Snapshot,
    SyncState,
)
from .checksum import config_fingerprint, movie_checksum, series_checksum
from .delta import DeltaCalculator
from .exceptions import (
    ItemNotFoundError,
    SyncAlreadyRunningError,
    SyncCancelledError,
    SyncSuppressedError,
)
from .files import (
    SyncedPaths,
    combine_outcomes,
    count_strm_files,
    remove_empty_dirs,
    scan_item_folders,
    scan_strm_files,
    write_if_changed,
)
from .interfaces import CancellationToken, CatalogSource, Clock, utc_now
from .metadata import MetadataResolver
from .naming import (
    build_episode_file_name,
    build_folder_name,
    build_movie_file_name,
    build_rules,
    clean_name,
    episode_stream_url,
    extract_year,
    movie_stream_url,
    sanitize_file_name,
    season_folder_name,
    split_version_label,
    strip_id_suffix,
)
from .nfo import build_episode_nfo, build_movie_nfo, nfo_path_for
from .progress import ProgressTracker, RunHistory
from .snapshot import SnapshotStore

logger = logging.getLogger(__name__)

SUPPRESS_KEY = "suppress_scheduled_runs"
OUT_OF_MEMORY_MESSAGE = (
    "Out of memory during sync; reduce sync.category_batch_size to process "
    "fewer categories at a time"
)


@dataclass
class _RunContext:
    """Mutable state of one run, shared by the worker threads."""
    result: RunResult
    token: CancellationToken
    base: Optional[Snapshot] = None
    concurrent: bool = False
    registry: SyncedPaths = field(default_factory=SyncedPaths)
    existing_folders: Dict[Path, Dict[str, str]] = field(default_factory=dict)
    previous_movie_files: Set[str] = field(default_factory=set)
    previous_series_files: Set[str] = field(default_factory=set)
    movie_categories: Dict[int, List[int]] = field(default_factory=dict)
    series_categories: Dict[int, List[int]] = field(default_factory=dict)
    seen_movies: Set[int] = field(default_factory=set)
    seen_series: Set[int] = field(default_factory=set)
    version_keys: Set[Tuple[str, str]] = field(default_factory=set)
    suffixed_movies: Set[int] = field(default_factory=set)
    all_movies: List[Movie] = field(default_factory=list)
    all_series: List[Series] = field(default_factory=list)
    movie_entries: Dict[int, MovieSnapshot] = field(default_factory=dict)
    series_entries: Dict[int, SeriesSnapshot] = field(default_factory=dict)
    episode_counts: Dict[int, int] = field(default_factory=dict)
    failed_movies: Set[int] = field(default_factory=set)
    failed_series: Set[int] = field(default_factory=set)
    incomplete: Set[MediaType] = field(default_factory=set)
    movie_delta: Optional[Delta] = None
    series_delta: Optional[Delta] = None
    lock: threading.Lock = field(default_factory=threading.Lock)


class ReconciliationEngine:
    """Runs full or incremental syncs of the catalog into the library.

    One run at a time; cancellation is cooperative through a token checked
    between batches, before every item and while waiting on lookups.
    """

    def __init__(
        self,
        settings: SyncSettings,
        catalog: CatalogSource,
        resolver: MetadataResolver,
        database: Optional[Database] = None,
        snapshot_store: Optional[SnapshotStore] = None,
        history: Optional[RunHistory] = None,
        progress: Optional[ProgressTracker] = None,
        clock: Clock = utc_now,
        on_event: Optional[Callable[..., None]] = None,
    ):
        """Initialize engine.

        Args:
            settings: Sync settings for this engine
            catalog: Provider catalog source
            resolver: External ID resolver
            database: State database (persists the suppress flag)
            snapshot_store: Snapshot store (defaults under settings.state_dir)
            history: Run history (defaults under settings.state_dir)
            progress: Progress tracker
            clock: Source of the current time
            on_event: Callback for notable events, e.g. a blocked orphan sweep
        """
        self.settings = settings
        self.catalog = catalog
        self.resolver = resolver
        self.database = database
        self.clock = clock
        self.snapshots = snapshot_store or SnapshotStore(
            settings.state_dir / "snapshots", settings.snapshot_retention, clock
        )
        self.history = history if history is not None else RunHistory(settings.state_dir / "history.json")
        self.progress = progress or ProgressTracker(clock)
        self.delta_calculator = DeltaCalculator()
        self.on_event = on_event
        self._rules = build_rules(settings.remove_terms)
        self._run_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._state = SyncState.IDLE
        self._token: Optional[CancellationToken] = None
        self._suppressed = False

    # -- control surface -------------------------------------------------

    @property
    def state(self) -> SyncState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: SyncState):
        with self._state_lock:
            self._state = state
        logger.debug(f"Sync state: {state.value}")

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    @property
    def is_suppressed(self) -> bool:
        if self.database is not None:
            return self.database.get_state(SUPPRESS_KEY) == "1"
        return self._suppressed

    def suppress(self):
        """Block scheduled runs until the next manual run."""
        if self.database is not None:
            self.database.set_state(SUPPRESS_KEY, "1")
        self._suppressed = True
        logger.info("Scheduled sync runs suppressed until the next manual run")

    def clear_suppression(self):
        if self.database is not None:
            self.database.set_state(SUPPRESS_KEY, None)
        self._suppressed = False

    def cancel(self) -> bool:
        """Request cancellation of the active run.

        Returns:
            True if a run was active
        """
        token = self._token
        if token is None:
            return False
        logger.info("Cancellation requested")
        token.cancel()
        return True

    def failed_items(self) -> List[FailedItem]:
        return self.history.failed_items()

    def status(self) -> dict:
        return {
            "state": self.state.value,
            "is_running": self.is_running,
            "is_suppressed": self.is_suppressed,
            "has_snapshot": self.snapshots.has_snapshot(),
            "progress": self.progress.snapshot(),
            "last_result": self.history.last(),
        }

    def _emit(self, event: str, **kwargs):
        if self.on_event is not None:
            self.on_event(event, **kwargs)

    # -- run -------------------------------------------------------------

    def run(self, trigger: str = "manual", force_full: bool = False) -> RunResult:
        """Run one reconciliation.

        Args:
            trigger: "manual" clears suppression, "scheduled" respects it
            force_full: Ignore the snapshot and process every item

        Returns:
            RunResult (also recorded in history)

        Raises:
            SyncSuppressedError: Scheduled run while suppressed
            SyncAlreadyRunningError: Another run is active
        """
        if trigger == "scheduled" and self.is_suppressed:
            raise SyncSuppressedError(
                "Scheduled sync is suppressed; run a manual sync to re-enable it"
            )
        if not self._run_lock.acquire(blocking=False):
            raise SyncAlreadyRunningError("A sync is already running")

        try:
            if trigger == "manual" and self.is_suppressed:
                self.clear_suppression()
                logger.info("Manual sync cleared scheduled-run suppression")

            token = CancellationToken()
            self._token = token
            result = RunResult(start_time=self.clock())
            self.progress.start()
            self.resolver.reset_stats()
            logger.info(f"Starting {trigger} sync of {self.settings.provider_url}")

            try:
                self._execute(result, token, force_full)
            except SyncCancelledError:
                result.state = SyncState.CANCELLED
                result.error = "Sync was cancelled"
                logger.info("Sync cancelled")
            except MemoryError:
                result.state = SyncState.FAILED
                result.error = OUT_OF_MEMORY_MESSAGE
                logger.error(OUT_OF_MEMORY_MESSAGE)
            except Exception as e:
                result.state = SyncState.FAILED
                result.error = str(e)
                logger.exception(f"Sync failed: {e}")
            finally:
                self._finish(result)

            return result
        finally:
            self._run_lock.release()

    def _finish(self, result: RunResult):
        """Flush caches and persist history, whatever the outcome."""
        self._set_state(result.state)
        try:
            self.resolver.flush()
        except Exception as e:
            logger.error(f"Failed to flush metadata cache: {e}")
            result.increment(errors=1)

        stats = self.resolver.stats()
        result.metadata_matched = stats["matched"]
        result.metadata_unmatched = stats["unmatched"]
        result.end_time = self.clock()

        try:
            self.history.record(result)
        except OSError as e:
            logger.error(f"Failed to save run history: {e}")
            result.increment(errors=1)

        self.progress.finish()
        self._token = None
        _log_summary(result)

    def _execute(self, result: RunResult, token: CancellationToken, force_full: bool):
        settings = self.settings
        self._set_state(SyncState.INITIALIZING)
        self.progress.set_phase("Initializing")
        settings.library_path.mkdir(parents=True, exist_ok=True)

        fingerprint = config_fingerprint(settings)
        ctx = self._new_context(result, token, self._load_diff_base(fingerprint, force_full))
        result.was_incremental = ctx.base is not None

        passes = []
        if settings.sync_movies:
            passes.append(self._sync_movies)
        if settings.sync_series:
            passes.append(self._sync_series)

        if settings.parallel_content_types and settings.parallelism > 1 and len(passes) > 1:
            ctx.concurrent = True
            self._set_state(SyncState.SYNCING)
            with ThreadPoolExecutor(max_workers=len(passes), thread_name_prefix="content") as pool:
                futures = [pool.submit(sync_pass, ctx) for sync_pass in passes]
                try:
                    for future in as_completed(futures):
                        future.result()
                except BaseException:
                    token.cancel()
                    raise
        else:
            for sync_pass in passes:
                sync_pass(ctx)

        token.raise_if_cancelled()

        if ctx.movie_delta or ctx.series_delta:
            result.delta = self.delta_calculator.merge_deltas(
                ctx.movie_delta or Delta(), ctx.series_delta or Delta()
            ).stats

        if settings.cleanup_orphans:
            self._set_state(SyncState.CLEANING_ORPHANS)
            self.progress.set_phase("Cleaning orphans")
            self._sweep_orphans(ctx)

        token.raise_if_cancelled()

        if settings.incremental:
            self._set_state(SyncState.SAVING_SNAPSHOT)
            self.progress.set_phase("Saving snapshot")
            snapshot = Snapshot(
                created_at=self.clock(),
                provider_url=settings.provider_url,
                config_fingerprint=fingerprint,
                movies=dict(ctx.movie_entries),
                series=dict(ctx.series_entries),
                is_complete=True,
                duration_seconds=(self.clock() - result.start_time).total_seconds(),
            )
            try:
                self.snapshots.save(snapshot)
            except OSError as e:
                logger.error(f"Failed to save snapshot: {e}")
                result.increment(errors=1)

        result.state = SyncState.COMPLETE
        result.success = True

    def _load_diff_base(self, fingerprint: str, force_full: bool) -> Optional[Snapshot]:
        if not self.settings.incremental:
            return None
        if force_full:
            logger.info("Full sync requested, ignoring snapshot")
            return None

        snapshot = self.snapshots.load_latest()
        if snapshot is None:
            logger.info("No valid snapshot found, running full sync")
            return None
        if snapshot.provider_url != self.settings.provider_url:
            logger.info("Provider changed since last snapshot, running full sync")
            return None
        if snapshot.config_fingerprint != fingerprint:
            logger.info("Library layout settings changed since last snapshot, running full sync")
            return None

        logger.info(
            f"Incremental sync against snapshot from {snapshot.created_at.isoformat()} "
            f"({len(snapshot.movies)} movies, {len(snapshot.series)} series)"
        )
        return snapshot

    def _new_context(
        self, result: RunResult, token: CancellationToken, base: Optional[Snapshot]
    ) -> _RunContext:
        settings = self.settings
        ctx = _RunContext(result=result, token=token, base=base)
        ctx.previous_movie_files = scan_strm_files(settings.movies_root)
        ctx.previous_series_files = scan_strm_files(settings.series_root)

        roots = self._layout_roots(
            settings.movies_root, settings.movie_folder_mode, settings.movie_folder_mappings
        ) + self._layout_roots(
            settings.series_root, settings.series_folder_mode, settings.series_folder_mappings
        )
        ctx.existing_folders = scan_item_folders(roots)

        for root, mappings in (
            (settings.movies_root, settings.movie_folder_mappings),
            (settings.series_root, settings.series_folder_mappings),
        ):
            # Mapped category folders are not item folders.
            for folder in mappings:
                ctx.existing_folders.get(root, {}).pop(folder.lower(), None)

        logger.debug(
            f"Library scan: {len(ctx.previous_movie_files)} movie files, "
            f"{len(ctx.previous_series_files)} episode files"
        )
        return ctx

    @staticmethod
    def _layout_roots(root: Path, mode: str, mappings: Dict[str, List[int]]) -> List[Path]:
        if mode != "multiple":
            return [root]
        return [root] + [root / folder for folder in mappings]

    @staticmethod
    def _target_roots(
        root: Path, mode: str, mappings: Dict[str, List[int]], categories: List[int]
    ) -> List[Path]:
        """Folders an item belongs in; unmapped categories go to the root."""
        if mode != "multiple" or not mappings:
            return [root]
        targets = [
            root / folder for folder, ids in mappings.items()
            if any(category in ids for category in categories)
        ]
        return targets or [root]

    # -- catalog fetching --------------------------------------------------

    @staticmethod
    def _select(categories: List[Category], selected: List[int], label: str) -> List[Category]:
        if not selected:
            return categories
        wanted = set(selected)
        chosen = [c for c in categories if c.category_id in wanted]
        logger.info(f"Using {len(chosen)} of {len(categories)} {label} categories")
        return chosen

    def _batches(self, categories: List[Category]) -> List[List[Category]]:
        size = self.settings.category_batch_size
        if size <= 0 or size >= len(categories):
            return [categories] if categories else []
        return [categories[i:i + size] for i in range(0, len(categories), size)]

    def _fetch_categories(
        self,
        ctx: _RunContext,
        categories: List[Category],
        fetch: Callable[[int], list],
        media_type: MediaType,
    ) -> List[Tuple[int, object]]:
        """Fetch category listings concurrently; failures are counted, not raised.

        Returns:
            (category_id, item) pairs in category order
        """
        listings: Dict[int, list] = {}

        def fetch_one(category: Category) -> list:
            ctx.token.raise_if_cancelled()
            return fetch(category.category_id)

        workers = max(1, min(self.settings.parallelism, len(categories)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fetch") as pool:
            future_map = {pool.submit(fetch_one, c): c for c in categories}
            for future in as_completed(future_map):
                category = future_map[future]
                try:
                    listings[category.category_id] = future.result()
                except (SyncCancelledError, MemoryError):
                    ctx.token.cancel()
                    raise
                except Exception as e:
                    logger.error(
                        f"Failed to fetch {media_type.value} category "
                        f"'{category.name}' ({category.category_id}): {e}"
                    )
                    ctx.result.increment(errors=1)
                    with ctx.lock:
                        ctx.incomplete.add(media_type)

        pairs = []
        for category in categories:
            for item in listings.get(category.category_id, []):
                pairs.append((category.category_id, item))
        return pairs

    def _run_parallel(self, ctx: _RunContext, items: list, worker: Callable):
        """Fan items out to a bounded pool; the first cancellation stops the rest."""
        if not items:
            return
        workers = max(1, self.settings.parallelism)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sync") as pool:
            futures = [pool.submit(worker, ctx, item) for item in items]
            try:
                for future in as_completed(futures):
                    future.result()
            except BaseException:
                ctx.token.cancel()
                for future in futures:
                    future.cancel()
                raise

    def _enter(self, ctx: _RunContext, state: SyncState, phase: str):
        if not ctx.concurrent:
            self._set_state(state)
        self.progress.set_phase(phase)

    # -- movies ------------------------------------------------------------

    def _sync_movies(self, ctx: _RunContext):
        settings = self.settings
        self._enter(ctx, SyncState.FETCHING_CATALOG, "Fetching movie categories")
        try:
            categories = self.catalog.get_vod_categories()
        except (SyncCancelledError, MemoryError):
            raise
        except Exception as e:
            logger.error(f"Failed to fetch movie categories: {e}")
            ctx.result.increment(errors=1)
            ctx.incomplete.add(MediaType.MOVIE)
            return

        categories = self._select(categories, settings.selected_vod_categories, "movie")
        batches = self._batches(categories)

        for index, batch in enumerate(batches, start=1):
            ctx.token.raise_if_cancelled()
            self._enter(
                ctx, SyncState.FETCHING_CATALOG,
                f"Fetching movies (batch {index}/{len(batches)})",
            )
            pairs = self._fetch_categories(ctx, batch, self.catalog.get_vod_streams, MediaType.MOVIE)

            batch_movies: List[Movie] = []
            batch_ids: Set[int] = set()
            joined: Set[int] = set()
            for category_id, movie in pairs:
                memberships = ctx.movie_categories.setdefault(movie.stream_id, [])
                if category_id not in memberships:
                    memberships.append(category_id)
                    if movie.stream_id in ctx.seen_movies and movie.stream_id not in batch_ids:
                        joined.add(movie.stream_id)
                if movie.stream_id in ctx.seen_movies:
                    continue
                batch_ids.add(movie.stream_id)
                if movie.category_id is None:
                    movie = dataclasses.replace(movie, category_id=category_id)
                ctx.seen_movies.add(movie.stream_id)
                ctx.all_movies.append(movie)
                batch_movies.append(movie)

            self._assign_version_suffixes(ctx, batch_movies)
            self.progress.add_total(len(batch_movies))
            to_process = batch_movies

            if ctx.base is not None:
                self._enter(ctx, SyncState.COMPUTING_DELTA, "Computing movie changes")
                delta = self.delta_calculator.compute_movie_delta(batch_movies, ctx.base)
                to_process = self._keep_unchanged_movies(ctx, batch_movies, delta.changed_movie_ids)

            self._enter(
                ctx, SyncState.SYNCING_MOVIES,
                f"Syncing {len(to_process)} movies (batch {index}/{len(batches)})",
            )
            self._run_parallel(ctx, to_process, self._prefetch_movie_metadata)
            self._run_parallel(ctx, to_process, self._process_movie_safe)
            if joined:
                earlier = [m for m in ctx.all_movies if m.stream_id in joined]
                self._run_parallel(ctx, earlier, self._extend_movie_safe)

        ctx.movie_delta = self.delta_calculator.compute_movie_delta(ctx.all_movies, ctx.base)

    def _assign_version_suffixes(self, ctx: _RunContext, movies: List[Movie]):
        """Mark movies whose name and label repeat an earlier listing.

        Later duplicates get their stream ID appended to the label, decided in
        listing order so file names are stable from run to run.
        """
        for movie in movies:
            title, year, label = self._movie_title(movie)
            key = (build_folder_name(title, year).lower(), (label or "").lower())
            if key in ctx.version_keys:
                ctx.suffixed_movies.add(movie.stream_id)
            else:
                ctx.version_keys.add(key)

    def _keep_unchanged_movies(
        self, ctx: _RunContext, movies: List[Movie], changed: Set[int]
    ) -> List[Movie]:
        """Register unchanged movies whose files are intact; return the rest."""
        to_process = []
        kept = 0
        for movie in movies:
            entry = ctx.base.movies.get(movie.stream_id) if movie.stream_id not in changed else None
            if entry and entry.paths and all(Path(p).exists() for p in entry.paths):
                ctx.registry.keep(entry.paths, owner=f"movie:{movie.stream_id}")
                self._record_movie(ctx, movie, entry.paths)
                ctx.result.increment(movies_skipped=1)
                self.progress.item_done()
                kept += 1
            else:
                to_process.append(movie)
        logger.info(f"Movies: {kept} unchanged, {len(to_process)} to process")
        return to_process

    def _movie_title(self, movie: Movie) -> Tuple[str, Optional[int], Optional[str]]:
        cleaned, label = split_version_label(movie.name, self._rules)
        year = extract_year(cleaned, self.clock())
        return sanitize_file_name(cleaned), year, label

    def _movie_id(
        self, ctx: _RunContext, title: str, year: Optional[int], movie: Movie
    ) -> Tuple[Optional[str], Optional[int]]:
        """Pick the folder ID: override, then provider, then resolver."""
        override = self.settings.tmdb_overrides.get(title.lower())
        if override:
            return "tmdb", override
        if movie.tmdb_id:
            return "tmdb", movie.tmdb_id
        resolved = self.resolver.resolve_movie(title, year, ctx.token)
        if resolved:
            return "tmdb", resolved
        return None, None

    def _movie_roots(self, ctx: _RunContext, movie: Movie) -> List[Path]:
        categories = ctx.movie_categories.get(movie.stream_id) or (
            [movie.category_id] if movie.category_id is not None else []
        )
        return self._target_roots(
            self.settings.movies_root,
            self.settings.movie_folder_mode,
            self.settings.movie_folder_mappings,
            categories,
        )

    def _existing_folder(self, ctx: _RunContext, root: Path, key: str) -> Optional[str]:
        with ctx.lock:
            return ctx.existing_folders.get(root, {}).get(key)

    def _claim_folder(self, ctx: _RunContext, root: Path, key: str, folder: str) -> str:
        with ctx.lock:
            return ctx.existing_folders.setdefault(root, {}).setdefault(key, folder)

    def _prefetch_movie_metadata(self, ctx: _RunContext, movie: Movie):
        """Warm the lookup cache for movies that have no folder yet."""
        ctx.token.raise_if_cancelled()
        if not self.resolver.enabled or movie.tmdb_id:
            return
        title, year, _ = self._movie_title(movie)
        if self.settings.tmdb_overrides.get(title.lower()):
            return
        key = build_folder_name(title, year).lower()
        if all(self._existing_folder(ctx, root, key) for root in self._movie_roots(ctx, movie)):
            return
        try:
            self.resolver.resolve_movie(title, year, ctx.token)
        except SyncCancelledError:
            raise
        except Exception as e:
            logger.debug(f"  Metadata prefetch failed for '{title}': {e}")

    def _process_movie_safe(self, ctx: _RunContext, movie: Movie):
        try:
            self._process_movie(ctx, movie)
        except (SyncCancelledError, MemoryError):
            raise
        except Exception as e:
            self._movie_failed(ctx, movie, e)

    def _movie_failed(self, ctx: _RunContext, movie: Movie, error: Exception, item_done: bool = True):
        logger.error(f"  ✗ Failed to sync movie '{movie.name}' ({movie.stream_id}): {error}")
        with ctx.lock:
            ctx.failed_movies.add(movie.stream_id)
            ctx.movie_entries.pop(movie.stream_id, None)
        self._keep_movie_files(ctx, movie)
        ctx.result.add_failure(FailedItem(
            item_type=MediaType.MOVIE,
            provider_id=movie.stream_id,
            name=movie.name,
            error=str(error),
            timestamp=self.clock(),
            category_id=movie.category_id,
        ))
        if item_done:
            self.progress.item_done()

    def _keep_movie_files(self, ctx: _RunContext, movie: Movie):
        """Shield a failed movie's files from the orphan sweep; the provider still lists it."""
        entry = ctx.base.movies.get(movie.stream_id) if ctx.base is not None else None
        if entry is not None:
            ctx.registry.protect(entry.paths)
        title, year, _ = self._movie_title(movie)
        key = build_folder_name(title, year).lower()
        for root in self._movie_roots(ctx, movie):
            folder = self._existing_folder(ctx, root, key)
            if folder is not None:
                ctx.registry.protect(scan_strm_files(root / folder))

    def _process_movie(self, ctx: _RunContext, movie: Movie):
        ctx.token.raise_if_cancelled()
        outcomes, paths = self._write_movie(ctx, movie, self._movie_roots(ctx, movie))
        combined = combine_outcomes(outcomes)
        ctx.result.increment(**{f"movies_{combined.value}": 1})
        self.progress.item_done(
            created=int(combined == FileOutcome.CREATED),
            updated=int(combined == FileOutcome.UPDATED),
        )
        self._record_movie(ctx, movie, paths)

    def _extend_movie_safe(self, ctx: _RunContext, movie: Movie):
        try:
            self._extend_movie(ctx, movie)
        except (SyncCancelledError, MemoryError):
            raise
        except Exception as e:
            self._movie_failed(ctx, movie, e, item_done=False)

    def _extend_movie(self, ctx: _RunContext, movie: Movie):
        """Add folders for categories a movie joined after it was written."""
        ctx.token.raise_if_cancelled()
        with ctx.lock:
            entry = ctx.movie_entries.get(movie.stream_id)
        if entry is None:
            return
        written = {Path(p).parent.parent for p in entry.paths}
        roots = [root for root in self._movie_roots(ctx, movie) if root not in written]
        if not roots:
            return
        _, paths = self._write_movie(ctx, movie, roots)
        logger.debug(f"  Added {movie.name} to {', '.join(root.name for root in roots)}")
        self._record_movie(ctx, movie, list(entry.paths) + paths)

    def _write_movie(
        self, ctx: _RunContext, movie: Movie, roots: List[Path]
    ) -> Tuple[List[FileOutcome], List[str]]:
        """Write the movie's pointer (and NFO) below each root."""
        settings = self.settings
        title, year, label = self._movie_title(movie)
        if movie.stream_id in ctx.suffixed_movies:
            label = f"{label} {movie.stream_id}" if label else str(movie.stream_id)
        key = build_folder_name(title, year).lower()
        url = movie_stream_url(
            settings.provider_url, settings.username, settings.password,
            movie.stream_id, movie.container_extension,
        )
        owner = f"movie:{movie.stream_id}"

        identity = None
        outcomes = []
        paths = []
        for root in roots:
            folder = self._existing_folder(ctx, root, key)
            if folder is None:
                if identity is None:
                    identity = self._movie_id(ctx, title, year, movie)
                folder = self._claim_folder(ctx, root, key, build_folder_name(title, year, *identity))

            folder_base = strip_id_suffix(folder)
            path = root / folder / build_movie_file_name(folder_base, label)
            if not ctx.registry.claim(path, owner):
                alt_label = f"{label} {movie.stream_id}" if label else str(movie.stream_id)
                path = root / folder / build_movie_file_name(folder_base, alt_label)
                ctx.registry.claim(path, owner)

            outcome = write_if_changed(path, url)
            if settings.write_nfo:
                tmdb_id = identity[1] if identity and identity[0] == "tmdb" else None
                write_if_changed(nfo_path_for(path), build_movie_nfo(title, year, tmdb_id))

            logger.debug(f"  {outcome.value}: {path.name}")
            outcomes.append(outcome)
            paths.append(str(path))
        return outcomes, paths

    def _record_movie(self, ctx: _RunContext, movie: Movie, paths: List[str]):
        with ctx.lock:
            if movie.stream_id in ctx.failed_movies:
                return
            ctx.movie_entries[movie.stream_id] = MovieSnapshot(
                stream_id=movie.stream_id,
                name=movie.name,
                checksum=movie_checksum(movie),
                category_id=movie.category_id,
                container_extension=movie.container_extension,
                paths=list(paths),
            )

    # -- series ------------------------------------------------------------

    def _sync_series(self, ctx: _RunContext):
        settings = self.settings
        self._enter(ctx, SyncState.FETCHING_CATALOG, "Fetching series categories")
        try:
            categories = self.catalog.get_series_categories()
        except (SyncCancelledError, MemoryError):
            raise
        except Exception as e:
            logger.error(f"Failed to fetch series categories: {e}")
            ctx.result.increment(errors=1)
            ctx.incomplete.add(MediaType.SERIES)
            return

        categories = self._select(categories, settings.selected_series_categories, "series")
        batches = self._batches(categories)

        for index, batch in enumerate(batches, start=1):
            ctx.token.raise_if_cancelled()
            self._enter(
                ctx, SyncState.FETCHING_CATALOG,
                f"Fetching series (batch {index}/{len(batches)})",
            )
            pairs = self._fetch_categories(ctx, batch, self.catalog.get_series, MediaType.SERIES)

            batch_series: List[Series] = []
            batch_ids: Set[int] = set()
            joined: Set[int] = set()
            for category_id, series in pairs:
                memberships = ctx.series_categories.setdefault(series.series_id, [])
                if category_id not in memberships:
                    memberships.append(category_id)
                    if series.series_id in ctx.seen_series and series.series_id not in batch_ids:
                        joined.add(series.series_id)
                if series.series_id in ctx.seen_series:
                    continue
                batch_ids.add(series.series_id)
                if series.category_id is None:
                    series = dataclasses.replace(series, category_id=category_id)
                ctx.seen_series.add(series.series_id)
                ctx.all_series.append(series)
                batch_series.append(series)

            self.progress.add_total(len(batch_series))
            to_fetch = [s for s in batch_series if not self._try_smart_skip(ctx, s)]
            if len(to_fetch) < len(batch_series):
                logger.info(
                    f"Series: {len(batch_series) - len(to_fetch)} skipped before detail fetch, "
                    f"{len(to_fetch)} to fetch"
                )

            self._enter(
                ctx, SyncState.SYNCING_SERIES,
                f"Syncing {len(to_fetch)} series (batch {index}/{len(batches)})",
            )
            infos: Dict[int, SeriesInfo] = {}
            self._run_parallel(ctx, to_fetch, lambda c, s: self._prefetch_series_info(c, s, infos))
            fetched = [(s, infos[s.series_id]) for s in to_fetch if s.series_id in infos]
            self._run_parallel(ctx, fetched, self._process_series_safe)
            if joined:
                earlier = [s for s in ctx.all_series if s.series_id in joined]
                self._run_parallel(ctx, earlier, self._extend_series_safe)

        ctx.series_delta = self.delta_calculator.compute_series_delta(
            ctx.all_series, ctx.episode_counts, ctx.base
        )

    def _folders_complete(self, folders: List[str], episode_count: int) -> bool:
        return all(
            Path(folder).is_dir() and count_strm_files(Path(folder)) >= episode_count
            for folder in folders
        )

    def _keep_series(self, ctx: _RunContext, series: Series, entry: SeriesSnapshot):
        for folder in entry.folders:
            ctx.registry.keep(scan_strm_files(Path(folder)), owner=f"series:{series.series_id}")
        with ctx.lock:
            ctx.episode_counts[series.series_id] = entry.episode_count
        self._record_series(ctx, series, entry.episode_count, entry.folders)
        ctx.result.increment(series_skipped=1, episodes_skipped=entry.episode_count)
        self.progress.item_done()

    def _try_smart_skip(self, ctx: _RunContext, series: Series) -> bool:
        """Skip the detail fetch when the snapshot hint proves nothing changed."""
        if not self.settings.smart_skip or ctx.base is None:
            return False
        hint = ctx.base.series.get(series.series_id)
        if hint is None or not hint.folders or series.last_modified is None:
            return False
        if hint.last_modified != series.last_modified:
            return False
        if series_checksum(series, hint.episode_count) != hint.checksum:
            return False
        if not self._folders_complete(hint.folders, hint.episode_count):
            return False

        logger.debug(f"  Smart skip: {series.name} ({hint.episode_count} episodes on disk)")
        self._keep_series(ctx, series, hint)
        return True

    def _prefetch_series_info(self, ctx: _RunContext, series: Series, infos: Dict[int, SeriesInfo]):
        ctx.token.raise_if_cancelled()
        try:
            info = self.catalog.get_series_info(series.series_id)
        except (SyncCancelledError, MemoryError):
            raise
        except Exception as e:
            self._series_failed(ctx, series, e)
            return
        with ctx.lock:
            infos[series.series_id] = info

    def _series_failed(
        self, ctx: _RunContext, series: Series, error: Exception, item_done: bool = True
    ):
        logger.error(f"  ✗ Failed to sync series '{series.name}' ({series.series_id}): {error}")
        with ctx.lock:
            ctx.failed_series.add(series.series_id)
            ctx.series_entries.pop(series.series_id, None)
        self._keep_series_files(ctx, series)
        ctx.result.add_failure(FailedItem(
            item_type=MediaType.SERIES,
            provider_id=series.series_id,
            name=series.name,
            error=str(error),
            timestamp=self.clock(),
            category_id=series.category_id,
            series_id=series.series_id,
        ))
        if item_done:
            self.progress.item_done()

    def _keep_series_files(self, ctx: _RunContext, series: Series):
        """Shield a failed series' episodes from the orphan sweep."""
        folders = set()
        entry = ctx.base.series.get(series.series_id) if ctx.base is not None else None
        if entry is not None:
            folders.update(Path(folder) for folder in entry.folders)
        title, year = self._series_title(series)
        key = build_folder_name(title, year).lower()
        for root in self._series_roots(ctx, series):
            folder = self._existing_folder(ctx, root, key)
            if folder is not None:
                folders.add(root / folder)
        for folder in folders:
            ctx.registry.protect(scan_strm_files(folder))

    def _series_title(self, series: Series) -> Tuple[str, Optional[int]]:
        cleaned = clean_name(series.name, self._rules)
        return sanitize_file_name(cleaned), extract_year(cleaned, self.clock())

    def _series_roots(self, ctx: _RunContext, series: Series) -> List[Path]:
        categories = ctx.series_categories.get(series.series_id) or (
            [series.category_id] if series.category_id is not None else []
        )
        return self._target_roots(
            self.settings.series_root,
            self.settings.series_folder_mode,
            self.settings.series_folder_mappings,
            categories,
        )

    def _series_dirs(
        self, ctx: _RunContext, series: Series, title: str, year: Optional[int], roots: List[Path]
    ) -> List[Path]:
        key = build_folder_name(title, year).lower()
        identity = None
        series_dirs = []
        for root in roots:
            folder = self._existing_folder(ctx, root, key)
            if folder is None:
                if identity is None:
                    identity = self._series_id(ctx, title, year, series)
                folder = self._claim_folder(ctx, root, key, build_folder_name(title, year, *identity))
            series_dirs.append(root / folder)
        return series_dirs

    def _extend_series_safe(self, ctx: _RunContext, series: Series):
        try:
            self._extend_series(ctx, series)
        except (SyncCancelledError, MemoryError):
            raise
        except Exception as e:
            self._series_failed(ctx, series, e, item_done=False)

    def _extend_series(self, ctx: _RunContext, series: Series):
        """Add folders for categories a series joined after it was written."""
        ctx.token.raise_if_cancelled()
        with ctx.lock:
            entry = ctx.series_entries.get(series.series_id)
        if entry is None:
            return
        written = {Path(folder).parent for folder in entry.folders}
        roots = [root for root in self._series_roots(ctx, series) if root not in written]
        if not roots:
            return

        info = self.catalog.get_series_info(series.series_id)
        title, year = self._series_title(series)
        series_dirs = self._series_dirs(ctx, series, title, year, roots)
        owner = f"series:{series.series_id}"
        for season_number in sorted(info.episodes):
            ctx.token.raise_if_cancelled()
            for episode in info.episodes[season_number]:
                self._write_episode(ctx, series_dirs, title, season_number, episode, owner)

        logger.debug(f"  Added {series.name} to {', '.join(root.name for root in roots)}")
        self._record_series(
            ctx, series, entry.episode_count,
            list(entry.folders) + [str(d) for d in series_dirs],
        )

    def _process_series_safe(self, ctx: _RunContext, item: Tuple[Series, SeriesInfo]):
        series, info = item
        try:
            self._process_series(ctx, series, info)
        except (SyncCancelledError, MemoryError):
            raise
        except Exception as e:
            self._series_failed(ctx, series, e)

    def _series_id(
        self, ctx: _RunContext, title: str, year: Optional[int], series: Series
    ) -> Tuple[Optional[str], Optional[int]]:
        override = self.settings.tvdb_overrides.get(title.lower())
        if override:
            return "tvdb", override
        if series.tmdb_id:
            return "tmdb", series.tmdb_id
        resolved = self.resolver.resolve_series(title, year, ctx.token)
        if resolved:
            return "tvdb", resolved
        return None, None

    def _process_series(self, ctx: _RunContext, series: Series, info: SeriesInfo):
        ctx.token.raise_if_cancelled()
        title, year = self._series_title(series)
        episode_count = info.episode_count
        with ctx.lock:
            ctx.episode_counts[series.series_id] = episode_count

        if ctx.base is not None:
            entry = ctx.base.series.get(series.series_id)
            if (
                entry is not None
                and entry.folders
                and entry.checksum == series_checksum(series, episode_count)
                and self._folders_complete(entry.folders, episode_count)
            ):
                self._keep_series(ctx, series, entry)
                return

        series_dirs = self._series_dirs(ctx, series, title, year, self._series_roots(ctx, series))
        owner = f"series:{series.series_id}"
        all_outcomes = []
        episode_failed = False
        for season_number in sorted(info.episodes):
            ctx.token.raise_if_cancelled()
            season_outcomes = []
            for episode in info.episodes[season_number]:
                try:
                    outcome = self._write_episode(
                        ctx, series_dirs, title, season_number, episode, owner
                    )
                except (SyncCancelledError, MemoryError):
                    raise
                except Exception as e:
                    episode_failed = True
                    logger.error(
                        f"  ✗ Failed to sync {series.name} "
                        f"S{season_number:02d}E{episode.episode_num:02d}: {e}"
                    )
                    ctx.result.add_failure(FailedItem(
                        item_type=MediaType.EPISODE,
                        provider_id=episode.episode_id,
                        name=series.name,
                        error=str(e),
                        timestamp=self.clock(),
                        category_id=series.category_id,
                        series_id=series.series_id,
                        season_number=season_number,
                        episode_number=episode.episode_num,
                    ))
                    continue
                ctx.result.increment(**{f"episodes_{outcome.value}": 1})
                season_outcomes.append(outcome)

            if FileOutcome.CREATED in season_outcomes:
                ctx.result.increment(seasons_created=1)
            else:
                ctx.result.increment(seasons_skipped=1)
            all_outcomes.extend(season_outcomes)

        combined = combine_outcomes(all_outcomes)
        ctx.result.increment(**{f"series_{combined.value}": 1})
        self.progress.item_done(
            created=int(combined == FileOutcome.CREATED),
            updated=int(combined == FileOutcome.UPDATED),
        )
        if episode_failed:
            with ctx.lock:
                ctx.failed_series.add(series.series_id)
            for series_dir in series_dirs:
                ctx.registry.protect(scan_strm_files(series_dir))
        self._record_series(ctx, series, episode_count, [str(d) for d in series_dirs])
        logger.debug(
            f"  ✓ {series.name}: {episode_count} episodes in {len(info.episodes)} season(s)"
        )

    def _write_episode(
        self,
        ctx: _RunContext,
        series_dirs: List[Path],
        title: str,
        season_number: int,
        episode,
        owner: str,
    ) -> FileOutcome:
        settings = self.settings
        url = episode_stream_url(
            settings.provider_url, settings.username, settings.password,
            episode.episode_id, episode.container_extension,
        )
        file_name = build_episode_file_name(title, season_number, episode.episode_num, episode.title)
        outcomes = []
        for series_dir in series_dirs:
            path = series_dir / season_folder_name(season_number) / file_name
            if not ctx.registry.claim(path, owner + f":{episode.episode_id}"):
                path = path.with_name(f"{path.stem} [{episode.episode_id}].strm")
                ctx.registry.claim(path, owner + f":{episode.episode_id}")
            outcomes.append(write_if_changed(path, url))
            if settings.write_nfo:
                write_if_changed(
                    nfo_path_for(path),
                    build_episode_nfo(title, episode.title, season_number, episode.episode_num),
                )
        return combine_outcomes(outcomes)

    def _record_series(
        self, ctx: _RunContext, series: Series, episode_count: int, folders: List[str]
    ):
        with ctx.lock:
            if series.series_id in ctx.failed_series:
                return
            ctx.series_entries[series.series_id] = SeriesSnapshot(
                series_id=series.series_id,
                name=series.name,
                checksum=series_checksum(series, episode_count),
                category_id=series.category_id,
                episode_count=episode_count,
                last_modified=series.last_modified,
                folders=list(folders),
            )

    # -- orphan sweep ------------------------------------------------------

    def _sweep_orphans(self, ctx: _RunContext):
        """Delete pointer files nothing claimed this run, unless it looks like a glitch."""
        settings = self.settings
        sweeps = []
        if settings.sync_movies:
            sweeps.append((MediaType.MOVIE, "movies", settings.movies_root, ctx.previous_movie_files))
        if settings.sync_series:
            sweeps.append((MediaType.SERIES, "series", settings.series_root, ctx.previous_series_files))

        for media_type, label, root, previous in sweeps:
            candidates = sorted(p for p in previous if p not in ctx.registry)
            if not candidates:
                continue

            if media_type in ctx.incomplete:
                logger.warning(
                    f"Skipping {label} orphan cleanup: catalog fetch was incomplete "
                    f"({len(candidates)} file(s) not seen this run)"
                )
                self._emit(
                    "orphan_sweep_blocked", content=label, reason="incomplete_fetch",
                    candidates=len(candidates), previous=len(previous),
                )
                continue

            ratio = len(candidates) / len(previous)
            if ratio > settings.orphan_threshold and len(previous) > settings.orphan_min_files:
                logger.warning(
                    f"Skipping {label} orphan cleanup: {len(candidates)} of {len(previous)} "
                    f"files ({ratio:.0%}) would be deleted, above the "
                    f"{settings.orphan_threshold:.0%} safety threshold"
                )
                self._emit(
                    "orphan_sweep_blocked", content=label, reason="threshold",
                    candidates=len(candidates), previous=len(previous),
                )
                continue

            deleted = 0
            parents = set()
            for candidate in candidates:
                path = Path(candidate)
                try:
                    path.unlink()
                except FileNotFoundError:
                    continue
                except OSError as e:
                    logger.warning(f"Failed to delete orphan {path}: {e}")
                    continue
                deleted += 1
                nfo = nfo_path_for(path)
                if nfo.exists():
                    nfo.unlink()
                parents.add(path.parent)
                logger.debug(f"  Deleted orphan: {path}")

            for parent in sorted(parents, key=lambda p: len(p.parts), reverse=True):
                remove_empty_dirs(parent, root)

            ctx.result.increment(files_deleted=deleted)
            logger.info(f"Removed {deleted} orphaned {label} file(s)")

    # -- retry -------------------------------------------------------------

    def retry_failed(self) -> RunResult:
        """Reprocess the failed items of the last run.

        Resolved entries are removed from the last result and its counters
        are merged with this pass. No orphan sweep runs.

        Returns:
            RunResult for the retry pass
        """
        if not self._run_lock.acquire(blocking=False):
            raise SyncAlreadyRunningError("A sync is already running")

        try:
            last = self.history.last()
            retry_result = RunResult(start_time=self.clock(), is_retry=True)
            if last is None or not last.failed_items:
                logger.info("No failed items to retry")
                retry_result.end_time = self.clock()
                retry_result.state = SyncState.COMPLETE
                retry_result.success = True
                return retry_result

            token = CancellationToken()
            self._token = token
            self.progress.start()
            self.progress.set_phase("Retrying failed items")
            ctx = self._new_context(retry_result, token, base=None)
            resolved: List[FailedItem] = []

            try:
                resolved = self._retry_items(ctx, last.failed_items)
                retry_result.state = SyncState.COMPLETE
                retry_result.success = True
            except SyncCancelledError:
                retry_result.state = SyncState.CANCELLED
                retry_result.error = "Retry was cancelled"
                logger.info("Retry cancelled")
            finally:
                try:
                    self.resolver.flush()
                except Exception as e:
                    logger.error(f"Failed to flush metadata cache: {e}")
                retry_result.end_time = self.clock()
                last.failed_items = [f for f in last.failed_items if f not in resolved]
                last.merge_counts(retry_result)
                try:
                    self.history.update_last(last)
                except OSError as e:
                    logger.error(f"Failed to save run history: {e}")
                    retry_result.increment(errors=1)
                self.progress.finish()
                self._token = None

            logger.info(
                f"Retry complete: {len(resolved)} resolved, "
                f"{len(last.failed_items)} still failing"
            )
            return retry_result
        finally:
            self._run_lock.release()

    def _retry_items(self, ctx: _RunContext, items: List[FailedItem]) -> List[FailedItem]:
        resolved = []
        self.progress.add_total(len(items))

        series_groups: Dict[int, List[FailedItem]] = {}
        for item in items:
            if item.item_type == MediaType.MOVIE:
                ctx.token.raise_if_cancelled()
                try:
                    movie = self._refetch_movie(item)
                    self._process_movie(ctx, movie)
                    resolved.append(item)
                except (SyncCancelledError, MemoryError):
                    raise
                except Exception as e:
                    logger.error(f"  ✗ Retry failed for movie '{item.name}': {e}")
                    ctx.result.add_failure(dataclasses.replace(item, error=str(e), timestamp=self.clock()))
                    self.progress.item_done()
            else:
                series_id = item.series_id or item.provider_id
                series_groups.setdefault(series_id, []).append(item)

        for series_id, group in series_groups.items():
            ctx.token.raise_if_cancelled()
            failures_before = len(ctx.result.failed_items)
            try:
                series, info = self._refetch_series(group[0], series_id)
                self._process_series(ctx, series, info)
            except (SyncCancelledError, MemoryError):
                raise
            except Exception as e:
                logger.error(f"  ✗ Retry failed for series '{group[0].name}': {e}")
                for item in group:
                    ctx.result.add_failure(dataclasses.replace(item, error=str(e), timestamp=self.clock()))
                    self.progress.item_done()
                continue

            still_failing = {
                (f.season_number, f.episode_number)
                for f in ctx.result.failed_items[failures_before:]
            }
            for item in group:
                if item.item_type == MediaType.EPISODE and (
                    (item.season_number, item.episode_number) in still_failing
                ):
                    continue
                resolved.append(item)
            # _process_series already counted one
            for _ in group[1:]:
                self.progress.item_done()

        return resolved

    def _refetch_movie(self, item: FailedItem) -> Movie:
        """Current listing for a failed movie, re-searching by name if its ID is gone."""
        try:
            movie = self.catalog.get_vod_info(item.provider_id).to_movie()
        except ItemNotFoundError:
            if item.category_id is None:
                raise
            logger.info(f"  Movie {item.provider_id} not found, searching category {item.category_id} by name")
            movie = self._find_by_name(
                self.catalog.get_vod_streams(item.category_id), item.name
            )
            if movie is None:
                raise
            logger.info(f"  ✓ Found '{item.name}' under new ID {movie.stream_id}")
        if movie.category_id is None and item.category_id is not None:
            movie = dataclasses.replace(movie, category_id=item.category_id)
        return movie

    def _refetch_series(self, item: FailedItem, series_id: int) -> Tuple[Series, SeriesInfo]:
        series = Series(series_id=series_id, name=item.name, category_id=item.category_id)
        try:
            info = self.catalog.get_series_info(series_id)
        except ItemNotFoundError:
            if item.category_id is None:
                raise
            logger.info(f"  Series {series_id} not found, searching category {item.category_id} by name")
            found = self._find_by_name(
                self.catalog.get_series(item.category_id), item.name
            )
            if found is None:
                raise
            logger.info(f"  ✓ Found '{item.name}' under new ID {found.series_id}")
            series = found
            info = self.catalog.get_series_info(found.series_id)
        return series, info

    def _find_by_name(self, candidates: list, name: str) -> Optional[object]:
        wanted = sanitize_file_name(clean_name(name, self._rules)).lower()
        for candidate in candidates:
            if sanitize_file_name(clean_name(candidate.name, self._rules)).lower() == wanted:
                return candidate
        return None

    # -- administration ----------------------------------------------------

    def clean_library(self, delete_files: bool = False) -> dict:
        """Force the next run to be a full sync and block scheduled runs.

        Args:
            delete_files: Also delete the Movies and Series trees

        Returns:
            Dict with counts of deleted snapshots and pointer files
        """
        if not self._run_lock.acquire(blocking=False):
            raise SyncAlreadyRunningError("Cannot clean the library while a sync is running")
        try:
            self.suppress()
            snapshots = self.snapshots.clear_all()
            files = 0
            if delete_files:
                for root in (self.settings.movies_root, self.settings.series_root):
                    if root.exists():
                        files += len(scan_strm_files(root))
                        shutil.rmtree(root)
                logger.info(f"Deleted {files} pointer file(s) from the library")
            return {"snapshots": snapshots, "files": files}
        finally:
            self._run_lock.release()


def _log_summary(result: RunResult):
    changed = (
        result.movies_created + result.movies_updated + result.episodes_created
        + result.episodes_updated + result.files_deleted + len(result.failed_items)
    )
    log = logger.info if changed or result.state != SyncState.COMPLETE else logger.debug
    log(
        f"Sync {result.state.value} in {result.duration_seconds:.1f}s: "
        f"movies {result.movies_created} created, {result.movies_updated} updated, "
        f"{result.movies_skipped} skipped; episodes {result.episodes_created} created, "
        f"{result.episodes_updated} updated, {result.episodes_skipped} skipped; "
        f"{result.files_deleted} deleted, {len(result.failed_items)} failed, "
        f"{result.errors} error(s)"
    )
