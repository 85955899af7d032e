"""Persistent catalog snapshots used as the incremental diff base."""

import json
import logging
import os
import threading
from pathlib import Path
from typing import List, Optional

from ..models import Snapshot
from .interfaces import Clock, utc_now

logger = logging.getLogger(__name__)

SNAPSHOT_PREFIX = "snapshot_"
SNAPSHOT_SUFFIX = ".json"


class SnapshotStore:
    """Stores versioned snapshot documents in a private directory.

    Every read and write goes through one lock so a save never races a load
    or a clear on the temp file.
    """

    def __init__(self, directory: Path, retention: int = 3, clock: Clock = utc_now):
        """Initialize snapshot store.

        Args:
            directory: Directory holding snapshot files
            retention: Number of snapshots to keep after each save
            clock: Source of the current time (used for file names)
        """
        self.directory = Path(directory)
        self.retention = max(1, retention)
        self.clock = clock
        self._lock = threading.Lock()

    def _snapshot_files(self) -> List[Path]:
        """Snapshot files, newest first (names sort chronologically)."""
        if not self.directory.exists():
            return []
        files = [
            p for p in self.directory.iterdir()
            if p.is_file()
            and p.name.startswith(SNAPSHOT_PREFIX)
            and p.name.endswith(SNAPSHOT_SUFFIX)
        ]
        return sorted(files, key=lambda p: p.name, reverse=True)

    def save(self, snapshot: Snapshot) -> Path:
        """Write a snapshot atomically and prune old ones.

        Args:
            snapshot: Snapshot to persist

        Returns:
            Path of the written snapshot file
        """
        with self._lock:
            self.directory.mkdir(parents=True, exist_ok=True)
            stamp = self.clock().strftime("%Y%m%d_%H%M%S_%f")
            target = self.directory / f"{SNAPSHOT_PREFIX}{stamp}{SNAPSHOT_SUFFIX}"
            tmp = target.with_name(target.name + ".tmp")

            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(snapshot.to_dict(), f)
            os.replace(tmp, target)

            logger.info(
                f"Saved snapshot {target.name} "
                f"({len(snapshot.movies)} movies, {len(snapshot.series)} series)"
            )
            self._prune()
            return target

    def _prune(self):
        for old in self._snapshot_files()[self.retention:]:
            try:
                old.unlink()
                logger.debug(f"Deleted old snapshot {old.name}")
            except OSError as e:
                logger.warning(f"Failed to delete old snapshot {old.name}: {e}")

    def load_latest(self) -> Optional[Snapshot]:
        """Load the newest complete, parseable snapshot.

        Returns:
            Snapshot or None if no valid snapshot exists
        """
        with self._lock:
            for path in self._snapshot_files():
                try:
                    with open(path, encoding="utf-8") as f:
                        data = json.load(f)
                    snapshot = Snapshot.from_dict(data)
                except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
                    logger.warning(f"Skipping corrupt snapshot {path.name}: {e}")
                    continue

                if not snapshot.is_complete:
                    logger.warning(f"Skipping incomplete snapshot {path.name}")
                    continue

                logger.debug(
                    f"Loaded snapshot {path.name} "
                    f"({len(snapshot.movies)} movies, {len(snapshot.series)} series)"
                )
                return snapshot

            return None

    def clear_all(self) -> int:
        """Delete every snapshot so the next run is a full sync.

        Returns:
            Number of files deleted
        """
        with self._lock:
            if not self.directory.exists():
                return 0

            deleted = 0
            for path in self.directory.iterdir():
                if path.is_file() and path.name.startswith(SNAPSHOT_PREFIX):
                    path.unlink()
                    deleted += 1

            logger.info(f"Cleared {deleted} snapshot file(s)")
            return deleted

    def has_snapshot(self) -> bool:
        with self._lock:
            return bool(self._snapshot_files())
