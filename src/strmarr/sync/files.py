"""Filesystem helpers for the .strm library."""

import logging
import os
import threading
from pathlib import Path
from typing import Dict, Iterable, Optional, Set

from ..models import FileOutcome
from .naming import folder_key

logger = logging.getLogger(__name__)

STRM_SUFFIX = ".strm"


def write_if_changed(path: Path, content: str) -> FileOutcome:
    """Write a small text file unless it already holds this content.

    The whole buffer is written in one call, so a cancelled run never
    leaves a half-written pointer.

    Args:
        path: Target file
        content: Desired content

    Returns:
        SKIPPED if identical, UPDATED if overwritten, CREATED if new
    """
    if path.exists():
        try:
            existing = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            existing = None
        if existing is not None and existing.strip() == content.strip():
            return FileOutcome.SKIPPED
        path.write_text(content, encoding="utf-8")
        return FileOutcome.UPDATED

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return FileOutcome.CREATED


def combine_outcomes(outcomes: Iterable[FileOutcome]) -> FileOutcome:
    """One outcome per logical item: any created wins, then any updated."""
    outcomes = list(outcomes)
    if FileOutcome.CREATED in outcomes:
        return FileOutcome.CREATED
    if FileOutcome.UPDATED in outcomes:
        return FileOutcome.UPDATED
    return FileOutcome.SKIPPED


def scan_strm_files(root: Path) -> Set[str]:
    """Every .strm file below root, as absolute path strings."""
    if not root.exists():
        return set()
    found = set()
    for dirpath, _, filenames in os.walk(root):
        for filename in filenames:
            if filename.endswith(STRM_SUFFIX):
                found.add(str(Path(dirpath) / filename))
    return found


def count_strm_files(folder: Path) -> int:
    if not folder.exists():
        return 0
    return sum(1 for p in folder.rglob(f"*{STRM_SUFFIX}") if p.is_file())


def scan_item_folders(roots: Iterable[Path]) -> Dict[Path, Dict[str, str]]:
    """Map each root to {folder key: real folder name} for its direct children.

    Keys ignore a trailing "[tmdbid-N]" style suffix so an item matches its
    folder whether or not an ID was known when it was created.
    """
    result = {}
    for root in roots:
        folders = {}
        if root.exists():
            for child in root.iterdir():
                if child.is_dir():
                    folders.setdefault(folder_key(child.name), child.name)
        result[root] = folders
    return result


def remove_empty_dirs(start: Path, stop_at: Path):
    """Remove start and its empty parents, never touching stop_at or above."""
    stop_at = stop_at.resolve()
    current = start.resolve()
    while current != stop_at and stop_at in current.parents:
        try:
            if any(current.iterdir()):
                return
            current.rmdir()
            logger.debug(f"Removed empty directory {current}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove directory {current}: {e}")
            return
        current = current.parent


class SyncedPaths:
    """Thread-safe registry of pointer paths claimed during a run.

    Everything registered here is protected from the orphan sweep. A path
    claimed by one item cannot be claimed by another in the same run.
    Protected paths only survive the sweep and never block a claim.
    """

    def __init__(self):
        self._owners: Dict[str, str] = {}
        self._protected: Set[str] = set()
        self._lock = threading.Lock()

    def claim(self, path: Path, owner: str) -> bool:
        """Register path for owner; False if another owner already holds it."""
        key = str(path)
        with self._lock:
            current = self._owners.get(key)
            if current is not None and current != owner:
                return False
            self._owners[key] = owner
            return True

    def keep(self, paths: Iterable, owner: Optional[str] = None):
        """Register existing paths for an item that needed no processing."""
        with self._lock:
            for path in paths:
                self._owners.setdefault(str(path), owner or "kept")

    def protect(self, paths: Iterable):
        """Shield the files of an item that failed this run from the sweep."""
        with self._lock:
            self._protected.update(str(path) for path in paths)

    def __contains__(self, path) -> bool:
        with self._lock:
            return str(path) in self._owners or str(path) in self._protected

    def __len__(self) -> int:
        with self._lock:
            return len(self._owners)

    def paths(self) -> Set[str]:
        with self._lock:
            return set(self._owners)
